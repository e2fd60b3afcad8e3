"""
Payload formatting and signing for outgoing webhooks.

Automation platforms differ in how comfortably they map nested JSON, so the
formatter looks at the target URL: Zapier endpoints additionally receive a
``flat_data`` object with one level of nesting collapsed into
``parent_child`` keys. Make.com and n8n take the nested payload as is.
"""

import hashlib
import hmac
from datetime import datetime
from typing import Any, Dict, Optional

from cms_publisher.utils import generate_id, to_iso, utc_now
from cms_publisher.webhooks.models import WebhookEvent

FLAT_PAYLOAD_HOSTS = ("zapier.com",)


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 of the exact request body, as ``sha256=<hex>``."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Constant-time check of a received ``Signature`` header."""
    return hmac.compare_digest(sign_payload(body, secret), signature)


class PayloadFormatter:
    """Builds the JSON payload for one event and one target URL."""

    def format(
        self,
        event: WebhookEvent,
        data: Dict[str, Any],
        url: str,
        timestamp: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "event": event.value,
            "timestamp": to_iso(timestamp or utc_now()),
            "data": {
                "id": data.get("id") or generate_id(),
                "type": self.determine_type(data),
                **data,
            },
            "metadata": {
                "userId": data.get("userId"),
                "campaignId": data.get("campaignId"),
                "platform": data.get("platform"),
                "scheduledFor": data.get("scheduledFor"),
            },
        }

        if any(host in url for host in FLAT_PAYLOAD_HOSTS):
            payload["flat_data"] = self.flatten(payload["data"])
        return payload

    @staticmethod
    def determine_type(data: Dict[str, Any]) -> str:
        if data.get("topicId") or data.get("content"):
            return "topic"
        if data.get("campaignId") or data.get("publishingPlans"):
            return "campaign"
        return "publication"

    @staticmethod
    def flatten(data: Dict[str, Any]) -> Dict[str, Any]:
        flat: Dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, dict):
                for nested_key, nested_value in value.items():
                    flat[f"{key}_{nested_key}"] = nested_value
            else:
                flat[key] = value
        return flat

    def test_payload(self, timestamp: Optional[datetime] = None) -> Dict[str, Any]:
        """Sample ``content.created`` payload used by connectivity tests."""
        return {
            "event": WebhookEvent.CONTENT_CREATED.value,
            "timestamp": to_iso(timestamp or utc_now()),
            "data": {
                "id": f"test-{generate_id()}",
                "type": "topic",
                "test": True,
                "message": "This is a test webhook from CMS Publisher",
            },
        }


__all__ = [
    "FLAT_PAYLOAD_HOSTS",
    "PayloadFormatter",
    "sign_payload",
    "verify_signature",
]
