"""
Webhook data models: events, subscriptions and delivery records.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from cms_publisher.utils import generate_id, to_iso, utc_now


# =============================================================================
# ENUMS
# =============================================================================


class WebhookEvent(Enum):
    """Lifecycle events external automation platforms can subscribe to."""

    CONTENT_CREATED = "content.created"
    CONTENT_UPDATED = "content.updated"
    CONTENT_DELETED = "content.deleted"
    CONTENT_PUBLISHED = "content.published"
    CONTENT_SCHEDULED = "content.scheduled"
    PUBLISH_SUCCESS = "publish.success"
    PUBLISH_FAILED = "publish.failed"
    CAMPAIGN_CREATED = "campaign.created"
    CAMPAIGN_UPDATED = "campaign.updated"
    CAMPAIGN_COMPLETED = "campaign.completed"


class DeliveryStatus(Enum):
    """Final state of one delivery to one endpoint."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# =============================================================================
# SUBSCRIPTION
# =============================================================================


@dataclass
class WebhookSubscription:
    """A user's registration of an external URL for a set of events.

    Attributes:
        events: Event names this endpoint receives.
        secret: HMAC key; when set every delivery is signed.
        headers: Extra headers sent with every delivery.
        retry_count: Maximum delivery attempts per event.
        retry_delay_ms: Pause between attempts.
    """

    id: str
    url: str
    user_id: Optional[str] = None
    name: str = ""
    enabled: bool = True
    events: List[str] = field(default_factory=list)
    secret: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    retry_count: int = 3
    retry_delay_ms: int = 1000

    def subscribes_to(self, event: WebhookEvent) -> bool:
        return self.enabled and event.value in self.events

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "WebhookSubscription":
        """Convert a database row dict (snake or camel case) to a subscription."""
        return cls(
            id=row["id"],
            url=row["url"],
            user_id=row.get("user_id") or row.get("userId"),
            name=row.get("name") or "",
            enabled=bool(row.get("enabled", True)),
            events=list(row.get("events") or []),
            secret=row.get("secret") or None,
            headers=dict(row.get("headers") or {}),
            retry_count=int(row.get("retry_count") or row.get("retryCount") or 3),
            retry_delay_ms=int(
                row.get("retry_delay_ms") or row.get("retryDelay") or 1000
            ),
        )


# =============================================================================
# DELIVERY
# =============================================================================


@dataclass
class WebhookDelivery:
    """Record of delivering one event to one endpoint.

    ``attempt_log`` holds one entry per HTTP attempt
    (``{"attempt", "status_code", "error", "at"}``).
    ``gone`` is set when the endpoint answered 410 and should be disabled.
    """

    webhook_id: str
    event: str
    url: str
    payload: Dict[str, Any]
    id: str = field(default_factory=generate_id)
    status: DeliveryStatus = DeliveryStatus.PENDING
    status_code: Optional[int] = None
    response: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    gone: bool = False
    attempt_log: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    delivered_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return self.status is DeliveryStatus.SUCCESS

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "webhook_id": self.webhook_id,
            "event": self.event,
            "url": self.url,
            "payload": self.payload,
            "status": self.status.value,
            "status_code": self.status_code,
            "response": self.response,
            "error": self.error,
            "attempts": self.attempts,
            "gone": self.gone,
            "attempt_log": self.attempt_log,
            "created_at": to_iso(self.created_at),
            "delivered_at": to_iso(self.delivered_at),
        }


__all__ = [
    "WebhookEvent",
    "DeliveryStatus",
    "WebhookSubscription",
    "WebhookDelivery",
]
