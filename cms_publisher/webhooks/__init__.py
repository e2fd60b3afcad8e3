"""
Outgoing webhooks for publishing lifecycle events.
"""

from cms_publisher.webhooks.dispatcher import WebhookDispatcher
from cms_publisher.webhooks.formatter import PayloadFormatter, sign_payload, verify_signature
from cms_publisher.webhooks.models import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookEvent,
    WebhookSubscription,
)

__all__ = [
    "WebhookDispatcher",
    "PayloadFormatter",
    "sign_payload",
    "verify_signature",
    "DeliveryStatus",
    "WebhookDelivery",
    "WebhookEvent",
    "WebhookSubscription",
]
