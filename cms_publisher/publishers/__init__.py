"""
Destination publishers: one adapter per platform type plus the registry
that maps a destination's platform tag to an adapter.
"""

from cms_publisher.publishers.base import USER_AGENT, BasePublisher, PlatformType
from cms_publisher.publishers.beehiiv import BeehiivPublisher
from cms_publisher.publishers.devto import DevtoPublisher
from cms_publisher.publishers.mastodon import MastodonPublisher
from cms_publisher.publishers.registry import PublisherFactory, PublisherRegistry
from cms_publisher.publishers.webhook import WebhookPublisher

__all__ = [
    "USER_AGENT",
    "BasePublisher",
    "PlatformType",
    "BeehiivPublisher",
    "DevtoPublisher",
    "MastodonPublisher",
    "WebhookPublisher",
    "PublisherFactory",
    "PublisherRegistry",
]
