"""
Static platform-tag -> publisher factory mapping.

The registry is built once at startup and never mutated afterwards; each
dispatch resolves a fresh publisher instance so no authentication state
leaks between schedules.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from cms_publisher.exceptions import UnsupportedPlatformError
from cms_publisher.publishers.base import BasePublisher, PlatformType
from cms_publisher.publishers.beehiiv import BeehiivPublisher
from cms_publisher.publishers.devto import DevtoPublisher
from cms_publisher.publishers.mastodon import MastodonPublisher
from cms_publisher.publishers.webhook import WebhookPublisher

logger = logging.getLogger(__name__)

PublisherFactory = Callable[[], BasePublisher]


class PublisherRegistry:
    """Resolves a destination's platform tag to a publisher.

    Args:
        factories: Mapping of lowercase platform tag to a zero-argument
            callable returning a new publisher.
    """

    def __init__(self, factories: Dict[str, PublisherFactory]) -> None:
        self._factories: Dict[str, PublisherFactory] = {
            tag.lower(): factory for tag, factory in factories.items()
        }

    @classmethod
    def default(
        cls,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "PublisherRegistry":
        """Registry with every built-in adapter."""
        options: Dict[str, Any] = {"timeout": timeout, "transport": transport}
        return cls({
            PlatformType.DEVTO.value: lambda: DevtoPublisher(**options),
            PlatformType.MASTODON.value: lambda: MastodonPublisher(**options),
            PlatformType.BEEHIIV.value: lambda: BeehiivPublisher(**options),
            PlatformType.WEBHOOK.value: lambda: WebhookPublisher(**options),
        })

    def resolve(self, platform: str) -> BasePublisher:
        """Return a new publisher for *platform*.

        Raises:
            UnsupportedPlatformError: If no factory is registered for the tag.
        """
        factory = self._factories.get((platform or "").lower())
        if factory is None:
            logger.warning("[PUBLISHER] No publisher registered for '%s'", platform)
            raise UnsupportedPlatformError(platform)
        return factory()

    def supported_platforms(self) -> List[str]:
        return sorted(self._factories)

    def __contains__(self, platform: str) -> bool:
        return (platform or "").lower() in self._factories


__all__ = [
    "PublisherFactory",
    "PublisherRegistry",
]
