"""
Destination publisher contract shared by every platform adapter.

Each adapter knows how to authenticate against and publish to exactly one
platform type. Adapters translate every failure into the ``PublishError``
taxonomy so the dispatch coordinator can decide whether another attempt
makes sense:

- 401 / 403              -> ``AuthenticationError``  (non-retryable)
- 400 / 413 / 422        -> ``ValidationError``      (non-retryable)
- 408 / 429 / 5xx        -> ``TransientError``       (retryable)
- network / timeout      -> ``TransientError``       (retryable)
- any other 4xx          -> ``PublishError``         (permanent)

HTTP is done with ``httpx``. Pass a ``transport`` to route requests
somewhere other than the network (tests use ``httpx.MockTransport``).
"""

import logging
import re
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from cms_publisher.exceptions import (
    AuthenticationError,
    PublishError,
    TransientError,
    ValidationError,
)
from cms_publisher.scheduling.models import (
    ConnectionTestResult,
    Content,
    PublishResult,
)

logger = logging.getLogger(__name__)


class PlatformType(Enum):
    """Supported destination platform tags."""

    DEVTO = "devto"
    MASTODON = "mastodon"
    BEEHIIV = "beehiiv"
    WEBHOOK = "webhook"


USER_AGENT = "CMS-Publisher/1.0"

_HASHTAG_RE = re.compile(r"#(\w+)")
_MARKDOWN_IMAGE_RE = re.compile(r"!\[.*?\]\((.*?)\)")


class BasePublisher(ABC):
    """Abstract base for platform publishers.

    Subclasses implement :meth:`authenticate`, :meth:`publish` and
    :meth:`test_connection`. ``authenticate`` must be awaited before
    ``publish``; a publisher instance serves a single dispatch.

    Args:
        timeout: Per-request timeout in seconds.
        transport: Optional ``httpx`` transport override.
    """

    platform: PlatformType

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self._transport = transport
        self._authenticated: bool = False

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def authenticate(self, credentials: Dict[str, Any]) -> None:
        """Validate *credentials* and prepare the publisher.

        Raises:
            AuthenticationError: On missing or rejected credentials.
        """

    @abstractmethod
    async def publish(self, content: Content) -> PublishResult:
        """Publish *content* and return where it landed.

        Raises:
            PublishError: Classified failure (see module docstring).
        """

    @abstractmethod
    async def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        """Read-only credential probe for settings tooling.

        Never raises; problems are reported in the result.
        """

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        )

    async def _request(
        self,
        method: str,
        url: str,
        operation: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send one request and classify the outcome.

        Returns:
            The successful (2xx) response.

        Raises:
            PublishError: Classified by status code or transport failure.
        """
        try:
            async with self._client() as client:
                response = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransientError(
                f"{operation} timed out: {exc}", platform=self.platform.value
            ) from exc
        except httpx.TransportError as exc:
            raise TransientError(
                f"{operation} network error: {exc}", platform=self.platform.value
            ) from exc

        self._raise_for_status(response, operation)
        return response

    def _raise_for_status(self, response: httpx.Response, operation: str) -> None:
        """Map a non-2xx response to the publish error taxonomy."""
        status = response.status_code
        if 200 <= status < 300:
            return

        body = response.text[:500]
        message = f"{operation} failed: HTTP {status} {body}".strip()
        details = {"status_code": status, "body": body}
        platform = self.platform.value

        if status in (401, 403):
            raise AuthenticationError(message, platform=platform, details=details)
        if status in (400, 413, 422):
            raise ValidationError(message, platform=platform, details=details)
        if status in (408, 429) or status >= 500:
            raise TransientError(message, platform=platform, details=details)
        raise PublishError(message, platform=platform, details=details)

    def _json(self, response: httpx.Response, operation: str) -> Dict[str, Any]:
        """Decode a 2xx body that must be a JSON object."""
        try:
            data = response.json()
        except ValueError as exc:
            raise PublishError(
                f"{operation} returned a non-JSON body",
                platform=self.platform.value,
                details={"status_code": response.status_code, "body": response.text[:500]},
            ) from exc
        if not isinstance(data, dict):
            raise PublishError(
                f"{operation} returned {type(data).__name__}, expected an object",
                platform=self.platform.value,
                details={"status_code": response.status_code},
            )
        return data

    def _ensure_authenticated(self) -> None:
        if not self._authenticated:
            raise AuthenticationError(
                "Publisher not authenticated", platform=self.platform.value
            )

    def _require(self, credentials: Dict[str, Any], *keys: str) -> List[str]:
        """Return the requested credential values or raise if any is blank."""
        missing = [key for key in keys if not credentials.get(key)]
        if missing:
            raise AuthenticationError(
                f"Missing credentials: {', '.join(missing)}",
                platform=self.platform.value,
            )
        return [str(credentials[key]) for key in keys]

    # ------------------------------------------------------------------
    # Content adaptation helpers
    # ------------------------------------------------------------------

    @staticmethod
    def extract_tags(content: Content, limit: int = 5) -> List[str]:
        """Explicit tags first, then ``#hashtags`` found in the body."""
        tags: List[str] = []
        for tag in list(content.tags) + _HASHTAG_RE.findall(content.body):
            tag = tag.strip().lstrip("#")
            if tag and tag not in tags:
                tags.append(tag)
        return tags[:limit]

    @staticmethod
    def extract_first_image(body: str) -> Optional[str]:
        match = _MARKDOWN_IMAGE_RE.search(body)
        return match.group(1) if match else None

    @staticmethod
    def truncate(text: str, max_length: int) -> str:
        if len(text) <= max_length:
            return text
        return text[: max_length - 3] + "..."


__all__ = [
    "PlatformType",
    "BasePublisher",
    "USER_AGENT",
]
