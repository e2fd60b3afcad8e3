"""
Generic custom destination: POST the content as JSON to a configured URL.

Credentials: ``{"url": "https://...", "token": "optional bearer token"}``.
The endpoint may answer with ``{"url": ..., "id": ...}``; otherwise the
target URL itself is recorded as the published URL.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from cms_publisher.exceptions import AuthenticationError, PublishError
from cms_publisher.publishers.base import BasePublisher, PlatformType
from cms_publisher.scheduling.models import ConnectionTestResult, Content, PublishResult

logger = logging.getLogger(__name__)


class WebhookPublisher(BasePublisher):
    """Delivers content to a user-defined HTTP endpoint."""

    platform = PlatformType.WEBHOOK

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._url: str = ""
        self._token: Optional[str] = None

    async def authenticate(self, credentials: Dict[str, Any]) -> None:
        (url,) = self._require(credentials, "url")
        if not url.startswith(("http://", "https://")):
            raise AuthenticationError(
                f"Invalid endpoint URL '{url}'", platform=self.platform.value
            )
        self._url = url
        self._token = credentials.get("token")
        self._authenticated = True

    async def publish(self, content: Content) -> PublishResult:
        self._ensure_authenticated()

        response = await self._request(
            "POST",
            self._url,
            "Publishing",
            headers=self._headers(),
            json={
                "id": content.id,
                "title": content.title,
                "body": content.body,
                "excerpt": content.excerpt,
                "tags": self.extract_tags(content),
                "campaign_id": content.campaign_id,
                "canonical_url": content.canonical_url,
            },
        )

        data: Dict[str, Any] = {}
        if response.content:
            try:
                parsed = response.json()
            except ValueError:
                parsed = None
            if isinstance(parsed, dict):
                data = parsed

        logger.info("[PUBLISHER] Content %s delivered to %s", content.id, self._url)
        return PublishResult(
            url=str(data.get("url") or self._url),
            platform_post_id=str(data["id"]) if data.get("id") is not None else None,
            response={"status_code": response.status_code},
        )

    async def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        try:
            await self.authenticate(credentials)
            async with self._client() as client:
                response = await client.head(self._url, headers=self._headers())
        except PublishError as exc:
            return ConnectionTestResult(success=False, message=str(exc), diagnostic={"kind": exc.kind.value})
        except httpx.HTTPError as exc:
            return ConnectionTestResult(
                success=False,
                message=f"Endpoint unreachable: {exc}",
                diagnostic={"url": self._url},
            )

        # Many receivers reject HEAD; only a server error counts as unhealthy
        reachable = response.status_code < 500
        return ConnectionTestResult(
            success=reachable,
            message=f"Endpoint answered HTTP {response.status_code}",
            diagnostic={"url": self._url, "status_code": response.status_code},
        )

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers


__all__ = ["WebhookPublisher"]
