"""
Beehiiv (newsletter) publisher.

Credentials: ``{"api_key": "...", "publication_id": "pub_..."}``.
Optional: ``status`` (``confirmed`` | ``draft``, default ``confirmed``).
"""

import logging
from typing import Any, Dict, Optional

from cms_publisher.exceptions import PublishError, ValidationError
from cms_publisher.publishers.base import BasePublisher, PlatformType
from cms_publisher.scheduling.models import ConnectionTestResult, Content, PublishResult

logger = logging.getLogger(__name__)


class BeehiivPublisher(BasePublisher):
    """Creates newsletter posts in a Beehiiv publication."""

    platform = PlatformType.BEEHIIV

    BASE_URL: str = "https://api.beehiiv.com/v2"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._api_key: Optional[str] = None
        self._publication_id: Optional[str] = None
        self._status: str = "confirmed"

    async def authenticate(self, credentials: Dict[str, Any]) -> None:
        self._api_key, self._publication_id = self._require(
            credentials, "api_key", "publication_id"
        )
        self._status = credentials.get("status", "confirmed")
        await self._request(
            "GET",
            f"{self.BASE_URL}/publications/{self._publication_id}",
            "Publication lookup",
            headers=self._headers(),
        )
        self._authenticated = True

    async def publish(self, content: Content) -> PublishResult:
        self._ensure_authenticated()

        if not content.title.strip() or not content.body.strip():
            raise ValidationError(
                "Beehiiv posts need a title and a body",
                platform=self.platform.value,
                issues=["title and body are required"],
            )

        payload: Dict[str, Any] = {
            "title": content.title,
            "content": content.body,
            "status": self._status,
        }
        if content.excerpt:
            payload["subtitle"] = content.excerpt

        response = await self._request(
            "POST",
            f"{self.BASE_URL}/publications/{self._publication_id}/posts",
            "Publishing",
            headers=self._headers(),
            json=payload,
        )
        data = self._json(response, "Publishing").get("data") or {}
        post_id = data.get("id")
        if not post_id:
            raise PublishError(
                "Beehiiv response did not include a post id",
                platform=self.platform.value,
                details={"response": data},
            )

        url = data.get("web_url") or f"{self.BASE_URL}/posts/{post_id}"
        logger.info("[PUBLISHER] Beehiiv post created (id=%s)", post_id)
        return PublishResult(url=url, platform_post_id=str(post_id), response={"status": data.get("status")})

    async def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        try:
            self._api_key, self._publication_id = self._require(
                credentials, "api_key", "publication_id"
            )
            response = await self._request(
                "GET",
                f"{self.BASE_URL}/publications/{self._publication_id}",
                "Connection test",
                headers=self._headers(),
            )
            publication = self._json(response, "Connection test").get("data") or {}
        except PublishError as exc:
            return ConnectionTestResult(
                success=False,
                message=str(exc),
                diagnostic={"kind": exc.kind.value, **exc.details},
            )

        return ConnectionTestResult(
            success=True,
            message=f"Connected to Beehiiv publication {publication.get('name', self._publication_id)}",
            diagnostic={"publication_id": self._publication_id},
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}


__all__ = ["BeehiivPublisher"]
