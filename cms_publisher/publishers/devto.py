"""
Dev.to (Forem API v1) blog publisher.

Credentials: ``{"api_key": "..."}``. Optional destination settings in the
same blob: ``published`` (bool, default ``True``), ``series``,
``organization_id``.
"""

import logging
from typing import Any, Dict, List, Optional

from cms_publisher.exceptions import AuthenticationError, PublishError, ValidationError
from cms_publisher.publishers.base import BasePublisher, PlatformType
from cms_publisher.scheduling.models import ConnectionTestResult, Content, PublishResult

logger = logging.getLogger(__name__)


class DevtoPublisher(BasePublisher):
    """Publishes articles to Dev.to.

    Usage::

        publisher = DevtoPublisher()
        await publisher.authenticate({"api_key": "..."})
        result = await publisher.publish(content)
    """

    platform = PlatformType.DEVTO

    BASE_URL: str = "https://dev.to/api"
    MAX_TITLE_LENGTH: int = 255
    MAX_TAGS: int = 4

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._api_key: Optional[str] = None
        self._options: Dict[str, Any] = {}

    async def authenticate(self, credentials: Dict[str, Any]) -> None:
        (self._api_key,) = self._require(credentials, "api_key")
        self._options = credentials
        await self._request(
            "GET",
            f"{self.BASE_URL}/users/me",
            "Token validation",
            headers=self._headers(),
        )
        self._authenticated = True
        logger.debug("[PUBLISHER] Dev.to credentials validated")

    async def publish(self, content: Content) -> PublishResult:
        self._ensure_authenticated()

        tags = self.extract_tags(content, limit=self.MAX_TAGS)
        issues = self.validate(content, tags)
        if issues:
            raise ValidationError(
                f"Content validation failed: {', '.join(issues)}",
                platform=self.platform.value,
                issues=issues,
            )

        article: Dict[str, Any] = {
            "title": content.title,
            "body_markdown": content.body,
            "published": bool(self._options.get("published", True)),
            "tags": tags,
        }
        if content.excerpt:
            article["description"] = content.excerpt
        if content.canonical_url:
            article["canonical_url"] = content.canonical_url
        main_image = self.extract_first_image(content.body)
        if main_image:
            article["main_image"] = main_image
        for key in ("series", "organization_id"):
            if self._options.get(key):
                article[key] = self._options[key]

        response = await self._request(
            "POST",
            f"{self.BASE_URL}/articles",
            "Publishing",
            headers=self._headers(),
            json={"article": article},
        )
        data = self._json(response, "Publishing")

        if not data.get("url"):
            raise PublishError(
                "Dev.to response did not include an article URL",
                platform=self.platform.value,
                details={"response": data},
            )

        logger.info(
            "[PUBLISHER] Dev.to article created (id=%s, url=%s)",
            data.get("id"),
            data["url"],
        )
        return PublishResult(
            url=data["url"],
            platform_post_id=str(data.get("id", "")),
            response={"slug": data.get("slug"), "published": bool(data.get("published_at"))},
        )

    async def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        try:
            (api_key,) = self._require(credentials, "api_key")
            self._api_key = api_key
            response = await self._request(
                "GET",
                f"{self.BASE_URL}/users/me",
                "Connection test",
                headers=self._headers(),
            )
            user = self._json(response, "Connection test")
        except PublishError as exc:
            return ConnectionTestResult(
                success=False,
                message=str(exc),
                diagnostic={"kind": exc.kind.value, **exc.details},
            )

        return ConnectionTestResult(
            success=True,
            message=f"Connected to Dev.to as {user.get('username', 'unknown')}",
            diagnostic={"username": user.get("username"), "user_id": user.get("id")},
        )

    def validate(self, content: Content, tags: List[str]) -> List[str]:
        """Return human-readable problems with *content* for Dev.to."""
        issues: List[str] = []
        if not content.title.strip():
            issues.append("Title is required")
        elif len(content.title) > self.MAX_TITLE_LENGTH:
            issues.append(f"Title must be {self.MAX_TITLE_LENGTH} characters or less")
        if not content.body.strip():
            issues.append("Content body is required")
        if len(tags) > self.MAX_TAGS:
            issues.append(f"Maximum {self.MAX_TAGS} tags allowed on Dev.to")
        return issues

    def _headers(self) -> Dict[str, str]:
        if not self._api_key:
            raise AuthenticationError("No API key provided", platform=self.platform.value)
        return {"api-key": self._api_key, "Content-Type": "application/json"}


__all__ = ["DevtoPublisher"]
