"""
Mastodon (federated social) publisher.

Credentials: ``{"access_token": "...", "instance_url": "https://mastodon.social"}``.
Optional: ``visibility`` (``public`` | ``unlisted`` | ``private`` | ``direct``),
``spoiler_text``, ``language``.
"""

import logging
from typing import Any, Dict, Optional

from cms_publisher.exceptions import PublishError, ValidationError
from cms_publisher.publishers.base import BasePublisher, PlatformType
from cms_publisher.scheduling.models import ConnectionTestResult, Content, PublishResult

logger = logging.getLogger(__name__)


class MastodonPublisher(BasePublisher):
    """Posts statuses to a Mastodon instance."""

    platform = PlatformType.MASTODON

    MAX_STATUS_LENGTH: int = 500
    VISIBILITIES = ("public", "unlisted", "private", "direct")

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._access_token: Optional[str] = None
        self._instance_url: str = ""
        self._options: Dict[str, Any] = {}
        self.max_characters: int = self.MAX_STATUS_LENGTH

    async def authenticate(self, credentials: Dict[str, Any]) -> None:
        token, instance_url = self._require(credentials, "access_token", "instance_url")
        self._access_token = token
        self._instance_url = instance_url.rstrip("/")
        self._options = credentials

        await self._request(
            "GET",
            f"{self._instance_url}/api/v1/accounts/verify_credentials",
            "Token validation",
            headers=self._headers(),
        )
        self._authenticated = True
        logger.debug("[PUBLISHER] Mastodon credentials validated for %s", self._instance_url)

    async def publish(self, content: Content) -> PublishResult:
        self._ensure_authenticated()

        visibility = self._options.get("visibility", "public")
        if visibility not in self.VISIBILITIES:
            raise ValidationError(
                f"Unsupported visibility '{visibility}'",
                platform=self.platform.value,
                issues=[f"visibility must be one of {list(self.VISIBILITIES)}"],
            )

        status_text = self.build_status(content)
        if not status_text.strip():
            raise ValidationError(
                "Status text is empty",
                platform=self.platform.value,
                issues=["Content has no title, excerpt, or body"],
            )

        payload: Dict[str, Any] = {"status": status_text, "visibility": visibility}
        if self._options.get("spoiler_text"):
            payload["spoiler_text"] = self._options["spoiler_text"]
            payload["sensitive"] = True
        if self._options.get("language"):
            payload["language"] = self._options["language"]

        response = await self._request(
            "POST",
            f"{self._instance_url}/api/v1/statuses",
            "Publishing",
            headers=self._headers(),
            json=payload,
        )
        data = self._json(response, "Publishing")

        url = data.get("url") or data.get("uri")
        if not url:
            raise PublishError(
                "Mastodon response did not include a status URL",
                platform=self.platform.value,
                details={"response": data},
            )

        logger.info("[PUBLISHER] Mastodon status posted (id=%s)", data.get("id"))
        return PublishResult(
            url=url,
            platform_post_id=str(data.get("id", "")),
            response={"visibility": data.get("visibility"), "instance": self._instance_url},
        )

    async def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        try:
            token, instance_url = self._require(credentials, "access_token", "instance_url")
            self._access_token = token
            self._instance_url = instance_url.rstrip("/")
            response = await self._request(
                "GET",
                f"{self._instance_url}/api/v1/accounts/verify_credentials",
                "Connection test",
                headers=self._headers(),
            )
            account = self._json(response, "Connection test")
        except PublishError as exc:
            return ConnectionTestResult(
                success=False,
                message=str(exc),
                diagnostic={"kind": exc.kind.value, **exc.details},
            )

        return ConnectionTestResult(
            success=True,
            message=f"Connected to {self._instance_url} as @{account.get('acct', 'unknown')}",
            diagnostic={"instance": self._instance_url, "account_id": account.get("id")},
        )

    def build_status(self, content: Content) -> str:
        """Excerpt if present, else ``title + body`` truncated to the limit."""
        if content.excerpt:
            return self.truncate(content.excerpt, self.max_characters)
        text = f"{content.title}\n\n{content.body}".strip()
        return self.truncate(text, self.max_characters)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}"}


__all__ = ["MastodonPublisher"]
