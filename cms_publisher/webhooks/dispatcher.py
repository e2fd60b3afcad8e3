"""
Webhook Dispatcher: fans lifecycle events out to subscribed endpoints.

Each endpoint is delivered to independently and concurrently. A delivery is
retried on 5xx responses and network errors until the subscription's
``retry_count`` is spent, pausing ``retry_delay_ms`` between attempts. A 410
means the endpoint is gone and stops immediately; any other 4xx is a
permanent failure.

Delivery problems never propagate to the caller: ``trigger`` always returns
one ``WebhookDelivery`` per targeted endpoint.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from cms_publisher.exceptions import WebhookDeliveryError
from cms_publisher.utils import to_iso, utc_now
from cms_publisher.webhooks.formatter import PayloadFormatter, sign_payload
from cms_publisher.webhooks.models import (
    DeliveryStatus,
    WebhookDelivery,
    WebhookEvent,
    WebhookSubscription,
)

logger = logging.getLogger(__name__)

GONE_STATUS = 410
USER_AGENT = "CMS-Publisher-Webhook/1.0"
SIGNATURE_HEADER = "Signature"


class WebhookDispatcher:
    """Signs and delivers webhook payloads with bounded retry.

    Args:
        store: Optional store with ``save_webhook_delivery(record)``; when set,
            every final delivery record is persisted.
        formatter: Payload formatter (default :class:`PayloadFormatter`).
        default_retry_count: Attempts for subscriptions that do not set one.
        default_retry_delay_ms: Pause for subscriptions that do not set one.
        timeout_seconds: Per-request timeout.
        transport: Optional ``httpx`` transport override.
    """

    def __init__(
        self,
        store: Any = None,
        formatter: Optional[PayloadFormatter] = None,
        default_retry_count: int = 3,
        default_retry_delay_ms: int = 1000,
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.store = store
        self.formatter = formatter or PayloadFormatter()
        self.default_retry_count = default_retry_count
        self.default_retry_delay_ms = default_retry_delay_ms
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def trigger(
        self,
        event: WebhookEvent,
        data: Dict[str, Any],
        subscriptions: List[WebhookSubscription],
    ) -> List[WebhookDelivery]:
        """Deliver *event* to every enabled subscription that wants it."""
        targets = [sub for sub in subscriptions if sub.subscribes_to(event)]
        if not targets:
            logger.debug("[WEBHOOK] No subscribers for %s", event.value)
            return []

        logger.info("[WEBHOOK] Dispatching %s to %d endpoint(s)", event.value, len(targets))
        results = await asyncio.gather(
            *(self._deliver(sub, event, data) for sub in targets),
            return_exceptions=True,
        )

        deliveries: List[WebhookDelivery] = []
        for sub, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(
                    "[WEBHOOK] Unexpected error delivering %s to %s: %s",
                    event.value, sub.url, result,
                )
                deliveries.append(WebhookDelivery(
                    webhook_id=sub.id,
                    event=event.value,
                    url=sub.url,
                    payload={},
                    status=DeliveryStatus.FAILED,
                    error=str(result),
                ))
            else:
                deliveries.append(result)
        return deliveries

    async def test_webhook(self, subscription: WebhookSubscription) -> bool:
        """Send one sample ``content.created`` payload; True on 2xx."""
        payload = self.formatter.test_payload()
        body = self._encode(payload)
        try:
            async with self._client() as client:
                response = await client.post(
                    subscription.url,
                    content=body,
                    headers=self.build_headers(subscription, payload, body),
                )
        except httpx.HTTPError as exc:
            logger.warning("[WEBHOOK] Test delivery to %s failed: %s", subscription.url, exc)
            return False
        return response.is_success

    def build_headers(
        self,
        subscription: WebhookSubscription,
        payload: Dict[str, Any],
        body: bytes,
    ) -> Dict[str, str]:
        standard = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Webhook-Event": payload["event"],
            "X-Webhook-Timestamp": payload["timestamp"],
        }
        if subscription.secret:
            standard[SIGNATURE_HEADER] = sign_payload(body, subscription.secret)

        # Custom headers never replace the standard ones, whatever their case
        reserved = {name.lower() for name in standard} | {SIGNATURE_HEADER.lower()}
        headers = {
            name: value
            for name, value in subscription.headers.items()
            if name.lower() not in reserved
        }
        headers.update(standard)
        return headers

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver(
        self,
        subscription: WebhookSubscription,
        event: WebhookEvent,
        data: Dict[str, Any],
    ) -> WebhookDelivery:
        payload = self.formatter.format(event, data, subscription.url)
        body = self._encode(payload)
        headers = self.build_headers(subscription, payload, body)

        max_attempts = max(1, subscription.retry_count or self.default_retry_count)
        delay_ms = subscription.retry_delay_ms or self.default_retry_delay_ms

        delivery = WebhookDelivery(
            webhook_id=subscription.id,
            event=event.value,
            url=subscription.url,
            payload=payload,
        )

        async with self._client() as client:
            while delivery.attempts < max_attempts:
                delivery.attempts += 1
                try:
                    response = await self._post(client, subscription.url, body, headers)
                except WebhookDeliveryError as exc:
                    delivery.error = str(exc)
                    delivery.status_code = exc.status_code
                    self._log_attempt(delivery, exc.status_code, str(exc))

                    if exc.status_code is None or exc.status_code >= 500:
                        if delivery.attempts < max_attempts:
                            await asyncio.sleep(delay_ms / 1000)
                        continue
                    if exc.status_code == GONE_STATUS:
                        delivery.gone = True
                        logger.warning("[WEBHOOK] Endpoint gone: %s", subscription.url)
                    break

                delivery.status = DeliveryStatus.SUCCESS
                delivery.status_code = response.status_code
                delivery.response = response.text[:1000]
                delivery.error = None
                delivery.delivered_at = utc_now()
                self._log_attempt(delivery, response.status_code, None)
                break

        if not delivery.succeeded:
            delivery.status = DeliveryStatus.FAILED
            logger.warning(
                "[WEBHOOK] Delivery of %s to %s failed after %d attempt(s): %s",
                event.value, subscription.url, delivery.attempts, delivery.error,
            )

        await self._record(delivery)
        return delivery

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        body: bytes,
        headers: Dict[str, str],
    ) -> httpx.Response:
        try:
            response = await client.post(url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise WebhookDeliveryError(url, f"network error: {exc}") from exc

        if not response.is_success:
            raise WebhookDeliveryError(
                url, f"HTTP {response.status_code}", status_code=response.status_code
            )
        return response

    async def _record(self, delivery: WebhookDelivery) -> None:
        if self.store is None:
            return
        try:
            await self.store.save_webhook_delivery(delivery.to_row())
        except Exception as exc:
            logger.error("[WEBHOOK] Failed to persist delivery %s: %s", delivery.id, exc)

    @staticmethod
    def _log_attempt(
        delivery: WebhookDelivery, status_code: Optional[int], error: Optional[str]
    ) -> None:
        delivery.attempt_log.append({
            "attempt": delivery.attempts,
            "status_code": status_code,
            "error": error,
            "at": to_iso(utc_now()),
        })

    @staticmethod
    def _encode(payload: Dict[str, Any]) -> bytes:
        return json.dumps(payload, default=str).encode("utf-8")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)


__all__ = [
    "GONE_STATUS",
    "SIGNATURE_HEADER",
    "USER_AGENT",
    "WebhookDispatcher",
]
