"""Tests for webhook formatting, signing and delivery.

Covers:
- PayloadFormatter envelope, type detection and Zapier flattening
- HMAC-SHA256 signing over the exact request body
- Retry policy: 5xx / network retried, 410 marks gone, other 4xx stop
- Subscription filtering and failure isolation in trigger()
"""

import hashlib
import hmac
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from cms_publisher.webhooks import (
    DeliveryStatus,
    PayloadFormatter,
    WebhookDispatcher,
    WebhookEvent,
    WebhookSubscription,
    sign_payload,
    verify_signature,
)
from cms_publisher.webhooks.dispatcher import USER_AGENT

TIMESTAMP = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)

EVENT_DATA = {
    "id": "sched-1",
    "type": "publication",
    "scheduleId": "sched-1",
    "campaignId": "campaign-1",
    "platform": "devto",
    "publishedUrl": "https://dev.to/writer/post",
    "userId": "user-1",
    "scheduledFor": "2025-06-15T11:59:00+00:00",
}


def _subscription(**fields) -> WebhookSubscription:
    defaults = {
        "id": "wh-1",
        "url": "https://hooks.example.com/cms",
        "user_id": "user-1",
        "events": ["publish.success", "publish.failed"],
        "retry_count": 3,
        "retry_delay_ms": 1000,
    }
    defaults.update(fields)
    return WebhookSubscription(**defaults)


class Endpoint:
    """MockTransport handler returning scripted status codes."""

    def __init__(self, *statuses: int) -> None:
        self.statuses = list(statuses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, text="ok" if status < 300 else "error")


@pytest.fixture
def no_sleep():
    with patch("cms_publisher.webhooks.dispatcher.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


def _dispatcher(handler, store=None) -> WebhookDispatcher:
    return WebhookDispatcher(store=store, transport=httpx.MockTransport(handler))


# =============================================================================
# Formatter
# =============================================================================


class TestPayloadFormatter:
    """Tests for PayloadFormatter."""

    def test_envelope(self):
        payload = PayloadFormatter().format(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, "https://hook.make.com/x", TIMESTAMP
        )

        assert payload["event"] == "publish.success"
        assert payload["timestamp"] == "2025-06-15T12:00:00+00:00"
        assert payload["data"]["id"] == "sched-1"
        assert payload["data"]["type"] == "publication"
        assert payload["data"]["publishedUrl"] == "https://dev.to/writer/post"
        assert payload["metadata"] == {
            "userId": "user-1",
            "campaignId": "campaign-1",
            "platform": "devto",
            "scheduledFor": "2025-06-15T11:59:00+00:00",
        }
        assert "flat_data" not in payload

    def test_zapier_gets_flat_data(self):
        data = {"id": "c1", "title": "Post", "author": {"name": "Ada", "id": "u1"}}
        payload = PayloadFormatter().format(
            WebhookEvent.CONTENT_CREATED, data, "https://hooks.zapier.com/hooks/catch/1/abc"
        )

        assert payload["flat_data"]["author_name"] == "Ada"
        assert payload["flat_data"]["author_id"] == "u1"
        assert payload["flat_data"]["title"] == "Post"
        assert "author" not in payload["flat_data"]

    @pytest.mark.parametrize(
        "data, expected",
        [
            ({"topicId": "t1"}, "topic"),
            ({"content": "text"}, "topic"),
            ({"campaignId": "c1"}, "campaign"),
            ({"title": "x"}, "publication"),
        ],
    )
    def test_determine_type(self, data, expected):
        assert PayloadFormatter.determine_type(data) == expected

    def test_missing_id_is_generated(self):
        payload = PayloadFormatter().format(WebhookEvent.CONTENT_UPDATED, {}, "https://x.example")
        assert payload["data"]["id"]

    def test_test_payload(self):
        payload = PayloadFormatter().test_payload(TIMESTAMP)
        assert payload["event"] == "content.created"
        assert payload["data"]["test"] is True
        assert payload["data"]["id"].startswith("test-")


# =============================================================================
# Signing
# =============================================================================


class TestSigning:
    """HMAC-SHA256 over the exact body bytes."""

    def test_sign_payload_format(self):
        body = b'{"event":"publish.success"}'
        expected = hmac.new(b"abc123", body, hashlib.sha256).hexdigest()

        assert sign_payload(body, "abc123") == f"sha256={expected}"

    def test_verify_signature(self):
        body = b"{}"
        signature = sign_payload(body, "abc123")

        assert verify_signature(body, "abc123", signature) is True
        assert verify_signature(body, "other", signature) is False
        assert verify_signature(b"{ }", "abc123", signature) is False

    @pytest.mark.asyncio
    async def test_delivery_header_matches_body(self):
        endpoint = Endpoint(200)
        dispatcher = _dispatcher(endpoint)

        await dispatcher.trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription(secret="abc123")]
        )

        request = endpoint.requests[0]
        expected = hmac.new(b"abc123", request.content, hashlib.sha256).hexdigest()
        assert request.headers["Signature"] == f"sha256={expected}"
        assert json.loads(request.content)["event"] == "publish.success"

    @pytest.mark.asyncio
    async def test_unsigned_without_secret(self):
        endpoint = Endpoint(200)

        await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert "Signature" not in endpoint.requests[0].headers

    @pytest.mark.asyncio
    async def test_standard_and_custom_headers(self):
        endpoint = Endpoint(200)

        await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS,
            EVENT_DATA,
            [_subscription(headers={"X-Team": "growth"})],
        )

        headers = endpoint.requests[0].headers
        assert headers["Content-Type"] == "application/json"
        assert headers["User-Agent"] == USER_AGENT
        assert headers["X-Webhook-Event"] == "publish.success"
        assert headers["X-Webhook-Timestamp"]
        assert headers["X-Team"] == "growth"

    @pytest.mark.asyncio
    async def test_custom_headers_cannot_replace_standard_ones(self):
        endpoint = Endpoint(200)
        custom = {
            "content-type": "text/plain",
            "X-Webhook-Event": "content.deleted",
            "X-Webhook-Timestamp": "1970-01-01T00:00:00Z",
            "Signature": "sha256=forged",
            "X-Team": "growth",
        }

        await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS,
            EVENT_DATA,
            [_subscription(secret="abc123", headers=custom)],
        )

        request = endpoint.requests[0]
        expected = hmac.new(b"abc123", request.content, hashlib.sha256).hexdigest()
        assert request.headers.get_list("Content-Type") == ["application/json"]
        assert request.headers.get_list("X-Webhook-Event") == ["publish.success"]
        assert request.headers["X-Webhook-Timestamp"] != "1970-01-01T00:00:00Z"
        assert request.headers.get_list("Signature") == [f"sha256={expected}"]
        assert request.headers["X-Team"] == "growth"

    @pytest.mark.asyncio
    async def test_custom_signature_header_dropped_without_secret(self):
        endpoint = Endpoint(200)

        await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS,
            EVENT_DATA,
            [_subscription(headers={"signature": "sha256=forged"})],
        )

        assert "Signature" not in endpoint.requests[0].headers


# =============================================================================
# Delivery and retry
# =============================================================================


class TestDelivery:
    """Retry policy of a single delivery."""

    @pytest.mark.asyncio
    async def test_success_first_try(self, no_sleep):
        endpoint = Endpoint(200)

        [delivery] = await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert delivery.status is DeliveryStatus.SUCCESS
        assert delivery.attempts == 1
        assert delivery.status_code == 200
        assert delivery.delivered_at is not None
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_server_error_retried_up_to_retry_count(self, no_sleep):
        endpoint = Endpoint(500)

        [delivery] = await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_FAILED, EVENT_DATA, [_subscription(retry_count=3, retry_delay_ms=250)]
        )

        assert len(endpoint.requests) == 3
        assert delivery.status is DeliveryStatus.FAILED
        assert delivery.attempts == 3
        assert delivery.status_code == 500
        assert [entry["status_code"] for entry in delivery.attempt_log] == [500, 500, 500]
        # No pause after the final attempt
        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(0.25)

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, no_sleep):
        endpoint = Endpoint(503, 200)

        [delivery] = await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert delivery.succeeded
        assert delivery.attempts == 2
        assert delivery.error is None

    @pytest.mark.asyncio
    async def test_gone_stops_after_one_attempt(self, no_sleep):
        endpoint = Endpoint(410)

        [delivery] = await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert len(endpoint.requests) == 1
        assert delivery.gone is True
        assert delivery.status is DeliveryStatus.FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 401, 404, 422])
    async def test_client_error_is_not_retried(self, no_sleep, status):
        endpoint = Endpoint(status)

        [delivery] = await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert len(endpoint.requests) == 1
        assert delivery.gone is False
        assert delivery.status_code == status
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self, no_sleep):
        calls = 0

        def handler(request):
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("refused")

        [delivery] = await _dispatcher(handler).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription(retry_count=2)]
        )

        assert calls == 2
        assert delivery.status_code is None
        assert "network error" in delivery.error

    @pytest.mark.asyncio
    async def test_final_record_is_persisted(self, store):
        endpoint = Endpoint(200)

        await _dispatcher(endpoint, store=store).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert len(store.deliveries) == 1
        record = store.deliveries[0]
        assert record["webhook_id"] == "wh-1"
        assert record["status"] == "success"
        assert record["event"] == "publish.success"

    @pytest.mark.asyncio
    async def test_store_failure_is_absorbed(self):
        class BrokenStore:
            async def save_webhook_delivery(self, record):
                raise RuntimeError("insert failed")

        [delivery] = await _dispatcher(Endpoint(200), store=BrokenStore()).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert delivery.succeeded


# =============================================================================
# Fan-out
# =============================================================================


class TestTrigger:
    """Subscription filtering and isolation between endpoints."""

    @pytest.mark.asyncio
    async def test_only_enabled_subscribers_receive_event(self):
        endpoint = Endpoint(200)
        subscriptions = [
            _subscription(id="a", url="https://a.example/hook"),
            _subscription(id="b", url="https://b.example/hook", enabled=False),
            _subscription(id="c", url="https://c.example/hook", events=["content.created"]),
        ]

        deliveries = await _dispatcher(endpoint).trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, subscriptions
        )

        assert [d.webhook_id for d in deliveries] == ["a"]
        assert [str(r.url) for r in endpoint.requests] == ["https://a.example/hook"]

    @pytest.mark.asyncio
    async def test_no_subscribers(self):
        assert await _dispatcher(Endpoint(200)).trigger(WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, []) == []

    @pytest.mark.asyncio
    async def test_one_failing_endpoint_does_not_block_others(self, no_sleep):
        def handler(request):
            status = 500 if request.url.host == "down.example" else 200
            return httpx.Response(status)

        deliveries = await _dispatcher(handler).trigger(
            WebhookEvent.PUBLISH_SUCCESS,
            EVENT_DATA,
            [
                _subscription(id="down", url="https://down.example/hook"),
                _subscription(id="up", url="https://up.example/hook"),
            ],
        )

        by_id = {d.webhook_id: d for d in deliveries}
        assert by_id["down"].status is DeliveryStatus.FAILED
        assert by_id["up"].status is DeliveryStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failed_delivery(self):
        dispatcher = _dispatcher(Endpoint(200))
        dispatcher.formatter = None

        [delivery] = await dispatcher.trigger(
            WebhookEvent.PUBLISH_SUCCESS, EVENT_DATA, [_subscription()]
        )

        assert delivery.status is DeliveryStatus.FAILED
        assert delivery.error

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, expected", [(200, True), (500, False)])
    async def test_test_webhook(self, status, expected):
        endpoint = Endpoint(status)

        assert await _dispatcher(endpoint).test_webhook(_subscription()) is expected
        assert json.loads(endpoint.requests[0].content)["event"] == "content.created"
