"""Shared fixtures for the publishing scheduler test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from cms_publisher.publishers.base import BasePublisher, PlatformType
from cms_publisher.publishers.registry import PublisherRegistry
from cms_publisher.scheduling.coordinator import DispatchCoordinator
from cms_publisher.scheduling.models import (
    ConnectionTestResult,
    Content,
    PublishResult,
    Schedule,
    ScheduleStatus,
)
from cms_publisher.utils import to_iso


# ---------------------------------------------------------------------------
# Ensure we don't hit real services during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear credentials and overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "SCHEDULER_POLL_INTERVAL",
        "SCHEDULER_MAX_CONCURRENCY",
        "SCHEDULER_MAX_ATTEMPTS",
        "SCHEDULER_BACKOFF_BASE",
        "SCHEDULER_BACKOFF_MAX",
        "SCHEDULER_STUCK_TIMEOUT_MINUTES",
        "WEBHOOK_RETRY_COUNT",
        "WEBHOOK_RETRY_DELAY_MS",
        "WEBHOOK_TIMEOUT",
        "LOG_LEVEL",
        "LOG_DIR",
        "API_HOST",
        "API_PORT",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------
FIXED_NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return FIXED_NOW


# ---------------------------------------------------------------------------
# In-memory schedule store
# ---------------------------------------------------------------------------
def _column(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Enum):
        return value.value
    return value


class InMemoryScheduleStore:
    """Implements the store contract used by the scheduler.

    ``conditional_update_status`` yields to the event loop before it reads
    the row, then checks and writes without awaiting, so concurrent callers
    interleave but the compare-and-set itself stays atomic.
    """

    def __init__(self) -> None:
        self.schedules: Dict[str, Dict[str, Any]] = {}
        self.contents: Dict[str, Dict[str, Any]] = {}
        self.destinations: Dict[str, Dict[str, Any]] = {}
        self.subscriptions: List[Dict[str, Any]] = []
        self.deliveries: List[Dict[str, Any]] = []
        self.status_writes: List[tuple] = []

    # -- seeding -----------------------------------------------------------

    def add_schedule(self, schedule: Schedule) -> Schedule:
        row = schedule.to_row()
        row["updated_at"] = row["updated_at"] or row["created_at"]
        self.schedules[schedule.id] = row
        return schedule

    def add_content(self, **fields: Any) -> Dict[str, Any]:
        row = {
            "id": "content-1",
            "title": "Shipping the scheduler",
            "body": "A post about #python and #asyncio",
            "excerpt": None,
            "tags": ["python"],
            "campaign_id": "campaign-1",
            "user_id": "user-1",
        }
        row.update(fields)
        self.contents[row["id"]] = row
        return row

    def add_destination(self, **fields: Any) -> Dict[str, Any]:
        row = {
            "id": "dest-1",
            "name": "Stub Blog",
            "type": "stub",
            "config": {"api_key": "secret"},
            "is_active": True,
            "user_id": "user-1",
        }
        row.update(fields)
        self.destinations[row["id"]] = row
        return row

    def schedule(self, schedule_id: str) -> Schedule:
        return Schedule.from_row(self.schedules[schedule_id])

    # -- store contract ----------------------------------------------------

    async def find_due(self, now: datetime, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        due = [
            Schedule.from_row(row)
            for row in self.schedules.values()
            if Schedule.from_row(row).is_due(now)
        ]
        due.sort(key=lambda s: s.publish_at)
        rows = [dict(self.schedules[s.id]) for s in due]
        return rows[:limit] if limit is not None else rows

    async def conditional_update_status(
        self,
        schedule_id: str,
        expected: ScheduleStatus,
        to: ScheduleStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> bool:
        await asyncio.sleep(0)
        row = self.schedules.get(schedule_id)
        if row is None or row["status"] != expected.value:
            return False
        for key, value in (fields or {}).items():
            row[key] = _column(value)
        row["status"] = to.value
        row["updated_at"] = to_iso(FIXED_NOW)
        self.status_writes.append((schedule_id, expected, to))
        return True

    async def get_schedule(self, schedule_id: str) -> Optional[Dict[str, Any]]:
        row = self.schedules.get(schedule_id)
        return dict(row) if row is not None else None

    async def update_schedule(self, schedule_id: str, fields: Dict[str, Any]) -> None:
        for key, value in fields.items():
            self.schedules[schedule_id][key] = _column(value)

    async def find_stuck(self, cutoff: datetime) -> List[Dict[str, Any]]:
        stuck = []
        for row in self.schedules.values():
            schedule = Schedule.from_row(row)
            if (
                schedule.status is ScheduleStatus.PUBLISHING
                and schedule.claimed_at is not None
                and schedule.claimed_at <= cutoff
            ):
                stuck.append(dict(row))
        return stuck

    async def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in ScheduleStatus}
        for row in self.schedules.values():
            counts[row["status"]] += 1
        return counts

    async def get_recent_activity(self, since: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        rows = [
            {"id": row["id"], "status": row["status"], "updated_at": row["updated_at"]}
            for row in self.schedules.values()
            if row["updated_at"] and row["updated_at"] >= to_iso(since)
        ]
        rows.sort(key=lambda r: r["updated_at"], reverse=True)
        return rows[:limit]

    async def get_content(self, content_id: str) -> Optional[Dict[str, Any]]:
        return self.contents.get(content_id)

    async def get_destination(self, destination_id: str) -> Optional[Dict[str, Any]]:
        return self.destinations.get(destination_id)

    async def get_webhook_subscriptions(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [
            sub for sub in self.subscriptions
            if sub.get("enabled", True) and (user_id is None or sub.get("user_id") == user_id)
        ]

    async def save_webhook_delivery(self, record: Dict[str, Any]) -> str:
        self.deliveries.append(record)
        return record["id"]


@pytest.fixture
def store():
    store = InMemoryScheduleStore()
    store.add_content()
    store.add_destination()
    return store


def _make_schedule(
    schedule_id: str = "sched-1",
    publish_at: datetime = FIXED_NOW - timedelta(minutes=1),
    **fields: Any,
) -> Schedule:
    return Schedule(
        id=schedule_id,
        content_id=fields.pop("content_id", "content-1"),
        destination_id=fields.pop("destination_id", "dest-1"),
        campaign_id=fields.pop("campaign_id", "campaign-1"),
        publish_at=publish_at,
        created_at=FIXED_NOW - timedelta(days=1),
        **fields,
    )


@pytest.fixture
def make_schedule():
    """Factory for schedules pointing at the seeded content and destination."""
    return _make_schedule


# ---------------------------------------------------------------------------
# Publishers and collaborators
# ---------------------------------------------------------------------------
class StubPublisher(BasePublisher):
    """Publisher whose outcomes are scripted per call.

    ``outcomes`` items are ``PublishResult`` instances or exceptions; once
    exhausted every call succeeds.
    ``during_publish`` is an optional coroutine function awaited mid-publish.
    """

    platform = PlatformType.WEBHOOK

    def __init__(self, outcomes: Optional[list] = None, delay: float = 0.0) -> None:
        super().__init__()
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.publish_calls = 0
        self.during_publish: Optional[Callable[[], Awaitable[None]]] = None
        self.credentials: Optional[Dict[str, Any]] = None

    async def authenticate(self, credentials: Dict[str, Any]) -> None:
        self.credentials = credentials
        self._authenticated = True

    async def publish(self, content: Content) -> PublishResult:
        self._ensure_authenticated()
        self.publish_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.during_publish is not None:
            await self.during_publish()
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome or PublishResult(
            url=f"https://blog.example.com/{content.id}", platform_post_id="post-42"
        )

    async def test_connection(self, credentials: Dict[str, Any]) -> ConnectionTestResult:
        return ConnectionTestResult(success=True, message="ok")


class RecordingWebhooks:
    """Stands in for WebhookDispatcher and records every trigger call."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []

    async def trigger(self, event, data, subscriptions):
        self.calls.append((event, data, subscriptions))
        return []

    @property
    def events(self) -> List[str]:
        return [event.value for event, _, _ in self.calls]


@pytest.fixture
def stub_publisher():
    return StubPublisher()


@pytest.fixture
def registry(stub_publisher):
    return PublisherRegistry({"stub": lambda: stub_publisher})


@pytest.fixture
def webhooks():
    return RecordingWebhooks()


@pytest.fixture
def coordinator(store, registry, webhooks, clock):
    return DispatchCoordinator(
        store,
        registry,
        webhooks,
        max_attempts=3,
        backoff_base_seconds=300,
        backoff_max_seconds=3600,
        stuck_timeout_minutes=10,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client with a chainable query builder."""
    client = MagicMock()
    table_mock = MagicMock()
    for method in ("select", "insert", "update", "eq", "gte", "lte", "or_", "order", "limit"):
        getattr(table_mock, method).return_value = table_mock
    table_mock.execute = AsyncMock(return_value=MagicMock(data=[], count=0))
    client.table.return_value = table_mock
    return client
