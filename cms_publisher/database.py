"""
Async Supabase store for schedules, content, destinations and webhooks.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Every schedule status transition is a single conditional write
(``UPDATE ... WHERE id = ? AND status = ?``); that write is what makes a
claim exclusive when several pollers run against the same database.

Usage::

    from cms_publisher.database import get_db

    db = await get_db()
    rows = await db.find_due(utc_now())
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import AsyncClient, create_async_client

from cms_publisher.exceptions import DatabaseError, InvalidInputError
from cms_publisher.scheduling.models import ScheduleStatus
from cms_publisher.utils import to_iso, utc_now

logger = logging.getLogger(__name__)

SCHEDULES_TABLE = "schedules"
CONTENT_TABLE = "content"
DESTINATIONS_TABLE = "destinations"
WEBHOOKS_TABLE = "webhooks"
WEBHOOK_DELIVERIES_TABLE = "webhook_deliveries"


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Raises:
        InvalidInputError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise InvalidInputError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise InvalidInputError(f"{name} cannot be empty string")


def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Convert datetimes and enums in an update dict to column values."""
    row: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = to_iso(value)
        elif isinstance(value, ScheduleStatus):
            value = value.value
        row[key] = value
    return row


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Async schedule store backed by Supabase (PostgREST).

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(cls, config: Optional[SupabaseConfig] = None) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # SCHEDULES
    # -----------------------------------------------------------------

    async def create_schedule(self, row: Dict[str, Any]) -> str:
        """Insert a schedule row.

        Args:
            row: Schedule row; must contain ``content_id``,
                ``destination_id`` and ``publish_at``.

        Returns:
            UUID of the inserted row.

        Raises:
            InvalidInputError: On missing fields.
            DatabaseError: When the insert returns no data.
        """
        if not row:
            raise InvalidInputError("schedule cannot be None or empty")
        missing = {"content_id", "destination_id", "publish_at"} - set(row)
        if missing:
            raise InvalidInputError(f"schedule missing required fields: {sorted(missing)}")

        payload = _serialize(row)
        payload.setdefault("status", ScheduleStatus.PENDING.value)
        payload.setdefault("attempts", 0)

        result = await self.client.table(SCHEDULES_TABLE).insert(payload).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]

    async def get_schedule(self, schedule_id: str) -> Optional[Dict[str, Any]]:
        validate_not_empty(schedule_id, "schedule_id")
        result = await (
            self.client.table(SCHEDULES_TABLE)
            .select("*")
            .eq("id", schedule_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def find_due(
        self, now: datetime, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """Pending schedules whose time has come, oldest first.

        A schedule is due when ``publish_at <= now`` and its backoff floor
        (``next_attempt_at``) is unset or has passed.
        """
        now_iso = to_iso(now)
        query = (
            self.client.table(SCHEDULES_TABLE)
            .select("*")
            .eq("status", ScheduleStatus.PENDING.value)
            .lte("publish_at", now_iso)
            .or_(f"next_attempt_at.is.null,next_attempt_at.lte.{now_iso}")
            .order("publish_at", desc=False)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await query.execute()
        return result.data

    async def conditional_update_status(
        self,
        schedule_id: str,
        expected: ScheduleStatus,
        to: ScheduleStatus,
        fields: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Atomically move a schedule from *expected* to *to*.

        Only succeeds if the row currently has status *expected*.

        Returns:
            ``True`` if a row matched and was updated, ``False`` otherwise.
        """
        validate_not_empty(schedule_id, "schedule_id")

        payload = _serialize(fields or {})
        payload["status"] = to.value
        payload["updated_at"] = to_iso(utc_now())

        result = await (
            self.client.table(SCHEDULES_TABLE)
            .update(payload)
            .eq("id", schedule_id)
            .eq("status", expected.value)
            .execute()
        )
        # If data is returned, the update matched
        return bool(result.data)

    async def update_schedule(self, schedule_id: str, fields: Dict[str, Any]) -> None:
        """Unconditional update of non-status fields."""
        validate_not_empty(schedule_id, "schedule_id")
        if not fields:
            raise InvalidInputError("fields cannot be empty")
        if "status" in fields:
            raise InvalidInputError(
                "status changes must go through conditional_update_status"
            )

        payload = _serialize(fields)
        payload["updated_at"] = to_iso(utc_now())
        await (
            self.client.table(SCHEDULES_TABLE)
            .update(payload)
            .eq("id", schedule_id)
            .execute()
        )

    async def find_stuck(self, cutoff: datetime) -> List[Dict[str, Any]]:
        """PUBLISHING schedules claimed at or before *cutoff*."""
        result = await (
            self.client.table(SCHEDULES_TABLE)
            .select("*")
            .eq("status", ScheduleStatus.PUBLISHING.value)
            .lte("claimed_at", to_iso(cutoff))
            .execute()
        )
        return result.data

    async def count_by_status(self) -> Dict[str, int]:
        """Number of schedules per status value."""
        counts: Dict[str, int] = {}
        for status in ScheduleStatus:
            result = await (
                self.client.table(SCHEDULES_TABLE)
                .select("id", count="exact")
                .eq("status", status.value)
                .execute()
            )
            counts[status.value] = result.count or 0
        return counts

    async def get_recent_activity(
        self, since: datetime, limit: int = 10
    ) -> List[Dict[str, Any]]:
        """Most recently touched schedules, newest first."""
        result = await (
            self.client.table(SCHEDULES_TABLE)
            .select("id, content_id, destination_id, status, attempts, error, "
                    "published_url, updated_at")
            .gte("updated_at", to_iso(since))
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return result.data

    # -----------------------------------------------------------------
    # CONTENT & DESTINATIONS (read-only)
    # -----------------------------------------------------------------

    async def get_content(self, content_id: str) -> Optional[Dict[str, Any]]:
        validate_not_empty(content_id, "content_id")
        result = await (
            self.client.table(CONTENT_TABLE)
            .select("*")
            .eq("id", content_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_destination(self, destination_id: str) -> Optional[Dict[str, Any]]:
        validate_not_empty(destination_id, "destination_id")
        result = await (
            self.client.table(DESTINATIONS_TABLE)
            .select("*")
            .eq("id", destination_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    # -----------------------------------------------------------------
    # WEBHOOKS
    # -----------------------------------------------------------------

    async def get_webhook_subscriptions(
        self, user_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Enabled webhook subscriptions, optionally scoped to one user."""
        query = (
            self.client.table(WEBHOOKS_TABLE)
            .select("*")
            .eq("enabled", True)
        )
        if user_id:
            query = query.eq("user_id", user_id)
        result = await query.execute()
        return result.data

    async def save_webhook_delivery(self, record: Dict[str, Any]) -> str:
        """Persist one delivery record (final state plus attempt log).

        Raises:
            InvalidInputError: If *record* is empty.
            DatabaseError: When the insert returns no data.
        """
        if not record:
            raise InvalidInputError("delivery record cannot be None or empty")

        result = await (
            self.client.table(WEBHOOK_DELIVERIES_TABLE)
            .insert(_serialize(record))
            .execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]


# =============================================================================
# GLOBAL DATABASE INSTANCE (Singleton)
# =============================================================================

_db_instance: Optional[SupabaseDB] = None
_db_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseDB:
    """Get the global async database instance.

    The first call creates the :class:`SupabaseDB` singleton; subsequent
    calls return the same instance.
    """
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            if _db_instance is None:
                _db_instance = await SupabaseDB.create()

    return _db_instance


__all__ = [
    "SupabaseConfig",
    "SupabaseDB",
    "get_db",
    "validate_not_empty",
]
