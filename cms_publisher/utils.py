"""
Shared utility functions used throughout the publishing scheduler.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for Supabase TIMESTAMPTZ columns)
    - generate_id(): UUID4 string generator (for database primary keys)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_timestamp(value): Read a stored timestamp back into a UTC datetime
    - to_iso(dt): Serialize an optional datetime for storage
"""

import uuid
from datetime import datetime, timezone
from typing import Optional, Union


# ===========================================================================
# TIMEZONE UTILITIES
# All timestamps stored in Supabase must be timezone-aware (TIMESTAMPTZ)
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``
    for Supabase compatibility (TIMESTAMPTZ columns).

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """
    Generate a unique ID for database records.

    Returns:
        A unique UUID string (compatible with Supabase UUID type).
    """
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a timestamp column value into a UTC datetime.

    Accepts ISO-8601 strings (including the ``Z`` suffix PostgREST emits),
    datetimes, or ``None``.

    Returns:
        Timezone-aware UTC datetime, or ``None`` when *value* is empty.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    """Serialize an optional datetime as an ISO-8601 UTC string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
