"""
Scheduling data models: ScheduleStatus, Schedule, Content, Destination.

Defines the core data structures used by the scheduling subsystem:
- ``ScheduleStatus``: Lifecycle status of a publishing intent.
- ``Schedule``: A (content, destination, time) publishing intent.
- ``Content``: The piece of content a schedule publishes (read-only here).
- ``Destination``: A configured target platform plus credentials (read-only here).
- ``PublishResult`` / ``ConnectionTestResult``: Publisher return values.
- ``DispatchOutcome``: What a single ``process_one`` call ended up doing.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from cms_publisher.utils import parse_timestamp, to_iso, utc_now


# =============================================================================
# SCHEDULE STATUS ENUM
# =============================================================================


class ScheduleStatus(Enum):
    """Lifecycle status of a schedule.

    Transitions:
        PENDING -> PUBLISHING -> PUBLISHED
                              -> PENDING   (failed attempt, budget left)
                              -> FAILED    (budget spent or non-retryable)
        PENDING -> CANCELLED
        FAILED  -> PENDING                 (manual retry only)
        PENDING / FAILED -> PUBLISHED      (publish finished after stuck recovery
                                            released its claim)
    """

    PENDING = "pending"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (no automatic transitions)."""
        return self in {
            ScheduleStatus.PUBLISHED,
            ScheduleStatus.FAILED,
            ScheduleStatus.CANCELLED,
        }


class DispatchOutcome(Enum):
    """Result of one ``DispatchCoordinator.process_one`` call."""

    SKIPPED = "skipped"  # claim lost, or released by stuck recovery
    PUBLISHED = "published"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


# =============================================================================
# SCHEDULE
# =============================================================================


@dataclass
class Schedule:
    """A publishing intent: publish ``content_id`` to ``destination_id``.

    Attributes:
        id: Unique identifier (UUID).
        content_id: Content to publish (opaque reference).
        campaign_id: Owning campaign, if any.
        destination_id: Target destination (opaque reference).
        publish_at: Earliest eligible processing time (UTC).
        status: Current lifecycle status.
        attempts: Number of failed attempts so far.
        last_attempt_at: When the last failed attempt finished.
        error: Message from the last failure.
        published_at: When publishing succeeded.
        published_url: Public URL returned by the platform.
        platform_post_id: Platform identifier of the created post.
        claimed_at: When the current (or last) claim was taken.
        next_attempt_at: Backoff floor after a failed attempt.
    """

    id: str
    content_id: str
    destination_id: str
    publish_at: datetime
    campaign_id: Optional[str] = None

    # Status tracking
    status: ScheduleStatus = ScheduleStatus.PENDING
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    error: Optional[str] = None

    # Outcome
    published_at: Optional[datetime] = None
    published_url: Optional[str] = None
    platform_post_id: Optional[str] = None

    # Claim / backoff bookkeeping
    claimed_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None

    # Metadata
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    def is_due(self, now: datetime) -> bool:
        """Whether a poller tick at *now* may claim this schedule."""
        if self.status is not ScheduleStatus.PENDING:
            return False
        if self.publish_at > now:
            return False
        return self.next_attempt_at is None or self.next_attempt_at <= now

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Schedule":
        """Convert a database row dict to a ``Schedule``."""
        return cls(
            id=row["id"],
            content_id=row.get("content_id", ""),
            campaign_id=row.get("campaign_id"),
            destination_id=row.get("destination_id", ""),
            publish_at=parse_timestamp(row["publish_at"]),
            status=ScheduleStatus(row.get("status", "pending")),
            attempts=int(row.get("attempts") or 0),
            last_attempt_at=parse_timestamp(row.get("last_attempt_at")),
            error=row.get("error"),
            published_at=parse_timestamp(row.get("published_at")),
            published_url=row.get("published_url"),
            platform_post_id=row.get("platform_post_id"),
            claimed_at=parse_timestamp(row.get("claimed_at")),
            next_attempt_at=parse_timestamp(row.get("next_attempt_at")),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a row dict suitable for insertion."""
        return {
            "id": self.id,
            "content_id": self.content_id,
            "campaign_id": self.campaign_id,
            "destination_id": self.destination_id,
            "publish_at": to_iso(self.publish_at),
            "status": self.status.value,
            "attempts": self.attempts,
            "last_attempt_at": to_iso(self.last_attempt_at),
            "error": self.error,
            "published_at": to_iso(self.published_at),
            "published_url": self.published_url,
            "platform_post_id": self.platform_post_id,
            "claimed_at": to_iso(self.claimed_at),
            "next_attempt_at": to_iso(self.next_attempt_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


# =============================================================================
# CONTENT & DESTINATION (read-only inputs)
# =============================================================================


@dataclass
class Content:
    """A piece of content as the publishers see it."""

    id: str
    title: str
    body: str
    excerpt: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    campaign_id: Optional[str] = None
    user_id: Optional[str] = None
    canonical_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Content":
        return cls(
            id=row["id"],
            title=row.get("title") or "",
            body=row.get("body") or "",
            excerpt=row.get("excerpt"),
            tags=list(row.get("tags") or []),
            campaign_id=row.get("campaign_id"),
            user_id=row.get("user_id"),
            canonical_url=row.get("canonical_url"),
        )


@dataclass
class Destination:
    """A configured publishing target.

    Attributes:
        platform: Platform-type tag used to resolve a publisher.
        config: Opaque credential/config blob handed to the publisher.
        is_active: Inactive destinations are never published to.
    """

    id: str
    name: str
    platform: str
    config: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    user_id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Destination":
        return cls(
            id=row["id"],
            name=row.get("name") or row["id"],
            platform=str(row.get("type") or row.get("platform") or "").lower(),
            config=dict(row.get("config") or {}),
            is_active=bool(row.get("is_active", True)),
            user_id=row.get("user_id"),
        )


# =============================================================================
# PUBLISHER RESULTS
# =============================================================================


@dataclass
class PublishResult:
    """Successful publish: where the content now lives."""

    url: str
    platform_post_id: Optional[str] = None
    response: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConnectionTestResult:
    """Outcome of a read-only credential probe."""

    success: bool
    message: str
    diagnostic: Dict[str, Any] = field(default_factory=dict)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "ScheduleStatus",
    "DispatchOutcome",
    "Schedule",
    "Content",
    "Destination",
    "PublishResult",
    "ConnectionTestResult",
]
