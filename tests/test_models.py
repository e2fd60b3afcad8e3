"""Tests for the scheduling data models.

Validates:
- ScheduleStatus values and is_terminal property
- Schedule defaults, is_due gating, and row round trip
- Content and Destination row conversion
"""

from datetime import datetime, timedelta, timezone

import pytest

from cms_publisher.scheduling.models import (
    Content,
    Destination,
    Schedule,
    ScheduleStatus,
)

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# ScheduleStatus enum tests
# =============================================================================


class TestScheduleStatus:
    """Tests for the ScheduleStatus enum."""

    def test_members(self):
        expected = {"PENDING", "PUBLISHING", "PUBLISHED", "FAILED", "CANCELLED"}
        assert {member.name for member in ScheduleStatus} == expected

    @pytest.mark.parametrize(
        "status",
        [ScheduleStatus.PUBLISHED, ScheduleStatus.FAILED, ScheduleStatus.CANCELLED],
        ids=["PUBLISHED", "FAILED", "CANCELLED"],
    )
    def test_is_terminal_for_terminal_statuses(self, status):
        assert status.is_terminal is True

    @pytest.mark.parametrize(
        "status",
        [ScheduleStatus.PENDING, ScheduleStatus.PUBLISHING],
        ids=["PENDING", "PUBLISHING"],
    )
    def test_is_terminal_for_active_statuses(self, status):
        assert status.is_terminal is False

    def test_string_values(self):
        assert ScheduleStatus.PENDING.value == "pending"
        assert ScheduleStatus.PUBLISHING.value == "publishing"
        assert ScheduleStatus.CANCELLED.value == "cancelled"


# =============================================================================
# Schedule dataclass tests
# =============================================================================


class TestSchedule:
    """Tests for the Schedule dataclass."""

    @pytest.fixture
    def schedule(self):
        return Schedule(
            id="sched-1",
            content_id="content-1",
            destination_id="dest-1",
            publish_at=NOW - timedelta(minutes=5),
        )

    def test_defaults(self, schedule):
        """A new schedule is PENDING with no attempts and no outcome."""
        assert schedule.status is ScheduleStatus.PENDING
        assert schedule.attempts == 0
        assert schedule.error is None
        assert schedule.published_url is None
        assert schedule.next_attempt_at is None

    def test_created_at_is_utc(self, schedule):
        assert schedule.created_at.tzinfo == timezone.utc

    def test_is_due_when_publish_at_passed(self, schedule):
        assert schedule.is_due(NOW) is True

    def test_is_due_exactly_at_publish_at(self, schedule):
        schedule.publish_at = NOW
        assert schedule.is_due(NOW) is True

    def test_not_due_before_publish_at(self, schedule):
        schedule.publish_at = NOW + timedelta(seconds=1)
        assert schedule.is_due(NOW) is False

    @pytest.mark.parametrize(
        "status",
        [s for s in ScheduleStatus if s is not ScheduleStatus.PENDING],
        ids=lambda s: s.name,
    )
    def test_only_pending_is_due(self, schedule, status):
        schedule.status = status
        assert schedule.is_due(NOW) is False

    def test_backoff_floor_blocks_until_reached(self, schedule):
        schedule.next_attempt_at = NOW + timedelta(minutes=5)
        assert schedule.is_due(NOW) is False
        assert schedule.is_due(NOW + timedelta(minutes=5)) is True

    def test_from_row_parses_timestamps_and_status(self):
        row = {
            "id": "sched-9",
            "content_id": "c",
            "destination_id": "d",
            "publish_at": "2025-06-15T12:00:00Z",
            "status": "failed",
            "attempts": 3,
            "error": "boom",
            "next_attempt_at": None,
            "created_at": "2025-06-14T12:00:00+00:00",
        }
        schedule = Schedule.from_row(row)

        assert schedule.status is ScheduleStatus.FAILED
        assert schedule.attempts == 3
        assert schedule.publish_at == NOW
        assert schedule.publish_at.tzinfo is not None
        assert schedule.next_attempt_at is None

    def test_to_row_serializes_enums_and_datetimes(self, schedule):
        row = schedule.to_row()
        assert row["status"] == "pending"
        assert row["publish_at"] == (NOW - timedelta(minutes=5)).isoformat()
        assert Schedule.from_row(row).publish_at == schedule.publish_at


# =============================================================================
# Content & Destination tests
# =============================================================================


class TestContentAndDestination:
    """Tests for the read-only input models."""

    def test_content_from_row_fills_defaults(self):
        content = Content.from_row({"id": "c1", "title": None, "body": "text"})
        assert content.title == ""
        assert content.body == "text"
        assert content.tags == []

    def test_destination_platform_from_type_column(self):
        destination = Destination.from_row({"id": "d1", "name": "Blog", "type": "DEVTO"})
        assert destination.platform == "devto"
        assert destination.is_active is True

    def test_destination_inactive_flag(self):
        destination = Destination.from_row(
            {"id": "d1", "platform": "mastodon", "is_active": False}
        )
        assert destination.is_active is False
        assert destination.name == "d1"
