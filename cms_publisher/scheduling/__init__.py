"""Scheduling subsystem: schedule state machine, poller, dispatch coordinator."""

from cms_publisher.scheduling.backoff import backoff_delay
from cms_publisher.scheduling.models import (
    ConnectionTestResult,
    Content,
    Destination,
    DispatchOutcome,
    PublishResult,
    Schedule,
    ScheduleStatus,
)
from cms_publisher.scheduling.coordinator import DispatchCoordinator
from cms_publisher.scheduling.poller import SchedulerLoop, TickResult

__all__ = [
    "backoff_delay",
    "ConnectionTestResult",
    "Content",
    "Destination",
    "DispatchOutcome",
    "PublishResult",
    "Schedule",
    "ScheduleStatus",
    "DispatchCoordinator",
    "SchedulerLoop",
    "TickResult",
]
