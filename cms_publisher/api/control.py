"""
Transport-independent control surface for the publishing scheduler.

``SchedulerControl`` turns an ``(action, schedule_id)`` request into calls on
the scheduler loop and dispatch coordinator. The HTTP app in
``cms_publisher.api.server`` is a thin wrapper around it.

Actions:
    - ``checkPending``               run one poll pass now
    - ``retry`` / ``retrySchedule``  FAILED -> PENDING
    - ``publishNow``                 process a schedule immediately
    - ``cancel`` / ``cancelSchedule`` PENDING -> CANCELLED
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from cms_publisher.exceptions import InvalidActionError
from cms_publisher.scheduling.coordinator import DispatchCoordinator
from cms_publisher.scheduling.models import ScheduleStatus
from cms_publisher.scheduling.poller import SchedulerLoop
from cms_publisher.utils import to_iso, utc_now

logger = logging.getLogger(__name__)

ACTIONS: List[str] = [
    "checkPending",
    "retry",
    "retrySchedule",
    "publishNow",
    "cancel",
    "cancelSchedule",
]

RECENT_ACTIVITY_WINDOW = timedelta(hours=24)
RECENT_ACTIVITY_LIMIT = 10


class SchedulerControl:
    """Manual operations and health reporting for the scheduler.

    Args:
        loop: The running scheduler loop.
        coordinator: Dispatch coordinator used by manual operations.
        store: Schedule store used for statistics.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        loop: SchedulerLoop,
        coordinator: DispatchCoordinator,
        store: Any,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.loop = loop
        self.coordinator = coordinator
        self.store = store
        self.clock = clock

    async def handle_action(
        self, action: Optional[str], schedule_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Run one control action.

        Raises:
            InvalidActionError: Unknown action or missing ``scheduleId``.
            ScheduleNotFoundError: The schedule does not exist.
            InvalidStateError: The schedule's status does not allow the action.
        """
        if action not in ACTIONS:
            raise InvalidActionError(f"Invalid action. Use: {', '.join(ACTIONS)}")

        logger.info("[API] Control action %s (schedule=%s)", action, schedule_id)

        if action == "checkPending":
            result = await self.loop.trigger_now()
            return {
                "success": True,
                "message": "Checked pending jobs",
                "result": result.to_dict(),
            }

        if not schedule_id:
            raise InvalidActionError(f"scheduleId is required for {action} action")

        if action in ("retry", "retrySchedule"):
            schedule = await self.coordinator.retry(schedule_id)
            return {
                "success": True,
                "message": "Retry initiated",
                "scheduleId": schedule.id,
                "status": schedule.status.value,
            }

        if action == "publishNow":
            outcome = await self.coordinator.publish_now(schedule_id)
            return {
                "success": True,
                "message": f"Publish attempt finished: {outcome.value}",
                "scheduleId": schedule_id,
                "outcome": outcome.value,
            }

        schedule = await self.coordinator.cancel(schedule_id)
        return {
            "success": True,
            "message": "Schedule cancelled",
            "scheduleId": schedule.id,
            "status": schedule.status.value,
        }

    async def health(self) -> Dict[str, Any]:
        """Scheduler status, per-status counts and the last day's activity."""
        now = self.clock()
        counts = await self.store.count_by_status()
        statistics = {status.value: int(counts.get(status.value, 0)) for status in ScheduleStatus}
        statistics["total"] = sum(statistics.values())

        recent = await self.store.get_recent_activity(
            now - RECENT_ACTIVITY_WINDOW, limit=RECENT_ACTIVITY_LIMIT
        )
        status = self.loop.get_status()

        return {
            "status": "healthy",
            "timestamp": to_iso(now),
            "statistics": statistics,
            "recentActivity": recent,
            "scheduler": {
                "isRunning": status["is_running"],
                "pollInterval": status["poll_interval"],
                "lastTickAt": status["last_tick_at"],
            },
        }

    @staticmethod
    def describe() -> Dict[str, Any]:
        return {
            "message": "Publishing Scheduler API",
            "actions": ACTIONS,
            "usage": "POST with action and optional scheduleId",
            "health": "GET /api/scheduler?action=health",
        }


__all__ = [
    "ACTIONS",
    "SchedulerControl",
]
