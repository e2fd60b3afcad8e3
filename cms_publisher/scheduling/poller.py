"""
Background scheduler loop that hands due schedules to the dispatch coordinator.

``SchedulerLoop`` runs as an asyncio background task. Every ``poll_interval``
seconds it:

1. Fetches schedules that are due (``PENDING``, ``publish_at <= now``),
   oldest first.
2. Hands each one to :meth:`DispatchCoordinator.process_one`, at most
   ``max_concurrency`` at a time. The coordinator's conditional claim, not
   this loop, guarantees a schedule is processed once.
3. Every ``recovery_interval_cycles`` ticks, releases claims that have been
   stuck in ``PUBLISHING`` for too long.

A loop instance never runs two ticks at once: a timer tick that comes due
while a manual :meth:`trigger_now` pass is still running is skipped.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from cms_publisher.scheduling.coordinator import DispatchCoordinator
from cms_publisher.scheduling.models import DispatchOutcome
from cms_publisher.utils import to_iso, utc_now

logger = logging.getLogger(__name__)


@dataclass
class TickResult:
    """Summary of one poll pass.

    Attributes:
        found: Due schedules returned by the store.
        processed: Schedules the coordinator finished with (any outcome).
        outcomes: Count per ``DispatchOutcome``.
        recovered: Stuck claims released during this tick.
        errors: Schedules whose processing raised (e.g. store outage).
        skipped: The whole tick was skipped because another was running.
    """

    found: int = 0
    processed: int = 0
    outcomes: Dict[DispatchOutcome, int] = field(default_factory=dict)
    recovered: int = 0
    errors: int = 0
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "found": self.found,
            "processed": self.processed,
            "outcomes": {outcome.value: n for outcome, n in self.outcomes.items()},
            "recovered": self.recovered,
            "errors": self.errors,
            "skipped": self.skipped,
        }


class SchedulerLoop:
    """Periodic poller driving the dispatch coordinator.

    Args:
        coordinator: Processes one schedule per call.
        store: Schedule store providing ``find_due(now)``.
        poll_interval: Seconds between ticks (default: 60).
        max_concurrency: Schedules dispatched in parallel within a tick.
        recovery_interval_cycles: Run stuck-claim recovery every N ticks
            (``0`` disables it).
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        coordinator: DispatchCoordinator,
        store: Any,
        poll_interval: float = 60.0,
        max_concurrency: int = 5,
        recovery_interval_cycles: int = 10,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.coordinator = coordinator
        self.store = store
        self.poll_interval = poll_interval
        self.max_concurrency = max(1, max_concurrency)
        self.recovery_interval_cycles = recovery_interval_cycles
        self.clock = clock

        self._running: bool = False
        self._task: Optional["asyncio.Task[None]"] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._tick_lock: Optional[asyncio.Lock] = None

        self.ticks: int = 0
        self.last_tick_at: Optional[datetime] = None
        self.last_result: Optional[TickResult] = None

    # ================================================================
    # LIFECYCLE
    # ================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loop. Calling it again while running is a no-op."""
        if self._running:
            return
        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "[SCHEDULER] Scheduler loop started (interval=%ss, concurrency=%d)",
            self.poll_interval,
            self.max_concurrency,
        )

    async def stop(self) -> None:
        """Stop ticking and wait for the in-flight tick to finish.

        Ticks are never cancelled mid-way, so no schedule is left claimed
        by a loop that has gone away. Also waits for a manual
        :meth:`trigger_now` pass, even when the loop was never started.
        Idempotent.
        """
        was_running = self._running
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

        task, self._task = self._task, None
        if task is not None:
            await task
        async with self._lock():
            pass
        if not was_running:
            return
        logger.info("[SCHEDULER] Scheduler loop stopped after %d tick(s)", self.ticks)

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self._running,
            "poll_interval": self.poll_interval,
            "last_tick_at": to_iso(self.last_tick_at),
            "ticks": self.ticks,
        }

    async def trigger_now(self) -> TickResult:
        """Run one pass immediately, waiting for an in-flight tick first."""
        async with self._lock():
            return await self._tick()

    # ================================================================
    # LOOP
    # ================================================================

    async def _run(self) -> None:
        while self._running:
            await self._timer_tick()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _timer_tick(self) -> Optional[TickResult]:
        lock = self._lock()
        if lock.locked():
            logger.info("[SCHEDULER] Previous tick still running, skipping this one")
            return TickResult(skipped=True)

        try:
            async with lock:
                return await self._tick()
        except Exception:
            logger.exception("[SCHEDULER] Unexpected error in scheduler tick")
            return None

    async def _tick(self) -> TickResult:
        now = self.clock()
        rows = await self.store.find_due(now)
        result = TickResult(found=len(rows))

        if rows:
            logger.info("[SCHEDULER] Found %d schedule(s) due for publishing", len(rows))
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def dispatch(schedule_id: str) -> DispatchOutcome:
                async with semaphore:
                    return await self.coordinator.process_one(schedule_id)

            schedule_ids = [row["id"] for row in rows]
            outcomes = await asyncio.gather(
                *(dispatch(schedule_id) for schedule_id in schedule_ids),
                return_exceptions=True,
            )
            for schedule_id, outcome in zip(schedule_ids, outcomes):
                if isinstance(outcome, BaseException):
                    result.errors += 1
                    logger.error(
                        "[SCHEDULER] Processing schedule %s raised: %s", schedule_id, outcome
                    )
                    continue
                result.processed += 1
                result.outcomes[outcome] = result.outcomes.get(outcome, 0) + 1

        self.ticks += 1
        self.last_tick_at = now

        if self.recovery_interval_cycles and self.ticks % self.recovery_interval_cycles == 0:
            logger.debug("[SCHEDULER] Running stuck-claim recovery")
            result.recovered = await self.coordinator.recover_stuck()

        self.last_result = result
        return result

    def _lock(self) -> asyncio.Lock:
        # Created lazily so the lock binds to the running event loop
        if self._tick_lock is None:
            self._tick_lock = asyncio.Lock()
        return self._tick_lock


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "SchedulerLoop",
    "TickResult",
]
