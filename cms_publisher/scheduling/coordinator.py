"""
Dispatch coordinator: takes one schedule from claim to final state.

``DispatchCoordinator.process_one`` is the only place a schedule moves out
of ``PUBLISHING``. Every status change is a conditional write against the
store, so two pollers (or a poller and a manual ``publish_now``) racing for
the same schedule end with exactly one publish attempt.

Failure handling:
    - Transient errors (network, 5xx, rate limits) go back to ``PENDING``
      with an exponential backoff floor until ``max_attempts`` is reached.
    - Validation and permanent errors (bad credentials, rejected payload,
      unknown platform, missing content) fail the schedule immediately.
    - Anything that is not a ``PublishError`` is treated as transient.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple

from cms_publisher.exceptions import (
    InvalidStateError,
    PublishError,
    ScheduleNotFoundError,
    TransientError,
)
from cms_publisher.logging.models import LogComponent, LogLevel
from cms_publisher.scheduling.backoff import backoff_delay
from cms_publisher.scheduling.models import (
    Content,
    Destination,
    DispatchOutcome,
    PublishResult,
    Schedule,
    ScheduleStatus,
)
from cms_publisher.utils import to_iso, utc_now
from cms_publisher.webhooks.models import WebhookEvent, WebhookSubscription

if TYPE_CHECKING:
    from cms_publisher.logging.activity_logger import ActivityLogger
    from cms_publisher.publishers.registry import PublisherRegistry
    from cms_publisher.webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


class DispatchCoordinator:
    """Claims, publishes and finalizes schedules.

    Args:
        store: Schedule store (see :class:`~cms_publisher.database.SupabaseDB`).
        registry: Platform tag -> publisher resolver.
        webhooks: Optional dispatcher for ``publish.success`` / ``publish.failed``.
        max_attempts: Failed attempts after which a schedule is FAILED.
        backoff_base_seconds: Delay after the first failed attempt.
        backoff_max_seconds: Upper bound for the backoff delay.
        stuck_timeout_minutes: Age after which a PUBLISHING claim is abandoned.
        activity_log: Optional structured activity logger.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: Any,
        registry: "PublisherRegistry",
        webhooks: Optional["WebhookDispatcher"] = None,
        max_attempts: int = 3,
        backoff_base_seconds: float = 300.0,
        backoff_max_seconds: float = 3600.0,
        stuck_timeout_minutes: int = 10,
        activity_log: Optional["ActivityLogger"] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.registry = registry
        self.webhooks = webhooks
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.stuck_timeout = timedelta(minutes=stuck_timeout_minutes)
        self.activity_log = activity_log
        self.clock = clock

    # ================================================================
    # PROCESS ONE
    # ================================================================

    async def process_one(self, schedule_id: str) -> DispatchOutcome:
        """Claim *schedule_id* and attempt to publish it once.

        Returns:
            ``SKIPPED`` when another worker holds (or finished) the schedule,
            or when stuck recovery released the claim and the outcome could
            not be recorded; otherwise the state the schedule ended in.
        """
        claimed = await self.store.conditional_update_status(
            schedule_id,
            ScheduleStatus.PENDING,
            ScheduleStatus.PUBLISHING,
            {"claimed_at": self.clock()},
        )
        if not claimed:
            logger.debug("[DISPATCH] Schedule %s already claimed, skipping", schedule_id)
            return DispatchOutcome.SKIPPED

        started = time.monotonic()
        schedule: Optional[Schedule] = None
        content: Optional[Content] = None
        destination: Optional[Destination] = None

        try:
            schedule, content, destination = await self._load(schedule_id)
            publisher = self.registry.resolve(destination.platform)

            logger.info(
                "[DISPATCH] Publishing schedule %s to %s (%s)",
                schedule_id, destination.name, destination.platform,
            )
            await publisher.authenticate(destination.config)
            result = await publisher.publish(content)
        except PublishError as exc:
            return await self._handle_failure(schedule_id, schedule, content, destination, exc)
        except Exception as exc:
            logger.exception("[DISPATCH] Unexpected error publishing schedule %s", schedule_id)
            error = TransientError(f"Unexpected error: {exc}")
            return await self._handle_failure(schedule_id, schedule, content, destination, error)

        duration_ms = int((time.monotonic() - started) * 1000)
        return await self._handle_success(schedule, content, destination, result, duration_ms)

    async def _load(self, schedule_id: str) -> Tuple[Schedule, Content, Destination]:
        row = await self.store.get_schedule(schedule_id)
        if row is None:
            raise PublishError(f"Schedule {schedule_id} vanished after claim")
        schedule = Schedule.from_row(row)

        content_row = await self.store.get_content(schedule.content_id)
        if content_row is None:
            raise PublishError(f"Content {schedule.content_id} not found")

        destination_row = await self.store.get_destination(schedule.destination_id)
        if destination_row is None:
            raise PublishError(f"Destination {schedule.destination_id} not found")
        destination = Destination.from_row(destination_row)
        if not destination.is_active:
            raise PublishError(
                f"Destination {destination.name} is inactive", platform=destination.platform
            )

        return schedule, Content.from_row(content_row), destination

    # ================================================================
    # OUTCOMES
    # ================================================================

    async def _handle_success(
        self,
        schedule: Schedule,
        content: Content,
        destination: Destination,
        result: PublishResult,
        duration_ms: int,
    ) -> DispatchOutcome:
        now = self.clock()
        fields = {
            "published_at": now,
            "published_url": result.url,
            "platform_post_id": result.platform_post_id,
            "error": None,
            "next_attempt_at": None,
        }
        finalized = await self.store.conditional_update_status(
            schedule.id, ScheduleStatus.PUBLISHING, ScheduleStatus.PUBLISHED, fields
        )
        if not finalized:
            # Stuck recovery released the claim mid-publish; the post exists
            # so the row must not be claimed again
            released = await self._record_late_publication(schedule.id, fields)
            if released is not None:
                schedule = released
                finalized = True
        if not finalized:
            logger.error(
                "[DISPATCH] Schedule %s was published to %s but the result could not be recorded",
                schedule.id, result.url,
            )
            await self._record(
                LogLevel.ERROR,
                "Published but result not recorded",
                schedule,
                data={"url": result.url, "platform_post_id": result.platform_post_id},
                duration_ms=duration_ms,
            )
            return DispatchOutcome.SKIPPED

        schedule.status = ScheduleStatus.PUBLISHED
        schedule.published_at = now
        schedule.published_url = result.url
        schedule.platform_post_id = result.platform_post_id
        schedule.error = None

        logger.info(
            "[DISPATCH] Published schedule %s -> %s (%dms)",
            schedule.id, result.url, duration_ms,
        )
        await self._record(
            LogLevel.INFO,
            "Published",
            schedule,
            data={"url": result.url, "platform_post_id": result.platform_post_id},
            duration_ms=duration_ms,
        )
        await self._emit(WebhookEvent.PUBLISH_SUCCESS, schedule, content, destination)
        return DispatchOutcome.PUBLISHED

    async def _record_late_publication(
        self, schedule_id: str, fields: Dict[str, Any]
    ) -> Optional[Schedule]:
        """Mark a released schedule PUBLISHED from wherever recovery left it.

        Returns the updated schedule, or ``None`` when the row had moved on
        (re-claimed, cancelled or deleted) and nothing was written.
        """
        for released in (ScheduleStatus.PENDING, ScheduleStatus.FAILED):
            recorded = await self.store.conditional_update_status(
                schedule_id, released, ScheduleStatus.PUBLISHED, fields
            )
            if recorded:
                logger.warning(
                    "[DISPATCH] Schedule %s finished publishing after its claim was "
                    "released (%s -> published)",
                    schedule_id, released.value,
                )
                return await self._reload(schedule_id)
        return None

    async def _handle_failure(
        self,
        schedule_id: str,
        schedule: Optional[Schedule],
        content: Optional[Content],
        destination: Optional[Destination],
        error: PublishError,
    ) -> DispatchOutcome:
        if schedule is None:
            schedule = await self._reload(schedule_id)

        now = self.clock()
        attempts = schedule.attempts + 1
        message = str(error)
        give_up = not error.retryable or attempts >= self.max_attempts

        fields: Dict[str, Any] = {
            "attempts": attempts,
            "last_attempt_at": now,
            "error": message,
        }
        if give_up:
            target = ScheduleStatus.FAILED
            fields["next_attempt_at"] = None
        else:
            target = ScheduleStatus.PENDING
            fields["next_attempt_at"] = now + backoff_delay(
                attempts, self.backoff_base_seconds, self.backoff_max_seconds
            )

        updated = await self.store.conditional_update_status(
            schedule_id, ScheduleStatus.PUBLISHING, target, fields
        )
        if not updated:
            # Stuck recovery already counted this attempt and emitted any event
            logger.warning(
                "[DISPATCH] Schedule %s left PUBLISHING before its failure was recorded: %s",
                schedule_id, message,
            )
            return DispatchOutcome.SKIPPED

        schedule.status = target
        schedule.attempts = attempts
        schedule.last_attempt_at = now
        schedule.error = message
        schedule.next_attempt_at = fields["next_attempt_at"]

        if give_up:
            reason = "non-retryable" if not error.retryable else "attempts exhausted"
            logger.error(
                "[DISPATCH] Schedule %s failed (%s, attempt %d/%d): %s",
                schedule_id, reason, attempts, self.max_attempts, message,
            )
            await self._record(
                LogLevel.ERROR,
                f"Failed ({reason})",
                schedule,
                data={"kind": error.kind.value, "attempts": attempts},
                error=error,
            )
            await self._emit(WebhookEvent.PUBLISH_FAILED, schedule, content, destination)
            return DispatchOutcome.FAILED

        logger.warning(
            "[DISPATCH] Schedule %s attempt %d/%d failed, retrying after %s: %s",
            schedule_id, attempts, self.max_attempts,
            to_iso(schedule.next_attempt_at), message,
        )
        await self._record(
            LogLevel.WARNING,
            "Attempt failed, retry scheduled",
            schedule,
            data={"attempts": attempts, "next_attempt_at": to_iso(schedule.next_attempt_at)},
            error=error,
        )
        return DispatchOutcome.RETRY_SCHEDULED

    async def _reload(self, schedule_id: str) -> Schedule:
        """Best-effort reload so a failed load still counts an attempt."""
        try:
            row = await self.store.get_schedule(schedule_id)
        except Exception as exc:
            logger.error("[DISPATCH] Could not reload schedule %s: %s", schedule_id, exc)
            row = None
        if row is not None:
            return Schedule.from_row(row)
        return Schedule(
            id=schedule_id,
            content_id="",
            destination_id="",
            publish_at=self.clock(),
            status=ScheduleStatus.PUBLISHING,
        )

    # ================================================================
    # MANUAL OPERATIONS
    # ================================================================

    async def get(self, schedule_id: str) -> Schedule:
        """Load a schedule or raise ``ScheduleNotFoundError``."""
        row = await self.store.get_schedule(schedule_id)
        if row is None:
            raise ScheduleNotFoundError(schedule_id)
        return Schedule.from_row(row)

    async def retry(self, schedule_id: str) -> Schedule:
        """Move a FAILED schedule back to PENDING.

        ``attempts`` is kept as is, so a schedule that spent its budget gets
        exactly one more attempt. The schedule is not published here; the
        next poll picks it up.

        Raises:
            ScheduleNotFoundError: Unknown id.
            InvalidStateError: The schedule is not FAILED.
        """
        schedule = await self.get(schedule_id)
        if schedule.status is not ScheduleStatus.FAILED:
            raise InvalidStateError(schedule_id, schedule.status.value, "retry")

        updated = await self.store.conditional_update_status(
            schedule_id,
            ScheduleStatus.FAILED,
            ScheduleStatus.PENDING,
            {"error": None, "next_attempt_at": None},
        )
        if not updated:
            current = await self.get(schedule_id)
            raise InvalidStateError(schedule_id, current.status.value, "retry")

        logger.info(
            "[DISPATCH] Schedule %s queued for manual retry (attempts so far: %d)",
            schedule_id, schedule.attempts,
        )
        schedule.status = ScheduleStatus.PENDING
        schedule.error = None
        schedule.next_attempt_at = None
        await self._record(LogLevel.INFO, "Manual retry requested", schedule)
        return schedule

    async def publish_now(self, schedule_id: str) -> DispatchOutcome:
        """Process a schedule immediately, ignoring ``publish_at`` and backoff.

        Raises:
            ScheduleNotFoundError: Unknown id.
        """
        await self.get(schedule_id)
        logger.info("[DISPATCH] Immediate publish requested for %s", schedule_id)
        return await self.process_one(schedule_id)

    async def cancel(self, schedule_id: str) -> Schedule:
        """Cancel a PENDING schedule.

        Raises:
            ScheduleNotFoundError: Unknown id.
            InvalidStateError: The schedule is not PENDING.
        """
        schedule = await self.get(schedule_id)
        if schedule.status is not ScheduleStatus.PENDING:
            raise InvalidStateError(schedule_id, schedule.status.value, "cancel")

        cancelled = await self.store.conditional_update_status(
            schedule_id, ScheduleStatus.PENDING, ScheduleStatus.CANCELLED, {}
        )
        if not cancelled:
            current = await self.get(schedule_id)
            raise InvalidStateError(schedule_id, current.status.value, "cancel")

        schedule.status = ScheduleStatus.CANCELLED
        logger.info("[DISPATCH] Schedule %s cancelled", schedule_id)
        await self._record(LogLevel.INFO, "Cancelled", schedule)
        return schedule

    # ================================================================
    # RECOVERY
    # ================================================================

    async def recover_stuck(self) -> int:
        """Release claims older than the stuck timeout.

        An abandoned claim counts as one failed attempt.

        Returns:
            Number of schedules released.
        """
        now = self.clock()
        rows = await self.store.find_stuck(now - self.stuck_timeout)
        recovered = 0

        for row in rows:
            schedule = Schedule.from_row(row)
            attempts = schedule.attempts + 1
            message = f"Publishing timed out after {self.stuck_timeout} without completing"
            fields: Dict[str, Any] = {
                "attempts": attempts,
                "last_attempt_at": now,
                "error": message,
            }
            if attempts >= self.max_attempts:
                target = ScheduleStatus.FAILED
                fields["next_attempt_at"] = None
            else:
                target = ScheduleStatus.PENDING
                fields["next_attempt_at"] = now + backoff_delay(
                    attempts, self.backoff_base_seconds, self.backoff_max_seconds
                )

            released = await self.store.conditional_update_status(
                schedule.id, ScheduleStatus.PUBLISHING, target, fields
            )
            if not released:
                continue

            recovered += 1
            schedule.status = target
            schedule.attempts = attempts
            schedule.error = message
            logger.warning(
                "[DISPATCH] Recovered stuck schedule %s -> %s (attempt %d/%d)",
                schedule.id, target.value, attempts, self.max_attempts,
            )
            await self._record(
                LogLevel.WARNING, f"Recovered stuck claim -> {target.value}", schedule
            )
            if target is ScheduleStatus.FAILED:
                await self._emit(WebhookEvent.PUBLISH_FAILED, schedule, None, None)

        return recovered

    # ================================================================
    # SIDE CHANNELS
    # ================================================================

    async def _emit(
        self,
        event: WebhookEvent,
        schedule: Schedule,
        content: Optional[Content],
        destination: Optional[Destination],
    ) -> None:
        """Fan out a lifecycle event. Never raises."""
        if self.webhooks is None:
            return
        try:
            user_id = (content.user_id if content else None) or (
                destination.user_id if destination else None
            )
            rows = await self.store.get_webhook_subscriptions(user_id)
            subscriptions = [WebhookSubscription.from_row(row) for row in rows]
            await self.webhooks.trigger(
                event, self.event_data(schedule, content, destination), subscriptions
            )
        except Exception as exc:
            logger.error(
                "[DISPATCH] Webhook emission for %s (%s) failed: %s",
                schedule.id, event.value, exc,
            )

    @staticmethod
    def event_data(
        schedule: Schedule,
        content: Optional[Content],
        destination: Optional[Destination],
    ) -> Dict[str, Any]:
        """Webhook ``data`` object for a schedule lifecycle event."""
        return {
            "id": schedule.id,
            "type": "publication",
            "scheduleId": schedule.id,
            "contentId": schedule.content_id,
            "campaignId": schedule.campaign_id,
            "destinationId": schedule.destination_id,
            "platform": destination.platform if destination else None,
            "title": content.title if content else None,
            "status": schedule.status.value,
            "publishedUrl": schedule.published_url,
            "platformPostId": schedule.platform_post_id,
            "attempts": schedule.attempts,
            "error": schedule.error,
            "userId": (content.user_id if content else None)
            or (destination.user_id if destination else None),
            "scheduledFor": to_iso(schedule.publish_at),
        }

    async def _record(
        self,
        level: LogLevel,
        message: str,
        schedule: Schedule,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        if self.activity_log is None:
            return
        await self.activity_log.log(
            level,
            LogComponent.DISPATCH,
            message,
            schedule_id=schedule.id,
            destination_id=schedule.destination_id or None,
            data=data,
            error=error,
            duration_ms=duration_ms,
        )


__all__ = [
    "DispatchCoordinator",
]
