"""Structured publishing-activity log.

Provides the ``ActivityLogger`` class that appends structured entries as
JSON lines to local files (via ``aiofiles``) and keeps a lightweight
in-memory ring buffer so ``get_recent()`` can answer without any I/O.

Files:
    - ``activity.log`` -- every entry
    - ``errors.log``   -- ERROR and CRITICAL only

Global helpers:
    - ``init_activity_logger()`` -- create and register the singleton
    - ``get_activity_logger()``  -- retrieve the singleton (raises if not initialised)
"""

import logging
from collections import deque
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional

import aiofiles

from cms_publisher.logging.models import LogComponent, LogEntry, LogLevel
from cms_publisher.utils import utc_now

logger = logging.getLogger(__name__)


class ActivityLogger:
    """Records schedule lifecycle transitions and delivery outcomes.

    Parameters:
        log_dir: Directory for log files (created if missing).
        max_recent: Size of the in-memory ring buffer.
    """

    def __init__(self, log_dir: str = "logs", max_recent: int = 1000) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._activity_log = self.log_dir / "activity.log"
        self._error_log = self.log_dir / "errors.log"

        self._recent: Deque[LogEntry] = deque(maxlen=max_recent)

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        schedule_id: Optional[str] = None,
        destination_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        duration_ms: Optional[int] = None,
    ) -> LogEntry:
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            schedule_id=schedule_id,
            destination_id=destination_id,
            data=data or {},
            error_type=type(error).__name__ if error is not None else None,
            duration_ms=duration_ms,
        )
        self._recent.append(entry)

        try:
            await self._write_to_file(entry)
        except OSError as exc:
            # Activity logging must never break a dispatch
            logger.error("[LOGGING] Failed to write activity log: %s", exc)
        return entry

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        schedule_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Return recent entries from the in-memory ring buffer, oldest first."""
        entries = list(self._recent)

        if level is not None:
            entries = [e for e in entries if e.level == level]
        if component is not None:
            entries = [e for e in entries if e.component == component]
        if schedule_id is not None:
            entries = [e for e in entries if e.schedule_id == schedule_id]

        return entries[-limit:] if limit > 0 else []

    async def _write_to_file(self, entry: LogEntry) -> None:
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._activity_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)


# ======================================================================
# GLOBAL ACTIVITY LOGGER SINGLETON
# ======================================================================

_activity_logger: Optional[ActivityLogger] = None


def init_activity_logger(log_dir: str = "logs", max_recent: int = 1000) -> ActivityLogger:
    """Initialise and register the global ``ActivityLogger`` singleton."""
    global _activity_logger
    _activity_logger = ActivityLogger(log_dir=log_dir, max_recent=max_recent)
    return _activity_logger


def get_activity_logger() -> ActivityLogger:
    """Retrieve the global ``ActivityLogger`` singleton.

    Raises:
        RuntimeError: If ``init_activity_logger()`` has not been called yet.
    """
    if _activity_logger is None:
        raise RuntimeError(
            "Activity logger not initialized. Call init_activity_logger() first."
        )
    return _activity_logger


__all__ = [
    "ActivityLogger",
    "init_activity_logger",
    "get_activity_logger",
]
