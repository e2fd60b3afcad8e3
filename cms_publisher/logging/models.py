"""Activity log data models: LogLevel, LogComponent, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Log levels with numeric values for severity comparison.

    Uses integer values so that severity comparison works correctly.
    """

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        """Get lowercase name for display/serialization."""
        return self.name.lower()


class LogComponent(Enum):
    """Subsystems that record publishing activity."""

    SCHEDULER = "scheduler"
    DISPATCH = "dispatch"
    PUBLISHER = "publisher"
    WEBHOOK = "webhook"
    API = "api"
    DATABASE = "database"


@dataclass
class LogEntry:
    """One structured publishing-activity event."""

    # Required fields
    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    # Context
    schedule_id: Optional[str] = None
    destination_id: Optional[str] = None

    data: Dict[str, Any] = field(default_factory=dict)

    # Error details
    error_type: Optional[str] = None

    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
            "schedule_id": self.schedule_id,
            "destination_id": self.destination_id,
            "data": self.data,
            "error_type": self.error_type,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        """Serialize to a JSON line for file logging."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_readable(self) -> str:
        """Human-readable single line for console output."""
        time_str = self.timestamp.strftime("%H:%M:%S")
        msg = f"[{self.level.name}] [{time_str}] [{self.component.value}] {self.message}"
        if self.schedule_id:
            msg += f" (schedule={self.schedule_id})"
        if self.duration_ms:
            msg += f" ({self.duration_ms}ms)"
        return msg


__all__ = [
    "LogLevel",
    "LogComponent",
    "LogEntry",
]
