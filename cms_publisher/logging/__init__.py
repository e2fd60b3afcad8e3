"""Publishing activity log."""
from cms_publisher.logging.models import LogLevel, LogComponent, LogEntry
from cms_publisher.logging.activity_logger import (
    ActivityLogger,
    init_activity_logger,
    get_activity_logger,
)

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "ActivityLogger", "init_activity_logger", "get_activity_logger",
]
