"""Control surface: manual scheduler operations and health over HTTP."""

from cms_publisher.api.control import ACTIONS, SchedulerControl
from cms_publisher.api.server import ControlRequest, build_control, create_app

__all__ = [
    "ACTIONS",
    "SchedulerControl",
    "ControlRequest",
    "build_control",
    "create_app",
]
