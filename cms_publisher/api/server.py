"""FastAPI application exposing the scheduler control surface.

Routes:
    - ``POST /api/scheduler``               ``{"action": ..., "scheduleId": ...}``
    - ``GET  /api/scheduler?action=health`` health and statistics
    - ``GET  /api/scheduler``               usage document

Error mapping: invalid request -> 400, unknown schedule -> 404,
schedule in the wrong state -> 409, anything else -> 500.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from cms_publisher import __version__
from cms_publisher.api.control import SchedulerControl
from cms_publisher.config import SchedulerSettings, get_settings
from cms_publisher.database import get_db
from cms_publisher.exceptions import (
    InvalidActionError,
    InvalidInputError,
    InvalidStateError,
    ScheduleNotFoundError,
)
from cms_publisher.logging.activity_logger import init_activity_logger
from cms_publisher.publishers.registry import PublisherRegistry
from cms_publisher.scheduling.coordinator import DispatchCoordinator
from cms_publisher.scheduling.poller import SchedulerLoop
from cms_publisher.webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


class ControlRequest(BaseModel):
    """Body of ``POST /api/scheduler``."""

    action: Optional[str] = None
    scheduleId: Optional[str] = None


async def build_control(settings: Optional[SchedulerSettings] = None) -> SchedulerControl:
    """Wire the Supabase-backed scheduler components from settings."""
    settings = settings or get_settings()
    db = await get_db()

    webhooks = WebhookDispatcher(
        store=db,
        default_retry_count=settings.webhook_retry_count,
        default_retry_delay_ms=settings.webhook_retry_delay_ms,
        timeout_seconds=settings.webhook_timeout_seconds,
    )
    coordinator = DispatchCoordinator(
        db,
        PublisherRegistry.default(timeout=settings.publisher_timeout_seconds),
        webhooks,
        max_attempts=settings.max_attempts,
        backoff_base_seconds=settings.backoff_base_seconds,
        backoff_max_seconds=settings.backoff_max_seconds,
        stuck_timeout_minutes=settings.stuck_timeout_minutes,
        activity_log=init_activity_logger(settings.log_dir),
    )
    loop = SchedulerLoop(
        coordinator,
        db,
        poll_interval=settings.poll_interval_seconds,
        max_concurrency=settings.max_concurrency,
        recovery_interval_cycles=settings.recovery_interval_cycles,
    )
    return SchedulerControl(loop, coordinator, db)


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": str(exc)}, status_code=status_code)


def create_app(
    control: Optional[SchedulerControl] = None,
    start_scheduler: bool = True,
) -> FastAPI:
    """Build the API app.

    Args:
        control: Pre-built control surface. When ``None`` the lifespan
            builds one from settings and the environment.
        start_scheduler: Start the poller on startup and stop it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.control is None:
            app.state.control = await build_control()
        if start_scheduler:
            await app.state.control.loop.start()
        logger.info("[API] Publishing scheduler API ready")
        yield
        if start_scheduler:
            await app.state.control.loop.stop()
        logger.info("[API] Publishing scheduler API shut down")

    app = FastAPI(
        title="CMS Publishing Scheduler",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.control = control

    @app.post("/api/scheduler")
    async def scheduler_action(body: ControlRequest, request: Request):
        ctl: SchedulerControl = request.app.state.control
        try:
            return await ctl.handle_action(body.action, body.scheduleId)
        except (InvalidActionError, InvalidInputError) as exc:
            return _error(400, exc)
        except ScheduleNotFoundError as exc:
            return _error(404, exc)
        except InvalidStateError as exc:
            return _error(409, exc)
        except Exception as exc:
            logger.exception("[API] Scheduler action %s failed", body.action)
            return _error(500, exc)

    @app.get("/api/scheduler")
    async def scheduler_status(request: Request, action: Optional[str] = None):
        ctl: SchedulerControl = request.app.state.control
        if action != "health":
            return ctl.describe()
        try:
            return await ctl.health()
        except Exception as exc:
            logger.exception("[API] Health check failed")
            return JSONResponse(
                {"error": "Health check failed", "details": str(exc)}, status_code=500
            )

    return app


__all__ = [
    "ControlRequest",
    "build_control",
    "create_app",
]
