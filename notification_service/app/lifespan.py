"""Application lifespan management.

Startup Order:
1. Core (logging) - always runs first
2. Database (PostgreSQL, or the SQLite fallback)
3. Provider runtime (HTTP client, token cache, adapter registry)
4. Reminder sweep scheduler - only when enabled

Shutdown Order: Reverse of startup (what starts first, shuts down last)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from notification_service.core.settings import (
    get_app_settings,
    get_db_settings,
    get_logging_settings,
    get_notification_settings,
)
from notification_service.features.notifications.runtime import NotificationRuntime
from notification_service.infra.database import close_database, init_database
from notification_service.infra.logging import setup_logging, shutdown

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_scheduler_started = False


def get_scheduler_started() -> bool:
    """Check if the reminder sweep scheduler was started."""
    return _scheduler_started


# =============================================================================
# Startup functions
# =============================================================================


async def _startup_core() -> None:
    """Configure logging."""
    app = get_app_settings()
    setup_logging(log_settings=get_logging_settings(), force=True)
    logger.info(
        "Application starting",
        extra={"service": app.service_name, "environment": app.environment},
    )


async def _startup_database() -> None:
    db = get_db_settings()
    await init_database()
    logger.info("Database connection initialized", extra={"postgres": db.is_configured})


async def _startup_providers(app: FastAPI) -> NotificationRuntime:
    runtime = NotificationRuntime.create()
    app.state.notifications = runtime
    return runtime


async def _startup_scheduler(runtime: NotificationRuntime) -> None:
    global _scheduler_started

    if not get_notification_settings().reminder_schedule_enabled:
        logger.info("Reminder sweep schedule disabled")
        return

    from notification_service.tasks.scheduler import setup_scheduled_jobs, start_scheduler

    setup_scheduled_jobs(runtime)
    await start_scheduler()
    _scheduler_started = True


# =============================================================================
# Shutdown functions
# =============================================================================


async def _shutdown_scheduler() -> None:
    global _scheduler_started

    if not _scheduler_started:
        return

    from notification_service.tasks.scheduler import stop_scheduler

    try:
        await stop_scheduler()
    except Exception as e:
        logger.warning("Error stopping scheduler", extra={"error": str(e)})
    _scheduler_started = False


async def _shutdown_providers(runtime: NotificationRuntime) -> None:
    try:
        await runtime.aclose()
    except Exception as e:
        logger.warning("Error closing provider client", extra={"error": str(e)})


async def _shutdown_database() -> None:
    try:
        await close_database()
    except Exception as e:
        logger.warning("Error closing database", extra={"error": str(e)})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    Args:
        app: FastAPI application instance.

    Yields:
        None during application runtime.
    """
    # =========================================================================
    # STARTUP PHASE - Initialize services in dependency order
    # =========================================================================

    await _startup_core()
    await _startup_database()
    runtime = await _startup_providers(app)
    await _startup_scheduler(runtime)

    app_settings = get_app_settings()
    logger.info(
        "Application startup complete - listening on %s:%s",
        app_settings.host,
        app_settings.port,
        extra={
            "service": app_settings.service_name,
            "environment": app_settings.environment,
            "providers": runtime.registry.providers,
            "reminder_schedule_enabled": _scheduler_started,
        },
    )

    yield

    # =========================================================================
    # SHUTDOWN PHASE - Close services in reverse order
    # =========================================================================

    logger.info("Application shutting down", extra={"service": app_settings.service_name})

    await _shutdown_scheduler()
    await _shutdown_providers(runtime)
    await _shutdown_database()

    logger.info("Application shutdown complete")
    shutdown()


__all__ = ["get_scheduler_started", "lifespan"]
