"""APScheduler integration for the reminder sweep.

APScheduler only decides *when* the sweep runs; the sweep itself is a plain
coroutine (``ReminderSweep.run_sweep``) that tests and the CLI call directly.

The scheduler runs in the API process and is started from the lifespan
when ``NOTIFY_REMINDER_SCHEDULE_ENABLED=true``.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from notification_service.core.settings import get_notification_settings
from notification_service.infra.database import get_async_session
from notification_service.infra.logging import clear_log_context, set_log_context

if TYPE_CHECKING:
    from notification_service.features.notifications.runtime import NotificationRuntime

logger = logging.getLogger(__name__)

REMINDER_SWEEP_JOB_ID = "reminder_sweep"

scheduler = AsyncIOScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,  # Combine multiple pending executions into one
        "max_instances": 1,  # Never overlap two sweeps
        "misfire_grace_time": 300,
    },
)


async def run_reminder_sweep(runtime: NotificationRuntime) -> int:
    """Run one sweep in its own session and commit the result."""
    lookback = timedelta(days=get_notification_settings().reminder_lookback_days)
    set_log_context(job=REMINDER_SWEEP_JOB_ID)
    try:
        async with get_async_session() as session:
            try:
                sent = await runtime.sweep().run_sweep(session, lookback)
                await session.commit()
            except Exception:
                await session.rollback()
                logger.exception(
                    "Reminder sweep failed",
                    extra={"operation": "scheduler.reminder_sweep"},
                )
                raise
        return sent
    finally:
        clear_log_context()


def setup_scheduled_jobs(runtime: NotificationRuntime) -> None:
    """Register the reminder sweep with APScheduler."""
    settings = get_notification_settings()

    scheduler.add_job(
        func=run_reminder_sweep,
        args=[runtime],
        trigger=CronTrigger(hour=settings.reminder_cron_hour, minute=settings.reminder_cron_minute),
        id=REMINDER_SWEEP_JOB_ID,
        name="Send reminders to unresponsive recipients",
        replace_existing=True,
    )
    logger.info(
        "Reminder sweep scheduled",
        extra={
            "hour": settings.reminder_cron_hour,
            "minute": settings.reminder_cron_minute,
            "lookback_days": settings.reminder_lookback_days,
        },
    )


async def start_scheduler() -> None:
    """Start the APScheduler.

    Call during application startup after setup_scheduled_jobs().
    """
    if not scheduler.running:
        scheduler.start()
        logger.info("APScheduler started", extra={"jobs": len(scheduler.get_jobs())})
    else:
        logger.warning("APScheduler is already running")


async def stop_scheduler() -> None:
    """Stop the APScheduler gracefully.

    Call during application shutdown.
    """
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("APScheduler stopped")
    else:
        logger.debug("APScheduler is not running")


def get_job_status() -> list[dict]:
    """Get status of all scheduled jobs.

    Jobs added before the scheduler starts have no next run time yet.
    """
    status = []
    for job in scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        status.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            }
        )
    return status


__all__ = [
    "REMINDER_SWEEP_JOB_ID",
    "get_job_status",
    "run_reminder_sweep",
    "scheduler",
    "setup_scheduled_jobs",
    "start_scheduler",
    "stop_scheduler",
]
