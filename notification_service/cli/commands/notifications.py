"""Notification maintenance commands: reminder sweep and manual resend."""

from __future__ import annotations

import sys
from datetime import timedelta
from uuid import UUID

import click

from notification_service.cli.utils import coro, error, info, success, warning
from notification_service.core.database.exceptions import NotFoundError
from notification_service.core.settings import get_notification_settings
from notification_service.features.notifications.runtime import NotificationRuntime
from notification_service.infra.database import close_database, get_async_session, init_database


@click.command()
@click.option(
    "--lookback-days",
    type=click.IntRange(min=1),
    default=None,
    help="Window of email attempts to consider (default: NOTIFY_REMINDER_LOOKBACK_DAYS)",
)
@coro
async def sweep(lookback_days: int | None) -> None:
    """Send reminders to recipients who never opened an email."""
    days = lookback_days or get_notification_settings().reminder_lookback_days
    info(f"Running reminder sweep over the last {days} day(s)...")

    await init_database()
    runtime = NotificationRuntime.create()
    try:
        async with get_async_session() as session:
            sent = await runtime.sweep().run_sweep(session, timedelta(days=days))
            await session.commit()
    finally:
        await runtime.aclose()
        await close_database()

    success(f"Reminders sent: {sent}")


@click.command()
@click.argument("attempt_id", type=click.UUID)
@coro
async def resend(attempt_id: UUID) -> None:
    """Re-send one delivery attempt through its channel and provider."""
    await init_database()
    runtime = NotificationRuntime.create()
    try:
        async with get_async_session() as session:
            try:
                attempt = await runtime.orchestrator().resend(session, attempt_id)
            except NotFoundError:
                error(f"Delivery attempt {attempt_id} not found")
                sys.exit(1)
            await session.commit()
    finally:
        await runtime.aclose()
        await close_database()

    if attempt.status == "failed":
        hint = " (transient, safe to retry)" if attempt.last_error_retryable else ""
        warning(f"Resend failed{hint}: {attempt.error_message}")
        sys.exit(2)

    success(
        f"Attempt {attempt.id} {attempt.status} via {attempt.provider} "
        f"(attempt #{attempt.attempt_count})"
    )
