"""Reminder sweep for recipients who never engaged with an email.

``run_sweep`` only decides and dispatches; when it runs is the caller's
concern (APScheduler job, CLI command, or a test calling it directly).
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import TYPE_CHECKING

from notification_service.core.exceptions import NotFoundException
from notification_service.core.services.base import BaseService
from notification_service.features.notifications.metrics import (
    notification_reminders_sent_total,
)
from notification_service.features.notifications.models import (
    Category,
    Channel,
    DeliveryAttempt,
)
from notification_service.features.notifications.repository import (
    DeliveryAttemptRepository,
    RecipientProfileRepository,
    get_delivery_attempt_repository,
    get_recipient_profile_repository,
)
from notification_service.features.notifications.service import (
    ComposedMessage,
    DispatchOrchestrator,
    Recipient,
)
from notification_service.features.notifications.state import utcnow

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

REMINDER_SUFFIX = ":reminder"
DEFAULT_LOOKBACK = timedelta(days=7)
REMINDER_NOTE = "This is a reminder about a message you have not opened yet."

SUBJECT_MAX_LENGTH = DeliveryAttempt.__table__.c.subject.type.length
_BODY_OPEN_TAG = re.compile(r"<body[^>]*>", re.IGNORECASE)


def reminder_message_ref(message_ref: str) -> str:
    return f"{message_ref}{REMINDER_SUFFIX}"


def _prepend_html_note(html: str) -> str:
    note = f"<p>{REMINDER_NOTE}</p>"
    match = _BODY_OPEN_TAG.search(html)
    if match is None:
        return note + html
    return html[: match.end()] + note + html[match.end() :]


def compose_reminder(original: DeliveryAttempt) -> ComposedMessage:
    """Reminder content derived from the original attempt.

    The subject is clipped to the stored column length.
    """
    subject = f"Reminder: {original.subject or 'School notification'}"
    return ComposedMessage(
        subject=subject[:SUBJECT_MAX_LENGTH],
        body=f"{REMINDER_NOTE}\n\n{original.body}",
        html_body=_prepend_html_note(original.html_body) if original.html_body else None,
        template_name=original.template_name,
        template_params=list(original.template_params or []),
    )


class ReminderSweep(BaseService):
    """Finds unresponsive (recipient, message) pairs and sends one reminder each.

    The originals are stamped with ``reminder_sent_at`` before dispatch, so
    re-running the sweep never sends a second reminder for the same pair.
    """

    def __init__(
        self,
        orchestrator: DispatchOrchestrator,
        *,
        repository: DeliveryAttemptRepository | None = None,
        profile_repository: RecipientProfileRepository | None = None,
    ) -> None:
        super().__init__()
        self._orchestrator = orchestrator
        self._repository = repository or get_delivery_attempt_repository()
        self._profiles = profile_repository or get_recipient_profile_repository()

    async def run_sweep(
        self,
        session: AsyncSession,
        lookback: timedelta = DEFAULT_LOOKBACK,
    ) -> int:
        """Send reminders for the window. Returns the number of pairs reminded."""
        now = utcnow()
        candidates = await self._repository.list_reminder_candidates(session, now - lookback)

        pairs: dict[tuple[str, str], list[DeliveryAttempt]] = {}
        for attempt in candidates:
            pairs.setdefault((attempt.recipient_ref, attempt.message_ref), []).append(attempt)

        profiles = await self._profiles.list_by_refs(session, [ref for ref, _ in pairs])

        sent = 0
        for (recipient_ref, message_ref), originals in pairs.items():
            profile = profiles.get(recipient_ref)
            if profile is None:
                self.logger.warning(
                    "Reminder skipped: unknown recipient",
                    extra={
                        "recipient_ref": recipient_ref,
                        "message_ref": message_ref,
                        "operation": "sweep.run",
                    },
                )
                continue

            if await self._send_reminder(session, Recipient.from_profile(profile), originals, now):
                sent += 1

        notification_reminders_sent_total.labels(trigger="sweep").inc(sent)
        self.logger.info(
            "Reminder sweep completed",
            extra={
                "lookback_seconds": int(lookback.total_seconds()),
                "candidates": len(pairs),
                "reminders_sent": sent,
                "operation": "sweep.run",
            },
        )
        return sent

    async def remind(
        self,
        session: AsyncSession,
        recipient_ref: str,
        message_ref: str,
    ) -> list[DeliveryAttempt]:
        """Ad hoc reminder outside the sweep.

        Raises:
            NotFoundException: Unknown recipient, or no attempt for that message.
        """
        profile = await self._profiles.get_by_ref(session, recipient_ref)
        if profile is None:
            raise NotFoundException(
                f"Recipient {recipient_ref} not found",
                type="recipient-not-found",
                extra={"recipient_ref": recipient_ref},
            )

        originals = await self._repository.list_for_message(session, recipient_ref, message_ref)
        if not originals:
            raise NotFoundException(
                f"No notification {message_ref} was sent to recipient {recipient_ref}",
                type="message-not-found",
                extra={"recipient_ref": recipient_ref, "message_ref": message_ref},
            )

        attempts = await self._dispatch_reminder(
            session, Recipient.from_profile(profile), originals, utcnow()
        )
        notification_reminders_sent_total.labels(trigger="manual").inc()
        return attempts

    async def _send_reminder(
        self,
        session: AsyncSession,
        recipient: Recipient,
        originals: Sequence[DeliveryAttempt],
        now: datetime,
    ) -> bool:
        attempts = await self._dispatch_reminder(session, recipient, originals, now)
        return bool(attempts)

    async def _dispatch_reminder(
        self,
        session: AsyncSession,
        recipient: Recipient,
        originals: Sequence[DeliveryAttempt],
        now: datetime,
    ) -> list[DeliveryAttempt]:
        # Stamp first: at most one reminder per pair even if dispatch fails
        await self._repository.mark_reminder_sent(session, originals, now)

        source = next((a for a in originals if a.channel == Channel.EMAIL.value), originals[0])
        attempts = await self._orchestrator.send_one(
            session,
            recipient,
            Category(source.category),
            compose_reminder(source),
            message_ref=reminder_message_ref(source.message_ref),
            is_reminder=True,
        )
        self.logger.info(
            "Reminder dispatched",
            extra={
                "recipient_ref": recipient.recipient_ref,
                "message_ref": source.message_ref,
                "attempts": len(attempts),
                "operation": "sweep.remind",
            },
        )
        return attempts


__all__ = [
    "DEFAULT_LOOKBACK",
    "ReminderSweep",
    "compose_reminder",
    "reminder_message_ref",
]
