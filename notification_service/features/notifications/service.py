"""Dispatch orchestrator: route, send through adapters, record attempts.

A dispatch runs in three phases so the request's single AsyncSession is
never used from concurrent tasks:

1. Route every recipient and get-or-create its Queued attempts (sequential).
2. Call the adapters concurrently, bounded by a semaphore (network only).
3. Apply each SendResult to its attempt (sequential).
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from notification_service.core.services.base import BaseService
from notification_service.features.notifications.metrics import (
    notification_attempts_total,
    notification_bulk_recipients_total,
    notification_resend_total,
)
from notification_service.features.notifications.models import (
    Category,
    Channel,
    DeliveryAttempt,
    DeliveryStatus,
)
from notification_service.features.notifications.providers.base import (
    DeliveryTarget,
    OutboundMessage,
    SendResult,
)
from notification_service.features.notifications.repository import (
    DeliveryAttemptRepository,
    RecipientProfileRepository,
    get_delivery_attempt_repository,
    get_recipient_profile_repository,
)
from notification_service.features.notifications.routing import (
    ChannelRouter,
    RecipientPreferences,
)
from notification_service.features.notifications.state import apply_send_result, utcnow
from notification_service.infra.logging import set_log_context

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from notification_service.features.notifications.models import RecipientProfile
    from notification_service.features.notifications.providers.base import ProviderAdapter
    from notification_service.features.notifications.providers.registry import AdapterRegistry


@dataclass(frozen=True, slots=True)
class ComposedMessage:
    """Already-rendered message content supplied by the caller."""

    subject: str
    body: str
    html_body: str | None = None
    template_name: str | None = None
    template_params: list[Any] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Recipient:
    """A recipient as the orchestrator sees it: contacts plus opt-ins."""

    recipient_ref: str
    preferences: RecipientPreferences
    email: str | None = None
    phone: str | None = None
    display_name: str | None = None
    group_ref: str | None = None
    subject_ref: str | None = None

    @classmethod
    def from_profile(
        cls,
        profile: RecipientProfile,
        *,
        subject_ref: str | None = None,
    ) -> Recipient:
        return cls(
            recipient_ref=profile.recipient_ref,
            preferences=RecipientPreferences.from_flags(
                email=profile.email_enabled,
                sms=profile.sms_enabled,
                chat=profile.chat_enabled,
                in_app=profile.in_app_enabled,
                attendance=profile.attendance_enabled,
                grade=profile.grade_enabled,
                event=profile.event_enabled,
                generic=profile.generic_enabled,
            ),
            email=profile.email,
            phone=profile.phone,
            display_name=profile.display_name,
            group_ref=profile.group_ref,
            subject_ref=subject_ref,
        )

    @property
    def target(self) -> DeliveryTarget:
        return DeliveryTarget(
            recipient_ref=self.recipient_ref,
            email=self.email,
            phone=self.phone,
            display_name=self.display_name,
        )


@dataclass(slots=True)
class RecipientOutcome:
    """Per-recipient result of a dispatch."""

    recipient_ref: str
    attempts: list[DeliveryAttempt] = field(default_factory=list)
    skipped: bool = False
    reason: str | None = None

    @property
    def failed_count(self) -> int:
        return sum(1 for a in self.attempts if a.status == DeliveryStatus.FAILED.value)


@dataclass(slots=True)
class _SendJob:
    outcome: RecipientOutcome
    attempt: DeliveryAttempt
    adapter: ProviderAdapter | None
    target: DeliveryTarget
    message: OutboundMessage | None = None


class DispatchOrchestrator(BaseService):
    """Composes the router, adapters and delivery log into send operations.

    Example:
        orchestrator = DispatchOrchestrator(registry, max_concurrency=10)
        attempts = await orchestrator.send_one(
            session, recipient, Category.ATTENDANCE, message, message_ref="absence-2025-01-10"
        )
        await session.commit()
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        *,
        router: ChannelRouter | None = None,
        repository: DeliveryAttemptRepository | None = None,
        profile_repository: RecipientProfileRepository | None = None,
        max_concurrency: int = 10,
    ) -> None:
        super().__init__()
        self._registry = registry
        self._router = router or ChannelRouter()
        self._repository = repository or get_delivery_attempt_repository()
        self._profiles = profile_repository or get_recipient_profile_repository()
        self._max_concurrency = max_concurrency

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    async def send_one(
        self,
        session: AsyncSession,
        recipient: Recipient,
        category: Category | str,
        message: ComposedMessage,
        *,
        message_ref: str | None = None,
        is_reminder: bool = False,
    ) -> list[DeliveryAttempt]:
        """Dispatch one message to every enabled channel of one recipient.

        Returns the attempts touched; empty when no channel is enabled.
        """
        outcomes = await self._dispatch(
            session,
            [recipient],
            Category(category),
            message,
            message_ref=message_ref or str(uuid.uuid4()),
            is_reminder=is_reminder,
        )
        return outcomes[0].attempts

    async def send_bulk(
        self,
        session: AsyncSession,
        recipients: Sequence[Recipient],
        category: Category | str,
        message: ComposedMessage,
        *,
        message_ref: str | None = None,
    ) -> list[RecipientOutcome]:
        """Dispatch one message to many recipients.

        Failures stay on their own attempts; the batch never raises for a
        single recipient's provider failure.
        """
        unique: dict[str, Recipient] = {}
        for recipient in recipients:
            unique.setdefault(recipient.recipient_ref, recipient)

        outcomes = await self._dispatch(
            session,
            list(unique.values()),
            Category(category),
            message,
            message_ref=message_ref or str(uuid.uuid4()),
            is_reminder=False,
        )

        for outcome in outcomes:
            notification_bulk_recipients_total.labels(
                outcome="skipped" if outcome.skipped else "dispatched"
            ).inc()

        self.logger.info(
            "Bulk dispatch completed",
            extra={
                "recipients": len(outcomes),
                "skipped": sum(1 for o in outcomes if o.skipped),
                "failed_attempts": sum(o.failed_count for o in outcomes),
                "operation": "service.send_bulk",
            },
        )
        return outcomes

    async def resend(self, session: AsyncSession, attempt_id: UUID) -> DeliveryAttempt:
        """Re-send an existing attempt through the same channel and provider.

        Raises:
            NotFoundError: The attempt does not exist.
        """
        attempt = await self._repository.get_or_raise(session, attempt_id)
        set_log_context(delivery_attempt_id=str(attempt.id))

        target = await self._resend_target(session, attempt)
        adapter = self._registry.resolve(attempt.channel, attempt.provider)
        job = _SendJob(
            outcome=RecipientOutcome(recipient_ref=attempt.recipient_ref),
            attempt=attempt,
            adapter=adapter,
            target=target,
            message=self._outbound_for(attempt),
        )

        result = (await self._send_all([job]))[0]
        self._apply(job, result)
        await session.flush()

        notification_resend_total.labels(
            channel=attempt.channel,
            outcome="sent" if result.success else "failed",
        ).inc()
        self.logger.info(
            "Delivery attempt resent",
            extra={
                "delivery_attempt_id": str(attempt.id),
                "channel": attempt.channel,
                "status": attempt.status,
                "attempt_count": attempt.attempt_count,
                "retryable": attempt.last_error_retryable,
                "operation": "service.resend",
            },
        )
        return attempt

    async def _dispatch(
        self,
        session: AsyncSession,
        recipients: Sequence[Recipient],
        category: Category,
        message: ComposedMessage,
        *,
        message_ref: str,
        is_reminder: bool,
    ) -> list[RecipientOutcome]:
        outcomes: list[RecipientOutcome] = []
        jobs: list[_SendJob] = []

        # Phase 1: routing and attempt records
        for recipient in recipients:
            outcome = RecipientOutcome(recipient_ref=recipient.recipient_ref)
            outcomes.append(outcome)

            channels = self._router.route(recipient.preferences, category)
            if not channels:
                outcome.skipped = True
                outcome.reason = f"No channel enabled for category {category.value}"
                self._lazy.debug(
                    lambda r=recipient: f"dispatch: {r.recipient_ref} skipped for {category.value}"
                )
                continue

            for channel in channels:
                attempt = await self._get_or_create_attempt(
                    session, recipient, channel, category, message, message_ref, is_reminder
                )
                outcome.attempts.append(attempt)
                jobs.append(
                    _SendJob(
                        outcome=outcome,
                        attempt=attempt,
                        adapter=self._registry.for_channel(channel),
                        target=recipient.target,
                    )
                )

        if not jobs:
            return outcomes

        # Assigns ids to new attempts before the tracking pixel needs them
        await session.flush()
        for job in jobs:
            job.message = self._outbound_for(job.attempt)

        # Phase 2: provider calls
        results = await self._send_all(jobs)

        # Phase 3: record outcomes
        for job, result in zip(jobs, results, strict=True):
            self._apply(job, result)
        await session.flush()

        self.logger.info(
            "Dispatch completed",
            extra={
                "message_ref": message_ref,
                "category": category.value,
                "recipients": len(outcomes),
                "attempts": len(jobs),
                "failed": sum(1 for r in results if not r.success),
                "is_reminder": is_reminder,
                "operation": "service.dispatch",
            },
        )
        return outcomes

    async def _get_or_create_attempt(
        self,
        session: AsyncSession,
        recipient: Recipient,
        channel: Channel,
        category: Category,
        message: ComposedMessage,
        message_ref: str,
        is_reminder: bool,
    ) -> DeliveryAttempt:
        attempt = await self._repository.find_by_key(
            session, recipient.recipient_ref, channel, message_ref
        )
        if attempt is None:
            attempt = DeliveryAttempt(
                recipient_ref=recipient.recipient_ref,
                channel=channel.value,
                message_ref=message_ref,
                status=DeliveryStatus.QUEUED.value,
                attempt_count=0,
                is_reminder=is_reminder,
            )
            session.add(attempt)
        else:
            self._lazy.debug(
                lambda: f"dispatch: reusing attempt {attempt.id} for {recipient.recipient_ref}/{channel.value}"
            )

        attempt.subject_ref = recipient.subject_ref or attempt.subject_ref
        attempt.group_ref = recipient.group_ref or attempt.group_ref
        attempt.category = category.value
        attempt.subject = message.subject
        attempt.body = message.body
        attempt.html_body = message.html_body
        attempt.template_name = message.template_name
        attempt.template_params = list(message.template_params) or None
        return attempt

    async def _resend_target(self, session: AsyncSession, attempt: DeliveryAttempt) -> DeliveryTarget:
        destination = attempt.destination
        if not destination or attempt.channel == Channel.IN_APP.value:
            profile = await self._profiles.get_by_ref(session, attempt.recipient_ref)
            if profile is not None:
                return Recipient.from_profile(profile).target
        if attempt.channel == Channel.EMAIL.value:
            return DeliveryTarget(recipient_ref=attempt.recipient_ref, email=destination)
        return DeliveryTarget(recipient_ref=attempt.recipient_ref, phone=destination)

    @staticmethod
    def _outbound_for(attempt: DeliveryAttempt) -> OutboundMessage:
        return OutboundMessage(
            subject=attempt.subject,
            body=attempt.body,
            html_body=attempt.html_body,
            template_name=attempt.template_name,
            template_params=list(attempt.template_params or []),
            attempt_id=str(attempt.id) if attempt.id else None,
        )

    async def _send_all(self, jobs: Sequence[_SendJob]) -> list[SendResult]:
        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def run(job: _SendJob) -> SendResult:
            async with semaphore:
                return await self._send_guarded(job)

        return list(await asyncio.gather(*(run(job) for job in jobs)))

    async def _send_guarded(self, job: _SendJob) -> SendResult:
        channel = job.attempt.channel
        if job.adapter is None:
            return SendResult.failure_result(
                "", f"No adapter configured for channel {channel}", error_category="configuration"
            )
        if job.message is None:
            job.message = self._outbound_for(job.attempt)
        try:
            return await job.adapter.send(job.target, job.message)
        except Exception as exc:  # noqa: BLE001
            self.logger.exception(
                "Adapter raised across the send boundary",
                extra={
                    "provider": job.adapter.provider_name,
                    "channel": channel,
                    "operation": "service.send",
                },
            )
            return SendResult.failure_result(
                job.adapter.provider_name, str(exc) or exc.__class__.__name__, "unexpected"
            )

    def _apply(self, job: _SendJob, result: SendResult) -> None:
        apply_send_result(job.attempt, result, now=utcnow())
        notification_attempts_total.labels(
            channel=job.attempt.channel, status=job.attempt.status
        ).inc()


__all__ = [
    "ComposedMessage",
    "DispatchOrchestrator",
    "Recipient",
    "RecipientOutcome",
]
