"""Repositories for delivery attempts and recipient profiles."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import case, func, select

from notification_service.core.database.repository import BaseRepository, SearchResult
from notification_service.features.notifications.models import (
    Channel,
    DeliveryAttempt,
    DeliveryStatus,
    RecipientProfile,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

# Statuses that imply the provider delivered the message
DELIVERED_OR_LATER = (
    DeliveryStatus.DELIVERED.value,
    DeliveryStatus.OPENED.value,
    DeliveryStatus.CLICKED.value,
)
ENGAGED = (DeliveryStatus.OPENED.value, DeliveryStatus.CLICKED.value)


class DeliveryAttemptRepository(BaseRepository[DeliveryAttempt]):
    """Repository for DeliveryAttempt.

    The (recipient_ref, channel, message_ref) key identifies an attempt;
    provider_message_id correlates provider callbacks.
    """

    def __init__(self) -> None:
        super().__init__(DeliveryAttempt)

    async def find_by_key(
        self,
        session: AsyncSession,
        recipient_ref: str,
        channel: Channel | str,
        message_ref: str,
    ) -> DeliveryAttempt | None:
        stmt = select(DeliveryAttempt).where(
            DeliveryAttempt.recipient_ref == recipient_ref,
            DeliveryAttempt.channel == str(channel),
            DeliveryAttempt.message_ref == message_ref,
        )
        result = await session.execute(stmt)
        attempt = result.scalar_one_or_none()

        self._lazy.debug(
            lambda: f"db.find_by_key({recipient_ref}, {channel}, {message_ref}) -> {'found' if attempt else 'not found'}"
        )
        return attempt

    async def find_by_provider_message_id(
        self,
        session: AsyncSession,
        provider_message_id: str,
    ) -> DeliveryAttempt | None:
        """Most recent attempt carrying ``provider_message_id``."""
        stmt = (
            select(DeliveryAttempt)
            .where(DeliveryAttempt.provider_message_id == provider_message_id)
            .order_by(DeliveryAttempt.created_at.desc())
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    async def search_attempts(
        self,
        session: AsyncSession,
        *,
        recipient_ref: str | None = None,
        message_ref: str | None = None,
        group_ref: str | None = None,
        channel: Channel | str | None = None,
        status: DeliveryStatus | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> SearchResult[DeliveryAttempt]:
        stmt = select(DeliveryAttempt)
        if recipient_ref:
            stmt = stmt.where(DeliveryAttempt.recipient_ref == recipient_ref)
        if message_ref:
            stmt = stmt.where(DeliveryAttempt.message_ref == message_ref)
        if group_ref:
            stmt = stmt.where(DeliveryAttempt.group_ref == group_ref)
        if channel:
            stmt = stmt.where(DeliveryAttempt.channel == str(channel))
        if status:
            stmt = stmt.where(DeliveryAttempt.status == str(status))

        stmt = stmt.order_by(DeliveryAttempt.created_at.desc(), DeliveryAttempt.id.desc())
        return await self.search(session, stmt, limit=limit, offset=offset)

    async def list_for_message(
        self,
        session: AsyncSession,
        recipient_ref: str,
        message_ref: str,
    ) -> Sequence[DeliveryAttempt]:
        """Every original (non-reminder) attempt of one logical message."""
        stmt = (
            select(DeliveryAttempt)
            .where(
                DeliveryAttempt.recipient_ref == recipient_ref,
                DeliveryAttempt.message_ref == message_ref,
                DeliveryAttempt.is_reminder.is_(False),
            )
            .order_by(DeliveryAttempt.created_at)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def list_reminder_candidates(
        self,
        session: AsyncSession,
        since: datetime,
    ) -> Sequence[DeliveryAttempt]:
        """Email attempts inside the window that were never engaged with or reminded.

        There is one email attempt per (recipient, message), so each row is
        one unresponsive pair.
        """
        stmt = (
            select(DeliveryAttempt)
            .where(
                DeliveryAttempt.channel == Channel.EMAIL.value,
                DeliveryAttempt.is_reminder.is_(False),
                DeliveryAttempt.created_at >= since,
                DeliveryAttempt.status.not_in(ENGAGED),
                DeliveryAttempt.reminder_sent_at.is_(None),
            )
            .order_by(DeliveryAttempt.created_at, DeliveryAttempt.id)
        )
        result = await session.execute(stmt)
        candidates = result.scalars().all()

        self._lazy.debug(lambda: f"db.list_reminder_candidates(since={since}) -> {len(candidates)}")
        return candidates

    async def mark_reminder_sent(
        self,
        session: AsyncSession,
        attempts: Sequence[DeliveryAttempt],
        now: datetime,
    ) -> None:
        for attempt in attempts:
            attempt.reminder_sent_at = now
        await session.flush()

    async def engagement_totals(
        self,
        session: AsyncSession,
        *,
        group_ref: str | None = None,
        message_ref: str | None = None,
    ) -> dict[str, int]:
        """Total, opened and clicked counts for the filtered attempts."""
        stmt = select(
            func.count(DeliveryAttempt.id),
            func.count(DeliveryAttempt.opened_at),
            func.count(DeliveryAttempt.clicked_at),
        )
        stmt = self._filter_scope(stmt, group_ref, message_ref)
        total, opened, clicked = (await session.execute(stmt)).one()
        return {"total": total or 0, "opened": opened or 0, "clicked": clicked or 0}

    async def channel_outcomes(
        self,
        session: AsyncSession,
        *,
        group_ref: str | None = None,
        message_ref: str | None = None,
    ) -> dict[str, dict[str, int]]:
        """Delivered and failed counts per channel."""
        delivered = func.sum(case((DeliveryAttempt.status.in_(DELIVERED_OR_LATER), 1), else_=0))
        failed = func.sum(
            case((DeliveryAttempt.status == DeliveryStatus.FAILED.value, 1), else_=0)
        )
        stmt = select(DeliveryAttempt.channel, delivered, failed).group_by(DeliveryAttempt.channel)
        stmt = self._filter_scope(stmt, group_ref, message_ref)

        rows = (await session.execute(stmt)).all()
        return {
            channel: {"delivered": int(d or 0), "failed": int(f or 0)} for channel, d, f in rows
        }

    async def provider_status_counts(
        self,
        session: AsyncSession,
        channel: Channel | str,
        *,
        group_ref: str | None = None,
        message_ref: str | None = None,
    ) -> dict[str, int]:
        """Raw provider-reported status words and their counts for one channel."""
        stmt = (
            select(DeliveryAttempt.provider_delivery_status, func.count(DeliveryAttempt.id))
            .where(
                DeliveryAttempt.channel == str(channel),
                DeliveryAttempt.provider_delivery_status.is_not(None),
            )
            .group_by(DeliveryAttempt.provider_delivery_status)
        )
        stmt = self._filter_scope(stmt, group_ref, message_ref)
        rows = (await session.execute(stmt)).all()
        return {word: int(count) for word, count in rows}

    @staticmethod
    def _filter_scope(stmt: Any, group_ref: str | None, message_ref: str | None) -> Any:
        if group_ref:
            stmt = stmt.where(DeliveryAttempt.group_ref == group_ref)
        if message_ref:
            stmt = stmt.where(DeliveryAttempt.message_ref == message_ref)
        return stmt


class RecipientProfileRepository(BaseRepository[RecipientProfile]):
    """Repository for RecipientProfile, keyed by the external recipient_ref."""

    def __init__(self) -> None:
        super().__init__(RecipientProfile)

    async def get_by_ref(self, session: AsyncSession, recipient_ref: str) -> RecipientProfile | None:
        return await self.get_by(session, RecipientProfile.recipient_ref, recipient_ref)

    async def list_by_refs(
        self,
        session: AsyncSession,
        recipient_refs: Sequence[str],
    ) -> dict[str, RecipientProfile]:
        if not recipient_refs:
            return {}
        stmt = select(RecipientProfile).where(RecipientProfile.recipient_ref.in_(set(recipient_refs)))
        result = await session.execute(stmt)
        return {profile.recipient_ref: profile for profile in result.scalars().all()}

    async def upsert(
        self,
        session: AsyncSession,
        recipient_ref: str,
        fields: dict[str, Any],
    ) -> tuple[RecipientProfile, bool]:
        """Create or update a profile. Returns ``(profile, created)``."""
        profile = await self.get_by_ref(session, recipient_ref)
        if profile is None:
            profile = await self.create(
                session, RecipientProfile(recipient_ref=recipient_ref, **fields)
            )
            self._logger.info(
                "Recipient profile created",
                extra={"recipient_ref": recipient_ref, "operation": "db.upsert_profile"},
            )
            return profile, True

        for key, value in fields.items():
            setattr(profile, key, value)
        await session.flush()
        return profile, False


_attempt_repository: DeliveryAttemptRepository | None = None
_profile_repository: RecipientProfileRepository | None = None


def get_delivery_attempt_repository() -> DeliveryAttemptRepository:
    """Get the singleton DeliveryAttemptRepository."""
    global _attempt_repository
    if _attempt_repository is None:
        _attempt_repository = DeliveryAttemptRepository()
    return _attempt_repository


def get_recipient_profile_repository() -> RecipientProfileRepository:
    """Get the singleton RecipientProfileRepository."""
    global _profile_repository
    if _profile_repository is None:
        _profile_repository = RecipientProfileRepository()
    return _profile_repository


__all__ = [
    "DeliveryAttemptRepository",
    "RecipientProfileRepository",
    "get_delivery_attempt_repository",
    "get_recipient_profile_repository",
]
