"""Engagement analytics over delivery attempts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from notification_service.features.notifications.models import Channel, DeliveryStatus
from notification_service.features.notifications.repository import (
    DeliveryAttemptRepository,
    get_delivery_attempt_repository,
)
from notification_service.features.notifications.state import map_provider_status

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


@dataclass(frozen=True, slots=True)
class ChannelOutcome:
    delivered: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class NotificationAnalytics:
    """Aggregate counts for a recipient group and/or logical message."""

    total: int
    opened: int
    clicked: int
    open_rate: float
    click_rate: float
    per_channel: dict[str, ChannelOutcome] = field(default_factory=dict)
    sms_delivered: int = 0
    sms_failed: int = 0


def _rate(part: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(part * 100.0 / total, 2)


async def compute_analytics(
    session: AsyncSession,
    *,
    group_ref: str | None = None,
    message_ref: str | None = None,
    repository: DeliveryAttemptRepository | None = None,
) -> NotificationAnalytics:
    repo = repository or get_delivery_attempt_repository()

    totals = await repo.engagement_totals(session, group_ref=group_ref, message_ref=message_ref)
    outcomes = await repo.channel_outcomes(session, group_ref=group_ref, message_ref=message_ref)
    sms_words = await repo.provider_status_counts(
        session, Channel.SMS, group_ref=group_ref, message_ref=message_ref
    )

    # Carrier words are mapped the same way webhooks reconcile them
    sms_delivered = sms_failed = 0
    for word, count in sms_words.items():
        mapped = map_provider_status(word)
        if mapped is DeliveryStatus.DELIVERED:
            sms_delivered += count
        elif mapped is DeliveryStatus.FAILED:
            sms_failed += count

    total = totals["total"]
    return NotificationAnalytics(
        total=total,
        opened=totals["opened"],
        clicked=totals["clicked"],
        open_rate=_rate(totals["opened"], total),
        click_rate=_rate(totals["clicked"], total),
        per_channel={
            channel.value: ChannelOutcome(**outcomes.get(channel.value, {}))
            for channel in Channel
        },
        sms_delivered=sms_delivered,
        sms_failed=sms_failed,
    )


__all__ = ["ChannelOutcome", "NotificationAnalytics", "compute_analytics"]
