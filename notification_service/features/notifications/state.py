"""Delivery attempt state machine.

    Queued -> Sent -> {Delivered, Failed} -> (email only) Opened -> Clicked

Every mutation of ``DeliveryAttempt.status`` goes through this module so
that the transition rules live in one place. Functions mutate the attempt
in place and return whether anything changed.
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from notification_service.features.notifications.models import Channel, DeliveryStatus

if TYPE_CHECKING:
    from notification_service.features.notifications.models import DeliveryAttempt
    from notification_service.features.notifications.providers.base import SendResult

_NON_ALNUM = re.compile(r"[^a-z0-9]")

# Carrier vocabularies mapped onto the canonical states. Anything not
# listed leaves the status unchanged.
DELIVERED_WORDS = frozenset({"delivered", "deliveredtoterminal", "read", "success"})
FAILED_WORDS = frozenset(
    {"failed", "undelivered", "deliveryimpossible", "rejected", "expired", "error"}
)

# Webhook-reported outcomes only apply from these states
_DELIVERED_FROM = frozenset({DeliveryStatus.QUEUED, DeliveryStatus.SENT, DeliveryStatus.FAILED})
_FAILED_FROM = frozenset({DeliveryStatus.QUEUED, DeliveryStatus.SENT})

# Engagement signals are ignored before a message actually went out
ENGAGEABLE = frozenset(
    {
        DeliveryStatus.SENT,
        DeliveryStatus.DELIVERED,
        DeliveryStatus.OPENED,
        DeliveryStatus.CLICKED,
    }
)


def utcnow() -> datetime:
    return datetime.now(UTC)


def map_provider_status(raw: str | None) -> DeliveryStatus | None:
    """Canonical status for a provider word, or None when ambiguous/unknown.

    >>> map_provider_status("DeliveredToTerminal")
    <DeliveryStatus.DELIVERED: 'delivered'>
    >>> map_provider_status("DeliveredToNetwork") is None
    True
    """
    if not raw:
        return None
    word = _NON_ALNUM.sub("", raw.lower())
    if word in DELIVERED_WORDS:
        return DeliveryStatus.DELIVERED
    if word in FAILED_WORDS:
        return DeliveryStatus.FAILED
    return None


def apply_send_result(
    attempt: DeliveryAttempt,
    result: SendResult,
    *,
    now: datetime | None = None,
) -> None:
    """Record one synchronous adapter outcome (first send or resend).

    Increments ``attempt_count`` by exactly one. ``provider_message_id`` is
    only written on success, so it never appears on a never-sent attempt.
    """
    now = now or utcnow()
    attempt.attempt_count = (attempt.attempt_count or 0) + 1
    attempt.last_attempt_at = now
    if result.provider:
        attempt.provider = result.provider
    if result.destination:
        attempt.destination = result.destination

    if result.success:
        attempt.status = DeliveryStatus.SENT.value
        attempt.provider_message_id = result.provider_message_id
        attempt.error_message = None
        attempt.last_error_retryable = False
    else:
        attempt.status = DeliveryStatus.FAILED.value
        attempt.error_message = result.error
        attempt.last_error_retryable = result.retryable

    # A new send starts a new carrier report
    attempt.provider_delivery_status = None


def apply_provider_status(
    attempt: DeliveryAttempt,
    raw_status: str | None,
    *,
    error: str | None = None,
) -> bool:
    """Reconcile a provider-reported delivery status (webhook or poll).

    ``provider_delivery_status`` always records the raw word. ``status``
    only moves for unambiguous terminal words and never regresses
    Opened/Clicked. Applying the same report twice is a no-op.
    """
    changed = False
    if raw_status and attempt.provider_delivery_status != raw_status:
        attempt.provider_delivery_status = raw_status
        changed = True

    target = map_provider_status(raw_status)
    current = DeliveryStatus(attempt.status)

    if target is DeliveryStatus.DELIVERED and current in _DELIVERED_FROM:
        attempt.status = DeliveryStatus.DELIVERED.value
        attempt.error_message = None
        changed = True
    elif target is DeliveryStatus.FAILED and current in _FAILED_FROM:
        attempt.status = DeliveryStatus.FAILED.value
        attempt.error_message = error or f"Provider reported {raw_status}"
        changed = True

    return changed


def record_open(attempt: DeliveryAttempt, *, now: datetime | None = None) -> bool:
    """Set ``opened_at`` once; email attempts move to Opened.

    A later open never downgrades Clicked.
    """
    current = DeliveryStatus(attempt.status)
    if current not in ENGAGEABLE:
        return False

    changed = False
    if attempt.opened_at is None:
        attempt.opened_at = now or utcnow()
        changed = True

    if attempt.channel == Channel.EMAIL.value and current in (
        DeliveryStatus.SENT,
        DeliveryStatus.DELIVERED,
    ):
        attempt.status = DeliveryStatus.OPENED.value
        changed = True
    return changed


def record_click(attempt: DeliveryAttempt, *, now: datetime | None = None) -> bool:
    """Set ``clicked_at`` once; email attempts move to Clicked."""
    current = DeliveryStatus(attempt.status)
    if current not in ENGAGEABLE:
        return False

    changed = False
    if attempt.clicked_at is None:
        attempt.clicked_at = now or utcnow()
        changed = True

    if attempt.channel == Channel.EMAIL.value and current is not DeliveryStatus.CLICKED:
        attempt.status = DeliveryStatus.CLICKED.value
        changed = True
    return changed


__all__ = [
    "DELIVERED_WORDS",
    "ENGAGEABLE",
    "FAILED_WORDS",
    "apply_provider_status",
    "apply_send_result",
    "map_provider_status",
    "record_click",
    "record_open",
    "utcnow",
]
