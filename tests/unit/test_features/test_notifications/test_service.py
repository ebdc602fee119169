"""Unit tests for DispatchOrchestrator."""

from __future__ import annotations

import asyncio
import uuid

import pytest

from notification_service.core.database.exceptions import NotFoundError
from notification_service.features.notifications.models import (
    Category,
    Channel,
    DeliveryStatus,
)
from notification_service.features.notifications.providers import AdapterRegistry
from notification_service.features.notifications.repository import (
    get_delivery_attempt_repository,
)
from notification_service.features.notifications.routing import RecipientPreferences
from notification_service.features.notifications.service import (
    ComposedMessage,
    DispatchOrchestrator,
    Recipient,
)

MESSAGE = ComposedMessage(subject="Absence", body="Amina was absent this morning.")


def _recipient(ref: str, **channels: bool) -> Recipient:
    return Recipient(
        recipient_ref=ref,
        preferences=RecipientPreferences.from_flags(**channels),
        email=f"{ref}@example.com",
        phone="671234567",
        group_ref="form-1a",
        subject_ref=f"student-of-{ref}",
    )


class TestSendOne:
    """Tests for single-recipient dispatch."""

    async def test_email_success_and_sms_failure_are_independent(
        self, db_session, orchestrator, adapters
    ):
        adapters["smtp"].message_id = "em-1"
        adapters["mtn"].fail_with = "invalid number"

        attempts = await orchestrator.send_one(
            db_session,
            _recipient("guardian-1", email=True, sms=True),
            Category.ATTENDANCE,
            MESSAGE,
            message_ref="absence-2025-01-10",
        )

        by_channel = {a.channel: a for a in attempts}
        assert [a.channel for a in attempts] == ["email", "sms"]

        email = by_channel["email"]
        assert email.status == DeliveryStatus.SENT.value
        assert email.provider == "smtp"
        assert email.provider_message_id == "em-1"
        assert email.attempt_count == 1

        sms = by_channel["sms"]
        assert sms.status == DeliveryStatus.FAILED.value
        assert sms.error_message == "invalid number"
        assert sms.provider == "mtn"
        assert sms.provider_message_id is None
        assert sms.attempt_count == 1

    async def test_records_message_content_and_refs(self, db_session, orchestrator):
        message = ComposedMessage(
            subject="Grades",
            body="Term report is ready",
            html_body="<p>Term report is ready</p>",
            template_name="grades_ready",
            template_params=["Amina"],
        )

        (attempt,) = await orchestrator.send_one(
            db_session,
            _recipient("guardian-1", email=True),
            Category.GRADE,
            message,
            message_ref="term-1",
        )

        assert attempt.id is not None
        assert attempt.message_ref == "term-1"
        assert attempt.category == "grade"
        assert attempt.group_ref == "form-1a"
        assert attempt.subject_ref == "student-of-guardian-1"
        assert attempt.subject == "Grades"
        assert attempt.html_body == "<p>Term report is ready</p>"
        assert attempt.template_params == ["Amina"]
        assert attempt.is_reminder is False

    async def test_outbound_message_carries_attempt_id(self, db_session, orchestrator, adapters):
        (attempt,) = await orchestrator.send_one(
            db_session, _recipient("guardian-1", email=True), Category.EVENT, MESSAGE
        )

        _target, outbound = adapters["smtp"].sent[0]
        assert outbound.attempt_id == str(attempt.id)

    async def test_generates_message_ref_when_missing(self, db_session, orchestrator):
        (attempt,) = await orchestrator.send_one(
            db_session, _recipient("guardian-1", in_app=True), Category.EVENT, MESSAGE
        )

        assert uuid.UUID(attempt.message_ref)
        assert attempt.provider == "in_app"
        assert attempt.destination == "guardian-1"

    async def test_opted_out_category_sends_nothing(self, db_session, orchestrator, adapters):
        recipient = Recipient(
            recipient_ref="guardian-1",
            preferences=RecipientPreferences.from_flags(email=True, grade=False),
            email="guardian-1@example.com",
        )

        attempts = await orchestrator.send_one(db_session, recipient, Category.GRADE, MESSAGE)

        assert attempts == []
        assert adapters["smtp"].sent == []

    async def test_same_message_ref_reuses_attempt(self, db_session, orchestrator):
        recipient = _recipient("guardian-1", sms=True)

        (first,) = await orchestrator.send_one(
            db_session, recipient, Category.ATTENDANCE, MESSAGE, message_ref="absence-1"
        )
        (second,) = await orchestrator.send_one(
            db_session, recipient, Category.ATTENDANCE, MESSAGE, message_ref="absence-1"
        )

        assert first.id == second.id
        assert second.attempt_count == 2

    async def test_missing_adapter_fails_attempt(self, db_session, adapters):
        registry = AdapterRegistry([adapters["smtp"]])
        orchestrator = DispatchOrchestrator(registry)

        (attempt,) = await orchestrator.send_one(
            db_session, _recipient("guardian-1", chat=True), Category.EVENT, MESSAGE
        )

        assert attempt.status == DeliveryStatus.FAILED.value
        assert attempt.error_message == "No adapter configured for channel chat"

    async def test_adapter_exception_is_contained(self, db_session, fake_adapter_cls):
        class ExplodingAdapter(fake_adapter_cls):
            async def send(self, target, message):
                raise RuntimeError("boom")

        registry = AdapterRegistry([ExplodingAdapter(Channel.EMAIL, "smtp")])
        orchestrator = DispatchOrchestrator(registry)

        (attempt,) = await orchestrator.send_one(
            db_session, _recipient("guardian-1", email=True), Category.EVENT, MESSAGE
        )

        assert attempt.status == DeliveryStatus.FAILED.value
        assert attempt.error_message == "boom"


class TestSendBulk:
    """Tests for multi-recipient dispatch."""

    async def test_failures_do_not_abort_batch(self, db_session, orchestrator, adapters):
        adapters["mtn"].fail_for = {"guardian-2", "guardian-4"}
        recipients = [_recipient(f"guardian-{i}", sms=True) for i in range(1, 6)]

        outcomes = await orchestrator.send_bulk(
            db_session, recipients, Category.ATTENDANCE, MESSAGE, message_ref="absence-1"
        )

        assert [o.recipient_ref for o in outcomes] == [r.recipient_ref for r in recipients]
        assert all(len(o.attempts) == 1 for o in outcomes)
        failed = {o.recipient_ref for o in outcomes if o.failed_count}
        assert failed == {"guardian-2", "guardian-4"}
        assert len(adapters["mtn"].sent) == 5

    async def test_skipped_recipient_has_reason(self, db_session, orchestrator):
        outcomes = await orchestrator.send_bulk(
            db_session,
            [_recipient("guardian-1", email=True), _recipient("guardian-2")],
            Category.EVENT,
            MESSAGE,
        )

        skipped = outcomes[1]
        assert skipped.skipped is True
        assert skipped.attempts == []
        assert skipped.reason == "No channel enabled for category event"
        assert outcomes[0].skipped is False

    async def test_duplicate_recipients_dispatched_once(self, db_session, orchestrator, adapters):
        recipient = _recipient("guardian-1", email=True)

        outcomes = await orchestrator.send_bulk(
            db_session, [recipient, recipient], Category.EVENT, MESSAGE
        )

        assert len(outcomes) == 1
        assert len(adapters["smtp"].sent) == 1

    async def test_one_attempt_per_channel(self, db_session, orchestrator):
        outcomes = await orchestrator.send_bulk(
            db_session,
            [_recipient("guardian-1", email=True, sms=True, chat=True, in_app=True)],
            Category.GENERIC,
            MESSAGE,
            message_ref="newsletter-3",
        )

        channels = [a.channel for a in outcomes[0].attempts]
        assert channels == ["email", "sms", "chat", "in_app"]

        repository = get_delivery_attempt_repository()
        stored = await repository.list_for_message(db_session, "guardian-1", "newsletter-3")
        assert len(stored) == 4

    async def test_in_flight_sends_never_exceed_max_concurrency(
        self, db_session, fake_adapter_cls
    ):
        class SlowAdapter(fake_adapter_cls):
            in_flight = 0
            peak = 0

            async def send(self, target, message):
                type(self).in_flight += 1
                type(self).peak = max(type(self).peak, type(self).in_flight)
                try:
                    await asyncio.sleep(0.01)
                    return await super().send(target, message)
                finally:
                    type(self).in_flight -= 1

        adapter = SlowAdapter(Channel.SMS, "mtn")
        orchestrator = DispatchOrchestrator(AdapterRegistry([adapter]), max_concurrency=3)
        recipients = [_recipient(f"guardian-{i}", sms=True) for i in range(20)]

        outcomes = await orchestrator.send_bulk(
            db_session, recipients, Category.EVENT, MESSAGE, message_ref="trip-1"
        )

        assert len(outcomes) == 20
        assert len(adapter.sent) == 20
        assert 1 < SlowAdapter.peak <= 3


class TestResend:
    """Tests for resending an existing attempt."""

    async def test_resend_increments_count_by_one(self, db_session, orchestrator, adapters):
        adapters["mtn"].fail_with = "timeout"
        adapters["mtn"].retryable = True
        (attempt,) = await orchestrator.send_one(
            db_session, _recipient("guardian-1", sms=True), Category.ATTENDANCE, MESSAGE
        )
        assert attempt.last_error_retryable is True

        adapters["mtn"].fail_with = None
        adapters["mtn"].retryable = False
        resent = await orchestrator.resend(db_session, attempt.id)

        assert resent.id == attempt.id
        assert resent.attempt_count == 2
        assert resent.status == DeliveryStatus.SENT.value
        assert resent.error_message is None
        # Resend goes to the destination recorded on the first send
        assert adapters["mtn"].sent[-1][0].phone == attempt.destination

    async def test_resend_uses_original_provider(self, db_session, orchestrator, adapters):
        (attempt,) = await orchestrator.send_one(
            db_session, _recipient("guardian-1", sms=True), Category.ATTENDANCE, MESSAGE
        )
        attempt.provider = "orange"
        await db_session.flush()

        await orchestrator.resend(db_session, attempt.id)

        assert len(adapters["orange"].sent) == 1
        assert len(adapters["mtn"].sent) == 1

    async def test_resend_failure_keeps_new_error(self, db_session, orchestrator, adapters):
        (attempt,) = await orchestrator.send_one(
            db_session, _recipient("guardian-1", email=True), Category.EVENT, MESSAGE
        )
        adapters["smtp"].fail_with = "mailbox full"

        resent = await orchestrator.resend(db_session, attempt.id)

        assert resent.status == DeliveryStatus.FAILED.value
        assert resent.error_message == "mailbox full"
        assert resent.attempt_count == 2

    async def test_resend_unknown_attempt(self, db_session, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.resend(db_session, uuid.uuid4())
