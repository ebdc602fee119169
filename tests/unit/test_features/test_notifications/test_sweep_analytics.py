"""Unit tests for the reminder sweep and engagement analytics."""

from __future__ import annotations

from datetime import timedelta

import pytest

from notification_service.core.exceptions import NotFoundException
from notification_service.features.notifications.analytics import ChannelOutcome, compute_analytics
from notification_service.features.notifications.models import Category, DeliveryAttempt
from notification_service.features.notifications.repository import get_delivery_attempt_repository
from notification_service.features.notifications.service import ComposedMessage, Recipient
from notification_service.features.notifications.state import apply_provider_status
from notification_service.features.notifications.sweep import (
    ReminderSweep,
    compose_reminder,
    reminder_message_ref,
)
from notification_service.features.notifications.tracking import EngagementTracker

MESSAGE = ComposedMessage(subject="Parents evening", body="Thursday at 17:00.")


@pytest.fixture
def sweep(orchestrator) -> ReminderSweep:
    return ReminderSweep(orchestrator)


@pytest.fixture
def dispatch(db_session, orchestrator, make_profile):
    """Create a profile and send MESSAGE to it."""

    async def _dispatch(ref: str, message_ref: str = "evening-1", **flags):
        profile = await make_profile(ref, **flags)
        return await orchestrator.send_one(
            db_session,
            Recipient.from_profile(profile),
            Category.EVENT,
            MESSAGE,
            message_ref=message_ref,
        )

    return _dispatch


class TestReminderSweep:
    """Tests for ReminderSweep.run_sweep."""

    async def test_reminds_only_unopened_emails(self, db_session, sweep, dispatch, adapters):
        (unopened,) = await dispatch("guardian-1")
        (opened,) = await dispatch("guardian-2")
        await EngagementTracker().record_open(db_session, str(opened.id))

        sent = await sweep.run_sweep(db_session)

        assert sent == 1
        assert unopened.reminder_sent_at is not None
        assert opened.reminder_sent_at is None

        reminder_target, reminder = adapters["smtp"].sent[-1]
        assert reminder_target.recipient_ref == "guardian-1"
        assert reminder.subject == "Reminder: Parents evening"

    async def test_second_run_sends_nothing(self, db_session, sweep, dispatch, adapters):
        await dispatch("guardian-1")

        assert await sweep.run_sweep(db_session) == 1
        sends = len(adapters["smtp"].sent)

        assert await sweep.run_sweep(db_session) == 0
        assert len(adapters["smtp"].sent) == sends

    async def test_reminder_attempts_are_flagged(self, db_session, sweep, dispatch):
        await dispatch("guardian-1", sms_enabled=True)

        await sweep.run_sweep(db_session)

        result = await get_delivery_attempt_repository().search_attempts(
            db_session, recipient_ref="guardian-1", message_ref="evening-1:reminder"
        )
        assert {a.channel for a in result.items} == {"email", "sms"}
        assert all(a.is_reminder for a in result.items)

    async def test_outside_lookback_is_ignored(self, db_session, sweep, dispatch):
        await dispatch("guardian-1")

        assert await sweep.run_sweep(db_session, lookback=timedelta(seconds=-60)) == 0

    async def test_sms_only_recipients_are_not_candidates(self, db_session, sweep, dispatch):
        await dispatch("guardian-1", email_enabled=False, sms_enabled=True)

        assert await sweep.run_sweep(db_session) == 0

    async def test_failed_reminder_still_stamps(self, db_session, sweep, dispatch, adapters):
        (original,) = await dispatch("guardian-1")
        adapters["smtp"].fail_with = "mailbox full"

        await sweep.run_sweep(db_session)

        assert original.reminder_sent_at is not None
        assert await sweep.run_sweep(db_session) == 0


class TestRemind:
    """Tests for ad hoc reminders."""

    async def test_remind_dispatches_reminder(self, db_session, sweep, dispatch):
        (original,) = await dispatch("guardian-1")

        attempts = await sweep.remind(db_session, "guardian-1", "evening-1")

        assert len(attempts) == 1
        assert attempts[0].message_ref == "evening-1:reminder"
        assert attempts[0].is_reminder is True
        assert original.reminder_sent_at is not None

    async def test_unknown_recipient(self, db_session, sweep):
        with pytest.raises(NotFoundException) as exc_info:
            await sweep.remind(db_session, "nobody", "evening-1")

        assert exc_info.value.status_code == 404

    async def test_unknown_message(self, db_session, sweep, make_profile):
        await make_profile("guardian-1")

        with pytest.raises(NotFoundException):
            await sweep.remind(db_session, "guardian-1", "never-sent")


def test_compose_reminder_prefixes_content():
    original = DeliveryAttempt(subject="", body="Fees are due.", template_params=None)

    reminder = compose_reminder(original)

    assert reminder.subject == "Reminder: School notification"
    assert reminder.body.endswith("Fees are due.")
    assert reminder_message_ref("fees-1") == "fees-1:reminder"


def test_compose_reminder_clips_long_subject_to_column():
    limit = DeliveryAttempt.__table__.c.subject.type.length
    original = DeliveryAttempt(subject="x" * limit, body="Fees are due.", template_params=None)

    reminder = compose_reminder(original)

    assert len(reminder.subject) == limit
    assert reminder.subject.startswith("Reminder: x")


def test_reminder_ref_fits_message_ref_column():
    limit = DeliveryAttempt.__table__.c.message_ref.type.length

    assert len(reminder_message_ref("m" * 200)) <= limit


@pytest.mark.parametrize(
    ("html", "expected"),
    [
        (
            "<html><body class=\"mail\"><p>Fees are due.</p></body></html>",
            "<html><body class=\"mail\"><p>This is a reminder about a message you have "
            "not opened yet.</p><p>Fees are due.</p></body></html>",
        ),
        (
            "<p>Fees are due.</p>",
            "<p>This is a reminder about a message you have not opened yet.</p>"
            "<p>Fees are due.</p>",
        ),
    ],
)
def test_compose_reminder_adds_note_to_html(html, expected):
    original = DeliveryAttempt(subject="Fees", body="Fees are due.", html_body=html)

    assert compose_reminder(original).html_body == expected


def test_compose_reminder_without_html_keeps_plain_text_only():
    original = DeliveryAttempt(subject="Fees", body="Fees are due.", html_body=None)

    assert compose_reminder(original).html_body is None


class TestAnalytics:
    """Tests for compute_analytics."""

    async def test_empty_scope(self, db_session):
        analytics = await compute_analytics(db_session, group_ref="nobody")

        assert analytics.total == 0
        assert analytics.open_rate == 0.0
        assert analytics.click_rate == 0.0
        assert set(analytics.per_channel) == {"email", "sms", "chat", "in_app"}

    async def test_rates_and_channel_outcomes(self, db_session, dispatch, adapters):
        tracker = EngagementTracker()
        emails = [(await dispatch(f"guardian-{i}"))[0] for i in range(1, 5)]
        await tracker.record_open(db_session, str(emails[0].id))
        await tracker.record_open(db_session, str(emails[1].id))
        await tracker.record_click(db_session, str(emails[1].id))

        adapters["mtn"].fail_for = {"guardian-6"}
        (sms_ok,) = await dispatch("guardian-5", email_enabled=False, sms_enabled=True)
        await dispatch("guardian-6", email_enabled=False, sms_enabled=True)
        apply_provider_status(sms_ok, "DeliveredToTerminal")
        await db_session.flush()

        analytics = await compute_analytics(db_session, message_ref="evening-1")

        assert analytics.total == 6
        assert analytics.opened == 2
        assert analytics.clicked == 1
        assert analytics.open_rate == 33.33
        assert analytics.click_rate == 16.67
        assert analytics.per_channel["email"].delivered == 2
        assert analytics.per_channel["sms"].delivered == 1
        assert analytics.per_channel["sms"].failed == 1
        assert analytics.sms_delivered == 1
        assert analytics.sms_failed == 0

    async def test_filters_by_group(self, db_session, dispatch):
        await dispatch("guardian-1", group_ref="form-1a")
        await dispatch("guardian-2", group_ref="form-2b")

        analytics = await compute_analytics(db_session, group_ref="form-2b")

        assert analytics.total == 1
        assert analytics.per_channel["email"].delivered == 0
        assert analytics.per_channel["sms"] == ChannelOutcome()
