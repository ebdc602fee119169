"""SQLAlchemy models for notification dispatch and delivery tracking."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from notification_service.core.database import UUIDv7TimestampedBase

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Channel(StrEnum):
    """Delivery medium. Declaration order is the routing priority."""

    EMAIL = "email"
    SMS = "sms"
    CHAT = "chat"
    IN_APP = "in_app"


class Category(StrEnum):
    """Kind of school event a notification is about."""

    ATTENDANCE = "attendance"
    GRADE = "grade"
    EVENT = "event"
    GENERIC = "generic"


class DeliveryStatus(StrEnum):
    """Primary lifecycle state of a delivery attempt."""

    QUEUED = "queued"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    OPENED = "opened"
    CLICKED = "clicked"


class DeliveryAttempt(UUIDv7TimestampedBase):
    """One channel dispatch of one logical message to one recipient.

    Created Queued by the dispatch orchestrator, then mutated by the
    adapter result, provider webhooks, engagement tracking and resend.
    Records are never deleted here.

    Indexes:
        - (recipient_ref, channel, message_ref) unique
        - provider_message_id for webhook correlation
        - (channel, created_at) for the reminder sweep
    """

    __tablename__ = "delivery_attempts"
    __table_args__ = (
        UniqueConstraint(
            "recipient_ref",
            "channel",
            "message_ref",
            name="uq_delivery_attempts_recipient_channel_message",
        ),
        Index("ix_delivery_attempts_provider_message_id", "provider_message_id"),
        Index("ix_delivery_attempts_channel_created_at", "channel", "created_at"),
        Index("ix_delivery_attempts_group_ref", "group_ref"),
    )

    recipient_ref: Mapped[str] = mapped_column(
        String(100), nullable=False, comment="External guardian/recipient id"
    )
    subject_ref: Mapped[str | None] = mapped_column(
        String(100), nullable=True, comment="External student/subject id"
    )
    group_ref: Mapped[str | None] = mapped_column(
        String(100), nullable=True, comment="Recipient group (class) for analytics"
    )
    message_ref: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Logical message id (exam, event, ...)"
    )

    channel: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Category.GENERIC.value
    )
    provider: Mapped[str | None] = mapped_column(
        String(50), nullable=True, comment="Adapter that handled the last send"
    )
    destination: Mapped[str | None] = mapped_column(
        String(255), nullable=True, comment="Normalized address used for the last send"
    )

    subject: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    html_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    template_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    template_params: Mapped[list[Any] | None] = mapped_column(JSONType, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeliveryStatus.QUEUED.value, index=True
    )
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider_delivery_status: Mapped[str | None] = mapped_column(String(100), nullable=True)

    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    clicked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error_retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    is_reminder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<DeliveryAttempt(id={self.id}, recipient={self.recipient_ref}, "
            f"channel={self.channel}, status={self.status})>"
        )


class RecipientProfile(UUIDv7TimestampedBase):
    """Contact points and channel/category opt-ins for one recipient."""

    __tablename__ = "recipient_profiles"

    recipient_ref: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    group_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    email_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sms_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    chat_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    in_app_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    attendance_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    grade_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    event_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    generic_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<RecipientProfile(recipient_ref={self.recipient_ref})>"


__all__ = [
    "Category",
    "Channel",
    "DeliveryAttempt",
    "DeliveryStatus",
    "RecipientProfile",
]
