"""Pydantic schemas for the notifications feature."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from notification_service.features.notifications.models import (
    Category,
    Channel,
    DeliveryStatus,
)

# ============================================================================
# Composed message
# ============================================================================


class ComposedMessagePayload(BaseModel):
    """Rendered message content shared by every channel."""

    subject: str = Field(..., min_length=1, max_length=500, description="Email subject line")
    body: str = Field(..., min_length=1, description="Plain text body (SMS, chat, email text part)")
    html_body: str | None = Field(default=None, description="Optional HTML email body")
    template_name: str | None = Field(
        default=None,
        max_length=100,
        description="Provider-side chat template name",
    )
    template_params: list[Any] = Field(
        default_factory=list,
        description="Positional body parameters for the chat template",
    )


# ============================================================================
# Send
# ============================================================================


class SendNotificationRequest(ComposedMessagePayload):
    """Payload for dispatching a message to one recipient."""

    model_config = ConfigDict(populate_by_name=True)

    recipient_ref: str = Field(..., alias="recipientRef", min_length=1, max_length=100)
    subject_ref: str | None = Field(default=None, alias="subjectRef", max_length=100)
    category: Category = Field(default=Category.GENERIC)
    message_ref: str | None = Field(
        default=None,
        alias="messageId",
        max_length=200,
        description="Logical message id; generated when omitted",
    )


class SendBulkRequest(ComposedMessagePayload):
    """Payload for dispatching one message to many recipients."""

    model_config = ConfigDict(populate_by_name=True)

    recipient_refs: list[str] = Field(..., alias="recipientRefs", min_length=1, max_length=5000)
    category: Category = Field(default=Category.GENERIC)
    message_ref: str | None = Field(default=None, alias="messageId", max_length=200)


# ============================================================================
# Delivery attempts
# ============================================================================


class DeliveryAttemptResponse(BaseModel):
    """Delivery attempt as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_ref: str
    subject_ref: str | None = None
    group_ref: str | None = None
    message_ref: str
    channel: Channel
    category: Category
    provider: str | None = None
    destination: str | None = None
    subject: str
    status: DeliveryStatus
    provider_message_id: str | None = None
    provider_delivery_status: str | None = None
    attempt_count: int
    last_attempt_at: datetime | None = None
    opened_at: datetime | None = None
    clicked_at: datetime | None = None
    error_message: str | None = None
    is_reminder: bool = False
    reminder_sent_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DeliveryAttemptListResponse(BaseModel):
    items: list[DeliveryAttemptResponse]
    total: int
    limit: int
    offset: int
    has_next: bool


class RecipientOutcomeResponse(BaseModel):
    """Per-recipient outcome of a send."""

    recipient_ref: str
    skipped: bool = False
    reason: str | None = None
    attempts: list[DeliveryAttemptResponse] = Field(default_factory=list)


class SendResponse(BaseModel):
    message_ref: str
    outcome: RecipientOutcomeResponse


class SendBulkResponse(BaseModel):
    message_ref: str
    outcomes: list[RecipientOutcomeResponse]
    dispatched: int
    skipped: int
    failed_attempts: int


class ResendResponse(BaseModel):
    """Resent attempt plus whether a failure is worth retrying."""

    attempt: DeliveryAttemptResponse
    retryable: bool = Field(
        default=False,
        description="True when the send failed on a transient network error",
    )


class ReminderResponse(BaseModel):
    recipient_ref: str
    message_ref: str
    attempts: list[DeliveryAttemptResponse]


# ============================================================================
# Recipient profiles
# ============================================================================


class RecipientProfileUpsert(BaseModel):
    """Contact points and opt-ins for a recipient."""

    group_ref: str | None = Field(default=None, max_length=100)
    display_name: str | None = Field(default=None, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, max_length=50)

    email_enabled: bool = True
    sms_enabled: bool = False
    chat_enabled: bool = False
    in_app_enabled: bool = False

    attendance_enabled: bool = True
    grade_enabled: bool = True
    event_enabled: bool = True
    generic_enabled: bool = True

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        if v is not None and not any(ch.isdigit() for ch in v):
            msg = "Phone number must contain digits"
            raise ValueError(msg)
        return v


class RecipientProfileResponse(RecipientProfileUpsert):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    recipient_ref: str
    email: str | None = None
    created_at: datetime
    updated_at: datetime


# ============================================================================
# Webhooks
# ============================================================================


class SmsWebhookPayload(BaseModel):
    """Carrier delivery report. Unknown fields are accepted and ignored."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    log_id: str | None = Field(default=None, alias="logId")
    message_id: str | None = Field(default=None, alias="messageId")
    status: str | None = None
    error: str | None = None


class WebhookAck(BaseModel):
    status: str = "ok"


class StatusRefreshResponse(BaseModel):
    attempt: DeliveryAttemptResponse
    provider_status: str | None = None
    success: bool
    error: str | None = None


# ============================================================================
# Analytics
# ============================================================================


class ChannelOutcomeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    delivered: int = 0
    failed: int = 0


class AnalyticsResponse(BaseModel):
    """Engagement and delivery counts for a group and/or message."""

    model_config = ConfigDict(from_attributes=True)

    total: int
    opened: int
    clicked: int
    open_rate: float = Field(description="Percentage of attempts opened")
    click_rate: float = Field(description="Percentage of attempts clicked")
    per_channel: dict[str, ChannelOutcomeResponse]
    sms_delivered: int
    sms_failed: int
