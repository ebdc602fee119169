"""Notification dispatch engine settings.

Controls channel routing defaults, provider call bounds, tracking URLs,
and the reminder sweep schedule.
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

SmsCarrier = Literal["mtn", "orange"]


class NotificationSettings(BaseSettings):
    """Configuration for the notification dispatch engine.

    Environment variables use NOTIFY_ prefix.
    Example: NOTIFY_DEFAULT_SMS_CARRIER=orange, NOTIFY_MAX_CONCURRENCY=10
    """

    # Routing
    default_sms_carrier: SmsCarrier = Field(
        default="mtn",
        description="Carrier adapter used for the SMS channel",
    )
    country_code: str = Field(
        default="237",
        pattern=r"^\d{1,4}$",
        description="Country calling code used to normalize phone numbers",
    )

    # Engagement tracking
    tracking_base_url: HttpUrl | None = Field(
        default=None,
        description="Public base URL (including API prefix) for open/click tracking links",
    )

    # Provider calls
    max_concurrency: int = Field(
        default=10,
        ge=1,
        le=200,
        description="Maximum concurrent provider calls during bulk sends and sweeps",
    )
    provider_timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        le=120.0,
        description="Total timeout for a single outbound provider request (seconds)",
    )
    provider_connect_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        le=60.0,
        description="Connection timeout for outbound provider requests (seconds)",
    )
    token_safety_margin_seconds: float = Field(
        default=60.0,
        ge=0,
        le=3600.0,
        description="Refresh cached provider tokens this long before they expire",
    )

    # Reminder sweep
    reminder_lookback_days: int = Field(
        default=7,
        ge=1,
        le=90,
        description="Window of email attempts considered by the reminder sweep",
    )
    reminder_schedule_enabled: bool = Field(
        default=False,
        description="Run the reminder sweep on a cron schedule inside the API process",
    )
    reminder_cron_hour: int = Field(default=8, ge=0, le=23, description="Sweep hour (UTC)")
    reminder_cron_minute: int = Field(default=0, ge=0, le=59, description="Sweep minute (UTC)")

    model_config = SettingsConfigDict(
        env_prefix="NOTIFY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )


__all__ = ["NotificationSettings", "SmsCarrier"]
