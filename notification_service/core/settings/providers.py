"""Provider credential settings.

One settings class per upstream provider. They are read once when the
adapters are built and never re-read per call.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


def _provider_config(prefix: str) -> SettingsConfigDict:
    return SettingsConfigDict(
        env_prefix=prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )


class MtnSmsSettings(BaseSettings):
    """MTN SMS gateway (OAuth client credentials with a pre-encoded basic key).

    Environment variables use MTN_SMS_ prefix.
    """

    api_url: str | None = Field(default=None, description="Gateway base URL")
    api_key: SecretStr | None = Field(
        default=None,
        description="Base64 basic credential sent to the token endpoint",
    )
    sender_id: str | None = Field(default=None, description="Registered sender name")
    callback_url: str | None = Field(
        default=None,
        description="Delivery report callback URL registered with each send",
    )

    model_config = _provider_config("MTN_SMS_")


class OrangeSmsSettings(BaseSettings):
    """Orange SMS messaging API (OAuth client credentials).

    Environment variables use ORANGE_SMS_ prefix.
    """

    api_url: str | None = Field(default=None, description="API base URL")
    client_id: str | None = Field(default=None, description="OAuth client id")
    client_secret: SecretStr | None = Field(default=None, description="OAuth client secret")
    sender_id: str | None = Field(default=None, description="Sender address (digits)")

    model_config = _provider_config("ORANGE_SMS_")


class ChatSettings(BaseSettings):
    """Chat-messaging gateway (WhatsApp Business Cloud API compatible).

    Environment variables use WHATSAPP_ prefix.
    """

    api_url: str = Field(
        default="https://graph.facebook.com/v17.0",
        description="Graph API base URL",
    )
    api_key: SecretStr | None = Field(default=None, description="Static bearer access token")
    phone_number_id: str | None = Field(default=None, description="Sending phone number id")
    template_language: str = Field(
        default="en_US",
        description="Language code used for provider-side templates",
    )

    model_config = _provider_config("WHATSAPP_")


class EmailSettings(BaseSettings):
    """SMTP mail transport.

    Environment variables use EMAIL_ prefix.
    """

    host: str | None = Field(default=None, description="SMTP server hostname")
    port: int = Field(default=587, ge=1, le=65535, description="SMTP server port")
    use_tls: bool = Field(default=False, description="Implicit TLS (SMTPS, usually port 465)")
    start_tls: bool = Field(default=True, description="Upgrade with STARTTLS after connecting")
    user: str | None = Field(default=None, description="SMTP username")
    password: SecretStr | None = Field(default=None, description="SMTP password")
    from_address: str = Field(
        default="noreply@school.example",
        description="Envelope and header sender address",
    )
    from_name: str | None = Field(default=None, description="Display name for the sender")

    model_config = _provider_config("EMAIL_")


__all__ = [
    "ChatSettings",
    "EmailSettings",
    "MtnSmsSettings",
    "OrangeSmsSettings",
]
