"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the process.

Usage:
    from notification_service.core.settings.loader import get_notification_settings

    settings = get_notification_settings()  # First call: loads and validates
    settings = get_notification_settings()  # Subsequent calls: cached instance

Testing:
    In tests, clear the cache to force reload:
    get_notification_settings.cache_clear()
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .logs import LoggingSettings
from .notifications import NotificationSettings
from .postgres import PostgresSettings
from .providers import ChatSettings, EmailSettings, MtnSmsSettings, OrangeSmsSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings."""
    return AppSettings()


@lru_cache(maxsize=1)
def get_db_settings() -> PostgresSettings:
    """Get cached database settings."""
    return PostgresSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings."""
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_notification_settings() -> NotificationSettings:
    """Get cached notification engine settings."""
    return NotificationSettings()


@lru_cache(maxsize=1)
def get_mtn_sms_settings() -> MtnSmsSettings:
    """Get cached MTN SMS gateway settings."""
    return MtnSmsSettings()


@lru_cache(maxsize=1)
def get_orange_sms_settings() -> OrangeSmsSettings:
    """Get cached Orange SMS API settings."""
    return OrangeSmsSettings()


@lru_cache(maxsize=1)
def get_chat_settings() -> ChatSettings:
    """Get cached chat gateway settings."""
    return ChatSettings()


@lru_cache(maxsize=1)
def get_email_settings() -> EmailSettings:
    """Get cached SMTP transport settings."""
    return EmailSettings()


def clear_all_caches() -> None:
    """Clear every cached settings instance (tests and config reloads)."""
    for loader in (
        get_app_settings,
        get_db_settings,
        get_logging_settings,
        get_notification_settings,
        get_mtn_sms_settings,
        get_orange_sms_settings,
        get_chat_settings,
        get_email_settings,
    ):
        loader.cache_clear()
