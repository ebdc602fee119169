"""Modular Pydantic Settings v2 configuration.

Settings follow 12-factor principles:
- Single source of truth via environment variables (or a local .env file)
- Modular settings by domain (app/db/logging/notifications/providers)
- LRU-cached settings loaders
- Immutable (frozen) settings models
- SecretStr for credentials

Import settings via cached loaders:
    from notification_service.core.settings import get_notification_settings
"""

from __future__ import annotations

from .loader import (
    clear_all_caches,
    get_app_settings,
    get_chat_settings,
    get_db_settings,
    get_email_settings,
    get_logging_settings,
    get_mtn_sms_settings,
    get_notification_settings,
    get_orange_sms_settings,
)

__all__ = [
    "clear_all_caches",
    "get_app_settings",
    "get_chat_settings",
    "get_db_settings",
    "get_email_settings",
    "get_logging_settings",
    "get_mtn_sms_settings",
    "get_notification_settings",
    "get_orange_sms_settings",
]
