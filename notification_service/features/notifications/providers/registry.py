"""Adapter registry: channel and provider name to adapter instance."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from notification_service.features.notifications.models import Channel

from .chat import ChatAdapter
from .email import SmtpEmailAdapter
from .in_app import InAppAdapter
from .sms import MtnCarrierProfile, OrangeCarrierProfile, SmsCarrierAdapter

if TYPE_CHECKING:
    from collections.abc import Iterable

    from notification_service.core.settings.notifications import NotificationSettings
    from notification_service.core.settings.providers import (
        ChatSettings,
        EmailSettings,
        MtnSmsSettings,
        OrangeSmsSettings,
    )
    from notification_service.features.notifications.tokens import ProviderTokenCache

    from .base import ProviderAdapter

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Resolves the adapter for a channel (first sends) or a provider (resends).

    Each channel has one default adapter. Additional adapters registered
    under the same channel (the second SMS carrier) are reachable by
    provider name, which is what resend uses to reach the carrier that
    handled the original send.
    """

    def __init__(
        self,
        adapters: Iterable[ProviderAdapter],
        *,
        channel_defaults: dict[Channel, str] | None = None,
    ) -> None:
        self._by_provider: dict[str, ProviderAdapter] = {}
        self._by_channel: dict[Channel, ProviderAdapter] = {}

        for adapter in adapters:
            self._by_provider[adapter.provider_name] = adapter
            self._by_channel.setdefault(Channel(adapter.channel), adapter)

        for channel, provider in (channel_defaults or {}).items():
            self._by_channel[channel] = self._by_provider[provider]

    def for_channel(self, channel: Channel | str) -> ProviderAdapter | None:
        return self._by_channel.get(Channel(channel))

    def by_provider(self, provider: str | None) -> ProviderAdapter | None:
        if provider is None:
            return None
        return self._by_provider.get(provider)

    def resolve(self, channel: Channel | str, provider: str | None = None) -> ProviderAdapter | None:
        """Adapter for ``provider`` when known, else the channel default."""
        adapter = self.by_provider(provider)
        if adapter is not None and adapter.channel == Channel(channel):
            return adapter
        return self.for_channel(channel)

    @property
    def providers(self) -> list[str]:
        return sorted(self._by_provider)


def build_http_client(settings: NotificationSettings) -> httpx.AsyncClient:
    """Shared outbound client with bounded timeouts for every provider call."""
    timeout = httpx.Timeout(
        settings.provider_timeout_seconds,
        connect=settings.provider_connect_timeout_seconds,
    )
    limits = httpx.Limits(max_connections=settings.max_concurrency * 2)
    return httpx.AsyncClient(timeout=timeout, limits=limits)


def build_adapter_registry(
    *,
    settings: NotificationSettings,
    email_settings: EmailSettings,
    mtn_settings: MtnSmsSettings,
    orange_settings: OrangeSmsSettings,
    chat_settings: ChatSettings,
    token_cache: ProviderTokenCache,
    client: httpx.AsyncClient,
) -> AdapterRegistry:
    """Construct every adapter from configuration.

    Adapters with missing credentials are still built; their sends fail
    with a "not configured" provider error recorded on the attempt.
    """
    tracking_base_url = str(settings.tracking_base_url) if settings.tracking_base_url else None

    adapters: list[ProviderAdapter] = [
        SmtpEmailAdapter(
            email_settings,
            timeout=settings.provider_timeout_seconds,
            tracking_base_url=tracking_base_url,
        ),
        SmsCarrierAdapter(
            MtnCarrierProfile(mtn_settings),
            country_code=settings.country_code,
            token_cache=token_cache,
            client=client,
        ),
        SmsCarrierAdapter(
            OrangeCarrierProfile(orange_settings),
            country_code=settings.country_code,
            token_cache=token_cache,
            client=client,
        ),
        ChatAdapter(chat_settings, country_code=settings.country_code, client=client),
        InAppAdapter(),
    ]

    registry = AdapterRegistry(
        adapters,
        channel_defaults={Channel.SMS: settings.default_sms_carrier},
    )
    logger.info(
        "Provider adapters initialized",
        extra={
            "providers": registry.providers,
            "default_sms_carrier": settings.default_sms_carrier,
            "operation": "providers.build",
        },
    )
    return registry


__all__ = ["AdapterRegistry", "build_adapter_registry", "build_http_client"]
