"""Process-wide provider runtime: HTTP client, token cache, adapter registry.

Built once at startup (FastAPI lifespan or CLI command) from the cached
settings and closed at shutdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from notification_service.core.settings import (
    get_chat_settings,
    get_email_settings,
    get_mtn_sms_settings,
    get_notification_settings,
    get_orange_sms_settings,
)
from notification_service.features.notifications.providers import (
    AdapterRegistry,
    build_adapter_registry,
    build_http_client,
)
from notification_service.features.notifications.service import DispatchOrchestrator
from notification_service.features.notifications.sweep import ReminderSweep
from notification_service.features.notifications.tokens import ProviderTokenCache

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NotificationRuntime:
    client: httpx.AsyncClient
    token_cache: ProviderTokenCache
    registry: AdapterRegistry

    @classmethod
    def create(cls) -> NotificationRuntime:
        settings = get_notification_settings()
        client = build_http_client(settings)
        token_cache = ProviderTokenCache(safety_margin=settings.token_safety_margin_seconds)
        registry = build_adapter_registry(
            settings=settings,
            email_settings=get_email_settings(),
            mtn_settings=get_mtn_sms_settings(),
            orange_settings=get_orange_sms_settings(),
            chat_settings=get_chat_settings(),
            token_cache=token_cache,
            client=client,
        )
        return cls(client=client, token_cache=token_cache, registry=registry)

    def orchestrator(self) -> DispatchOrchestrator:
        return DispatchOrchestrator(
            self.registry,
            max_concurrency=get_notification_settings().max_concurrency,
        )

    def sweep(self) -> ReminderSweep:
        return ReminderSweep(self.orchestrator())

    async def aclose(self) -> None:
        await self.client.aclose()
        logger.info("Provider HTTP client closed", extra={"operation": "runtime.close"})


__all__ = ["NotificationRuntime"]
