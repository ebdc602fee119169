"""Per-provider bearer token cache with single-flight refresh.

Carrier adapters register an exchanger (a coroutine performing the
client-credentials exchange) and ask the cache for a token before each
call. Concurrent callers racing an expired token share one exchange.

Example:
    cache = ProviderTokenCache(safety_margin=60)
    cache.register("orange", orange_exchanger)
    token = await cache.get_token("orange")
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from notification_service.core.exceptions import (
    ProviderError,
    TokenExchangeError,
    TransientNetworkError,
)
from notification_service.features.notifications.metrics import (
    notification_token_cache_hits_total,
    notification_token_exchanges_total,
)
from notification_service.infra.logging import get_lazy_logger

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)


@dataclass(frozen=True, slots=True)
class TokenGrant:
    """Result of a client-credentials exchange."""

    access_token: str
    expires_in: float


@dataclass(frozen=True, slots=True)
class _CachedToken:
    access_token: str
    expires_at: float


TokenExchanger = Callable[[], Awaitable[TokenGrant]]


class ProviderTokenCache:
    """Cached ``(token, expiry)`` per provider.

    A cached token is served while ``now < expiry - safety_margin``.
    Failed exchanges raise ``TokenExchangeError`` (or ``TransientNetworkError``)
    to every waiter and leave the cache untouched.

    Args:
        safety_margin: Seconds before expiry at which a token is refreshed.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(
        self,
        *,
        safety_margin: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._safety_margin = safety_margin
        self._clock = clock
        self._exchangers: dict[str, TokenExchanger] = {}
        self._tokens: dict[str, _CachedToken] = {}
        self._inflight: dict[str, asyncio.Future[str]] = {}

    def register(self, provider: str, exchanger: TokenExchanger) -> None:
        """Register the exchange coroutine factory for ``provider``."""
        self._exchangers[provider] = exchanger

    def invalidate(self, provider: str) -> None:
        """Drop the cached token, e.g. after the provider rejected it."""
        self._tokens.pop(provider, None)

    def is_fresh(self, provider: str) -> bool:
        cached = self._tokens.get(provider)
        return cached is not None and self._clock() < cached.expires_at - self._safety_margin

    async def get_token(self, provider: str) -> str:
        """Return a valid bearer token for ``provider``.

        Raises:
            TokenExchangeError: The exchange failed or no exchanger is registered.
            TransientNetworkError: The token endpoint timed out or was unreachable.
        """
        cached = self._tokens.get(provider)
        if cached is not None and self._clock() < cached.expires_at - self._safety_margin:
            notification_token_cache_hits_total.labels(provider=provider).inc()
            return cached.access_token

        # Lookup and registration happen without an await in between
        inflight = self._inflight.get(provider)
        if inflight is None or inflight.done():
            exchanger = self._exchangers.get(provider)
            if exchanger is None:
                raise TokenExchangeError("No token exchanger registered", provider)

            inflight = asyncio.ensure_future(self._exchange(provider, exchanger))
            self._inflight[provider] = inflight
            inflight.add_done_callback(lambda fut: self._clear_inflight(provider, fut))
        else:
            _lazy.debug(lambda: f"token.get_token({provider}): joining in-flight exchange")

        # Shielded so a cancelled waiter does not cancel the exchange for the others
        return await asyncio.shield(inflight)

    def _clear_inflight(self, provider: str, fut: asyncio.Future[str]) -> None:
        if self._inflight.get(provider) is fut:
            del self._inflight[provider]
        if not fut.cancelled():
            # Mark retrieved: every waiter may have gone away
            fut.exception()

    async def _exchange(self, provider: str, exchanger: TokenExchanger) -> str:
        try:
            grant = await exchanger()
        except ProviderError:
            notification_token_exchanges_total.labels(provider=provider, outcome="failure").inc()
            raise
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            notification_token_exchanges_total.labels(provider=provider, outcome="failure").inc()
            raise TransientNetworkError(
                f"Token endpoint unreachable: {exc}", provider
            ) from exc
        except Exception as exc:
            notification_token_exchanges_total.labels(provider=provider, outcome="failure").inc()
            raise TokenExchangeError(f"Token exchange failed: {exc}", provider) from exc

        if not grant.access_token:
            notification_token_exchanges_total.labels(provider=provider, outcome="failure").inc()
            raise TokenExchangeError("Token endpoint returned no access token", provider)

        self._tokens[provider] = _CachedToken(
            access_token=grant.access_token,
            expires_at=self._clock() + grant.expires_in,
        )
        notification_token_exchanges_total.labels(provider=provider, outcome="success").inc()
        logger.info(
            "Provider token refreshed",
            extra={
                "provider": provider,
                "expires_in": grant.expires_in,
                "operation": "token.exchange",
            },
        )
        return grant.access_token


__all__ = ["ProviderTokenCache", "TokenExchanger", "TokenGrant"]
