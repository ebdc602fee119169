"""Provider adapter protocol and abstract base class.

Every channel adapter exposes the same two operations:

    result = await adapter.send(target, message)          # -> SendResult
    status = await adapter.check_status(provider_msg_id)  # -> StatusResult

Adapters never raise across this boundary. Provider, auth, configuration
and network failures are converted into failed results so a bulk dispatch
or a reminder sweep continues past one recipient's failure.

Usage:
    class MyAdapter(BaseProviderAdapter):
        channel = Channel.SMS
        provider_name = "mycarrier"

        async def _do_send(self, target, message) -> SendResult:
            ...
            return SendResult.success_result(self.provider_name, message_id)
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import httpx

from notification_service.core.exceptions import ProviderError, TransientNetworkError
from notification_service.features.notifications.metrics import (
    notification_provider_errors_total,
    notification_provider_request_duration_seconds,
)
from notification_service.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from notification_service.features.notifications.models import Channel

logger = logging.getLogger(__name__)
_lazy = get_lazy_logger(__name__)


@dataclass(frozen=True, slots=True)
class DeliveryTarget:
    """Contact points for one recipient. Only the channel's own field is used."""

    recipient_ref: str
    email: str | None = None
    phone: str | None = None
    display_name: str | None = None


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """Already-composed message handed to an adapter.

    ``template_name``/``template_params`` are only used by providers with
    provider-side templates (chat). ``attempt_id`` lets the email adapter
    embed the open-tracking pixel.
    """

    subject: str
    body: str
    html_body: str | None = None
    template_name: str | None = None
    template_params: list[Any] = field(default_factory=list)
    attempt_id: str | None = None


@dataclass(frozen=True, slots=True)
class SendResult:
    """Outcome of a single provider send.

    Attributes:
        success: Whether the provider accepted the message
        provider: Adapter name (smtp, mtn, orange, whatsapp, in_app)
        provider_message_id: Provider-assigned id used for webhook correlation
        provider_status: Provider's own status word for the send
        destination: Normalized address the provider was called with
        error: Failure reason
        error_category: provider, auth, configuration, network or unexpected
        retryable: True for transient network failures
        duration_ms: Time spent in the adapter
    """

    success: bool
    provider: str
    provider_message_id: str | None = None
    provider_status: str | None = None
    destination: str | None = None
    error: str | None = None
    error_category: str | None = None
    retryable: bool = False
    duration_ms: int | None = None

    def __post_init__(self) -> None:
        if not self.success and not self.error:
            object.__setattr__(self, "error", "Unknown error")

    @classmethod
    def success_result(
        cls,
        provider: str,
        provider_message_id: str | None,
        provider_status: str | None = None,
        destination: str | None = None,
    ) -> SendResult:
        return cls(
            success=True,
            provider=provider,
            provider_message_id=provider_message_id,
            provider_status=provider_status,
            destination=destination,
        )

    @classmethod
    def failure_result(
        cls,
        provider: str,
        error: str,
        error_category: str = "provider",
        retryable: bool = False,
        destination: str | None = None,
    ) -> SendResult:
        return cls(
            success=False,
            provider=provider,
            error=error,
            error_category=error_category,
            retryable=retryable,
            destination=destination,
        )


@dataclass(frozen=True, slots=True)
class StatusResult:
    """Outcome of a provider status poll."""

    success: bool
    provider: str
    provider_status: str | None = None
    error: str | None = None
    error_category: str | None = None

    @classmethod
    def failure_result(cls, provider: str, error: str, error_category: str) -> StatusResult:
        return cls(success=False, provider=provider, error=error, error_category=error_category)


@runtime_checkable
class ProviderAdapter(Protocol):
    """Provider-agnostic adapter interface used by the orchestrator."""

    channel: Channel
    provider_name: str

    def destination_for(self, target: DeliveryTarget) -> str | None: ...

    async def send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult: ...

    async def check_status(self, provider_message_id: str) -> StatusResult: ...


def raise_for_provider_response(provider: str, response: httpx.Response) -> None:
    """Raise ``ProviderError`` for a non-2xx provider response.

    The provider's own error text is kept so it ends up in the attempt's
    error message.
    """
    if response.is_success:
        return

    detail = response.text[:500] if response.text else response.reason_phrase
    if response.status_code >= 500:
        raise TransientNetworkError(
            f"{provider} returned HTTP {response.status_code}: {detail}", provider
        )
    raise ProviderError(
        f"{provider} returned HTTP {response.status_code}: {detail}",
        provider,
        extra={"status_code": response.status_code},
    )


class BaseProviderAdapter(ABC):
    """Common timing, logging, metrics and failure conversion for adapters.

    Subclasses implement ``_do_send``/``_do_check_status`` and may raise
    ``ProviderError`` subclasses or httpx errors freely; ``send`` and
    ``check_status`` turn them into failed results.
    """

    channel: Channel
    provider_name: str

    @abstractmethod
    def destination_for(self, target: DeliveryTarget) -> str | None:
        """Address the provider is called with, normalized."""
        ...

    @abstractmethod
    async def _do_send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult: ...

    async def _do_check_status(self, provider_message_id: str) -> StatusResult:
        raise ProviderError(
            f"{self.provider_name} does not support status polling",
            self.provider_name,
        )

    async def send(self, target: DeliveryTarget, message: OutboundMessage) -> SendResult:
        """Send with timing, logging and failure conversion. Never raises."""
        start = time.perf_counter()
        destination = self._safe_destination(target)

        try:
            result = await self._do_send(target, message)
        except Exception as exc:  # noqa: BLE001
            result = self._failure_from_exception(exc, operation="send", destination=destination)

        duration = time.perf_counter() - start
        result = replace(result, duration_ms=int(duration * 1000))
        notification_provider_request_duration_seconds.labels(
            provider=self.provider_name
        ).observe(duration)

        if result.success:
            logger.info(
                f"Message sent via {self.provider_name}",
                extra={
                    "provider": self.provider_name,
                    "channel": str(self.channel),
                    "recipient_ref": target.recipient_ref,
                    "provider_message_id": result.provider_message_id,
                    "duration_ms": result.duration_ms,
                    "operation": "provider.send",
                },
            )
        else:
            notification_provider_errors_total.labels(
                provider=self.provider_name,
                error_category=result.error_category or "provider",
            ).inc()
            logger.warning(
                f"Send failed via {self.provider_name}",
                extra={
                    "provider": self.provider_name,
                    "channel": str(self.channel),
                    "recipient_ref": target.recipient_ref,
                    "error": result.error,
                    "error_category": result.error_category,
                    "retryable": result.retryable,
                    "duration_ms": result.duration_ms,
                    "operation": "provider.send",
                },
            )
        return result

    async def check_status(self, provider_message_id: str) -> StatusResult:
        """Poll the provider for a message's delivery status. Never raises."""
        start = time.perf_counter()
        try:
            result = await self._do_check_status(provider_message_id)
        except Exception as exc:  # noqa: BLE001
            failed = self._failure_from_exception(exc, operation="check_status")
            result = StatusResult.failure_result(
                self.provider_name, failed.error or "Unknown error", failed.error_category or "provider"
            )
        finally:
            notification_provider_request_duration_seconds.labels(
                provider=self.provider_name
            ).observe(time.perf_counter() - start)

        _lazy.debug(
            lambda: f"provider.check_status({self.provider_name}, {provider_message_id}) -> {result}"
        )
        return result

    def _safe_destination(self, target: DeliveryTarget) -> str | None:
        try:
            return self.destination_for(target)
        except Exception:  # noqa: BLE001
            return None

    def _failure_from_exception(
        self,
        exc: Exception,
        *,
        operation: str,
        destination: str | None = None,
    ) -> SendResult:
        if isinstance(exc, ProviderError):
            return SendResult.failure_result(
                self.provider_name,
                exc.detail,
                error_category=exc.error_category,
                retryable=isinstance(exc, TransientNetworkError),
                destination=destination,
            )
        if isinstance(exc, httpx.TimeoutException):
            return SendResult.failure_result(
                self.provider_name,
                f"{self.provider_name} request timed out",
                error_category="network",
                retryable=True,
                destination=destination,
            )
        if isinstance(exc, httpx.TransportError):
            return SendResult.failure_result(
                self.provider_name,
                f"{self.provider_name} unreachable: {exc}",
                error_category="network",
                retryable=True,
                destination=destination,
            )
        if isinstance(exc, httpx.HTTPError):
            return SendResult.failure_result(
                self.provider_name,
                str(exc),
                error_category="provider",
                destination=destination,
            )

        logger.exception(
            f"Unexpected error in {self.provider_name} adapter",
            extra={
                "provider": self.provider_name,
                "error": str(exc),
                "operation": f"provider.{operation}",
            },
        )
        return SendResult.failure_result(
            self.provider_name,
            str(exc) or exc.__class__.__name__,
            error_category="unexpected",
            destination=destination,
        )


__all__ = [
    "BaseProviderAdapter",
    "DeliveryTarget",
    "OutboundMessage",
    "ProviderAdapter",
    "SendResult",
    "StatusResult",
    "raise_for_provider_response",
]
