"""Custom exception classes for the application."""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    Follows RFC 7807 Problem Details for HTTP APIs.

    Attributes:
        status_code: HTTP status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.

    Example:
            raise AppException(
            status_code=404,
            detail="Delivery attempt not found",
            type="delivery-attempt-not-found",
            extra={"attempt_id": "0190..."}
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            status_code: HTTP status code.
            detail: Human-readable error message.
            type: Error type identifier.
            title: Short summary of the problem type.
            instance: URI reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for HTTP status code."""
        titles = {
            400: "Bad Request",
            404: "Not Found",
            409: "Conflict",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
            504: "Gateway Timeout",
        }
        return titles.get(status_code, "Error")


class NotFoundException(AppException):
    """Raised when a recipient or delivery attempt does not exist.

    Example:
            raise NotFoundException(
            detail="Recipient guardian-42 not found",
            type="recipient-not-found",
            extra={"recipient_ref": "guardian-42"}
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "not-found",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=404,
            detail=detail,
            type=type,
            title="Not Found",
            instance=instance,
            extra=extra,
        )


class ValidationException(AppException):
    """Raised for bad input to an endpoint (HTTP 400).

    Example:
            raise ValidationException(
            detail="Either logId or messageId is required",
            extra={"field": "logId"}
        )
    """

    def __init__(
        self,
        detail: str,
        type: str = "validation-error",
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            status_code=400,
            detail=detail,
            type=type,
            title="Validation Error",
            instance=instance,
            extra=extra,
        )


class ProviderError(AppException):
    """Adapter-level send, status or authentication failure.

    Raised inside provider adapters and converted into a failed
    ``SendResult``/``StatusResult`` at the adapter boundary. It only reaches
    an HTTP caller when an operation has no attempt to record it on.

    Attributes:
        provider: Name of the provider that failed (smtp, mtn, orange, ...).
        error_category: Classification used for metrics and attempt records.
    """

    error_category = "provider"

    def __init__(
        self,
        detail: str,
        provider: str,
        status_code: int = 502,
        type: str = "provider-error",
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(
            status_code=status_code,
            detail=detail,
            type=type,
            extra={"provider": provider, **(extra or {})},
        )


class TokenExchangeError(ProviderError):
    """Client-credentials exchange against a provider failed."""

    error_category = "auth"

    def __init__(self, detail: str, provider: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(detail, provider, type="token-exchange-failed", extra=extra)


class ProviderNotConfiguredError(ProviderError):
    """Provider credentials or endpoint are missing from configuration."""

    error_category = "configuration"

    def __init__(self, provider: str, missing: list[str]) -> None:
        super().__init__(
            f"{provider} provider is not configured (missing: {', '.join(missing)})",
            provider,
            status_code=503,
            type="provider-not-configured",
            extra={"missing": missing},
        )


class TransientNetworkError(ProviderError):
    """Timeout or connection failure talking to a provider.

    Never retried automatically; callers of resend may retry.
    """

    error_category = "network"

    def __init__(self, detail: str, provider: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(
            detail,
            provider,
            status_code=503,
            type="transient-network-error",
            extra=extra,
        )


__all__ = [
    "AppException",
    "NotFoundException",
    "ProviderError",
    "ProviderNotConfiguredError",
    "TokenExchangeError",
    "TransientNetworkError",
    "ValidationException",
]
