"""Structured logging for the notification service.

Standard library logging with a queue-backed root handler, JSONL output,
OpenTelemetry trace correlation and contextvars-based context injection.

Usage:
    from notification_service.infra.logging import get_lazy_logger, set_log_context

    logger = get_lazy_logger(__name__)
    set_log_context(request_id="abc-123")
    logger.info("Dispatch started", extra={"operation": "service.send_one"})
"""

from __future__ import annotations

from .config import configure_logging, setup_logging, shutdown
from .context import (
    ContextBoundLogger,
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from .formatters import JSONFormatter
from .lazy import LazyLoggerAdapter, get_lazy_logger

__all__ = [
    "ContextBoundLogger",
    "ContextInjectingFilter",
    "JSONFormatter",
    "LazyLoggerAdapter",
    "clear_log_context",
    "configure_logging",
    "get_lazy_logger",
    "get_log_context",
    "get_logger",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
