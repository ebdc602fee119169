"""CLI utilities for running async operations and formatting output."""

from notification_service.cli.utils.async_runner import coro
from notification_service.cli.utils.formatters import error, info, success, warning

__all__ = [
    "coro",
    "error",
    "info",
    "success",
    "warning",
]
