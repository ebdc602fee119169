"""Middleware configuration for FastAPI application."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notification_service.app.middleware.request_id import RequestIDMiddleware

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)


def configure_middleware(app: FastAPI) -> None:
    """Install the middleware stack (outermost last)."""
    app.add_middleware(RequestIDMiddleware)
    logger.debug("Middleware configured", extra={"middleware": ["RequestIDMiddleware"]})


__all__ = ["RequestIDMiddleware", "configure_middleware"]
