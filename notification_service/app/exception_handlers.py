"""Global exception handlers for FastAPI application.

Every error leaves the API as an RFC 7807 Problem Details document.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from notification_service.core.database.exceptions import NotFoundError
from notification_service.core.exceptions import AppException
from notification_service.core.schemas.problem_details import (
    ProblemDetails,
    ValidationProblemDetails,
)

logger = logging.getLogger(__name__)


def _get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _problem_response(
    request: Request,
    status_code: int,
    detail: str,
    type_: str,
    title: str,
    instance: str | None = None,
    extra: dict[str, Any] | None = None,
) -> JSONResponse:
    problem = ProblemDetails(
        type=type_,
        title=title,
        status=status_code,
        detail=detail,
        instance=instance or request.url.path,
    )
    response_data = problem.model_dump(exclude_none=True)
    if extra:
        response_data.update(jsonable_encoder(extra))

    request_id = _get_request_id(request)
    if request_id:
        response_data["request_id"] = request_id

    return JSONResponse(status_code=status_code, content=response_data)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Convert AppException instances into problem responses."""
    logger.warning(
        "Application exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": exc.type,
            "status_code": exc.status_code,
            "detail": exc.detail,
        },
    )
    return _problem_response(
        request,
        exc.status_code,
        exc.detail,
        exc.type,
        exc.title,
        instance=exc.instance,
        extra=exc.extra,
    )


async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """Translate repository NotFoundError into 404."""
    logger.info(
        "Entity not found",
        extra={"path": request.url.path, "model": exc.model_name},
    )
    return _problem_response(
        request,
        status.HTTP_404_NOT_FOUND,
        exc.message,
        "not-found",
        "Not Found",
        extra={"model": exc.model_name, **exc.identifier},
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation failures as 400 with per-field errors."""
    errors = list(exc.errors())
    logger.warning(
        "Request validation failed",
        extra={
            "path": request.url.path,
            "method": request.method,
            "error_count": len(errors),
        },
    )

    problem = ValidationProblemDetails.from_errors(errors, instance=request.url.path)
    response_data = problem.model_dump(exclude_none=True)
    request_id = _get_request_id(request)
    if request_id:
        response_data["request_id"] = request_id

    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=response_data)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all: log the traceback, return a generic 500."""
    logger.error(
        "Unexpected exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "exception_type": type(exc).__name__,
            "exception_message": str(exc),
        },
        exc_info=exc,
    )
    return _problem_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "An unexpected error occurred while processing your request",
        "internal-error",
        "Internal Server Error",
    )


def configure_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the application."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    logger.debug("Exception handlers configured")


__all__ = ["configure_exception_handlers"]
