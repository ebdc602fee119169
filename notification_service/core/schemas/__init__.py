"""Shared API schemas."""

from __future__ import annotations

from .problem_details import FieldError, ProblemDetails, ValidationProblemDetails

__all__ = ["FieldError", "ProblemDetails", "ValidationProblemDetails"]
