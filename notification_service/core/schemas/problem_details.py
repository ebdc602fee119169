"""RFC 7807 Problem Details schema for error responses."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ProblemDetails(BaseModel):
    """RFC 7807 Problem Details for HTTP APIs.

    See: https://datatracker.ietf.org/doc/html/rfc7807
    """

    type: str = Field(
        default="about:blank",
        min_length=1,
        max_length=200,
        description="URI reference identifying the problem type",
    )
    title: str = Field(
        min_length=1, max_length=200, description="Short, human-readable summary of the problem"
    )
    status: int = Field(ge=100, le=599, description="HTTP status code")
    detail: str | None = Field(
        default=None,
        max_length=2000,
        description="Human-readable explanation specific to this occurrence",
    )
    instance: str | None = Field(
        default=None,
        max_length=500,
        description="URI reference identifying the specific occurrence",
    )

    model_config = ConfigDict(
        extra="allow",
        json_schema_extra={
            "example": {
                "type": "not-found",
                "title": "Not Found",
                "status": 404,
                "detail": "DeliveryAttempt with id 0190... not found",
                "instance": "/api/v1/notifications/attempts/0190.../resend",
            }
        },
    )


class FieldError(BaseModel):
    """A single request validation failure."""

    location: list[str | int] = Field(description="Path to the offending field")
    message: str
    type: str


class ValidationProblemDetails(ProblemDetails):
    """Problem details carrying per-field validation errors."""

    errors: list[FieldError] = Field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: list[dict[str, Any]], instance: str | None = None) -> ValidationProblemDetails:
        return cls(
            type="validation-error",
            title="Validation Error",
            status=400,
            detail="Request validation failed",
            instance=instance,
            errors=[
                FieldError(
                    location=list(err.get("loc", ())),
                    message=str(err.get("msg", "")),
                    type=str(err.get("type", "")),
                )
                for err in errors
            ],
        )
