"""
Common API schemas: shared envelopes and RFC 7807 errors.

Every endpoint returns either :class:`SuccessResponse` (200/201/202),
:class:`ListResponse` for collections, or :class:`ProblemDetail` (4xx/5xx).

Response Envelope Conventions:
    - All 2xx responses use ``SuccessResponse[T]`` or ``ListResponse[T]``
    - All 4xx/5xx responses use ``ProblemDetail`` (RFC 7807)
    - ``elapsed_ms`` tracks server-side processing time

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


# ── RFC 7807 Problem Detail ─────────────────────────────────────────────


class ErrorDetail(BaseModel):
    """One structured error, e.g. a single plan violation."""

    code: str = Field(description="Machine-readable error code (e.g. 'VALIDATION_FAILED')")
    message: str = Field(description="Human-readable error description")
    field: str | None = Field(default=None, description="Field path if error is field-specific")


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Error Codes:
        - ``VALIDATION_FAILED`` (400): Invalid definition or failed pre-validation
        - ``NOT_FOUND`` (404): Plan does not exist
        - ``CONFLICT`` (409): Another migration is active
        - ``ILLEGAL_STATE`` (409): Plan is in the wrong status for the request
        - ``UNAVAILABLE`` (503): Plan store unavailable, retry later
        - ``INTERNAL`` (500): Unexpected server error

    Example:
        {
            "type": "about:blank",
            "title": "Conflict",
            "status": 409,
            "detail": "cannot create plan 'p2': a migration is already active",
            "instance": "/api/v1/plans",
            "errors": []
        }
    """

    type: str = Field(default="about:blank", description="Error type URI (usually 'about:blank')")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code (e.g., 400, 404, 500)")
    detail: str = Field(default="", description="Human-readable explanation of the error")
    instance: str = Field(default="", description="URI of the failing request")
    errors: list[ErrorDetail] = Field(
        default_factory=list,
        description="Individual violations or nested error details",
    )


# ── Success Envelopes ────────────────────────────────────────────────────


class SuccessResponse(BaseModel, Generic[T]):
    """Standard success envelope for single-item responses."""

    data: T = Field(description="Response payload (type varies by endpoint)")
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")


class ListResponse(BaseModel, Generic[T]):
    """Envelope for collection responses; ``total`` is ``len(data)``."""

    data: list[T] = Field(description="Items")
    total: int = Field(description="Number of items returned")
    elapsed_ms: float = Field(default=0.0, description="Server-side processing time in milliseconds")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal warnings")
