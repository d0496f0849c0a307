"""
Structured error types for migration-spine.

Every failure the engine reports is a :class:`MigrationError` subclass
carrying a category, an explicit retry flag, a machine-readable ``code``
and an :class:`ErrorContext` naming the plan and step involved.  The
``code`` is the contract with the transport layers: the REST API maps it
to an HTTP status and the CLI prints it next to the message.

Manifesto:
    - **Typed Error Hierarchy:** one class per failure the caller can act on
    - **Explicit Retry Semantics:** invariant violations are never retryable
    - **Rich Context:** errors carry plan id, plan name and step for logs
    - **Error Chaining:** the underlying exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                       MigrationError                          │
        │        (category, code, retryable, context, cause)            │
        ├──────────────────────────────────────────────────────────────┤
        │  ValidationError     ConflictError      NotFoundError         │
        │  (VALIDATION_FAILED) (CONFLICT)         (NOT_FOUND)           │
        │                                                               │
        │  IllegalStateError   ExecutionError     StoreError            │
        │  (ILLEGAL_STATE)     (EXECUTION_FAILED) (UNAVAILABLE)         │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = ValidationError("plan rejected", violations=["name is blank"])
    >>> err.code
    'VALIDATION_FAILED'
    >>> err.violations
    ['name is blank']

    >>> err = ExecutionError("script failed", step_name="copy-users")
    >>> err.with_context(plan_id="01J...").context.plan_id
    '01J...'

Guardrails:
    ❌ DON'T: raise bare ``Exception`` or ``ValueError`` from engine code
    ✅ DO: raise the subclass whose ``code`` the caller can map

    ❌ DON'T: swallow the original exception
    ✅ DO: pass it as ``cause=`` for error chaining

Tags:
    error-handling, exception-hierarchy, error-context, migration-spine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    STATE = "STATE"
    EXECUTION = "EXECUTION"
    STORAGE = "STORAGE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to a :class:`MigrationError`.

    Attributes:
        plan_id: Identifier of the plan involved, if any.
        plan_name: Human-readable plan name.
        step_name: Step that was executing when the error occurred.
        operation: Request-facing operation name (``create_plan`` ...).
        metadata: Free-form extra fields.
    """

    plan_id: str | None = None
    plan_name: str | None = None
    step_name: str | None = None
    operation: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialise non-empty fields."""
        result: dict[str, Any] = {}
        for key in ("plan_id", "plan_name", "step_name", "operation"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class MigrationError(Exception):
    """
    Base class for every error raised by migration-spine.

    Subclasses override ``default_category``, ``default_code`` and
    ``default_retryable``; callers may still override each per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_code: str = "INTERNAL"
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        code: str | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.code = code or self.default_code
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> MigrationError:
        """Attach context fields in place and return ``self`` for chaining."""
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialise for structured logging and API payloads."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context = self.context.to_dict()
        if context:
            result["context"] = context
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, code={self.code})"


class ValidationError(MigrationError):
    """Input or plan structure rejected; carries every violation found."""

    default_category = ErrorCategory.VALIDATION
    default_code = "VALIDATION_FAILED"

    def __init__(self, message: str, *, violations: list[str] | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.violations = list(violations) if violations else [message]

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["violations"] = list(self.violations)
        return result


class ConflictError(MigrationError):
    """Request collides with the system's current state (active migration)."""

    default_category = ErrorCategory.CONFLICT
    default_code = "CONFLICT"


class NotFoundError(MigrationError):
    """Unknown plan id."""

    default_category = ErrorCategory.NOT_FOUND
    default_code = "NOT_FOUND"

    def __init__(self, message: str, *, plan_id: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if plan_id is not None:
            self.context.plan_id = plan_id


class IllegalStateError(MigrationError):
    """A lifecycle transition was requested from a state that forbids it."""

    default_category = ErrorCategory.STATE
    default_code = "ILLEGAL_STATE"


class ExecutionError(MigrationError):
    """A step failed at runtime."""

    default_category = ErrorCategory.EXECUTION
    default_code = "EXECUTION_FAILED"

    def __init__(self, message: str, *, step_name: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.step_name = step_name
        if step_name is not None:
            self.context.step_name = step_name


class StoreError(MigrationError):
    """The persistence layer is unavailable or failed mid-operation."""

    default_category = ErrorCategory.STORAGE
    default_code = "UNAVAILABLE"
    default_retryable = True


def is_retryable(error: BaseException) -> bool:
    """Return the retry flag of *error*; foreign exceptions are not retryable."""
    if isinstance(error, MigrationError):
        return error.retryable
    return False


def error_code(error: BaseException) -> str:
    """Machine-readable code for *error*, ``INTERNAL`` for foreign exceptions."""
    if isinstance(error, MigrationError):
        return error.code
    return "INTERNAL"


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "MigrationError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "IllegalStateError",
    "ExecutionError",
    "StoreError",
    "is_retryable",
    "error_code",
]
