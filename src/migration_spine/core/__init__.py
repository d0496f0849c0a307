"""Core primitives shared by every migration-spine layer: errors, logging, settings, ids."""

from migration_spine.core.errors import (
    ConflictError,
    ErrorCategory,
    ErrorContext,
    ExecutionError,
    IllegalStateError,
    MigrationError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from migration_spine.core.logging import LogContext, configure_logging, get_logger
from migration_spine.core.timestamps import generate_ulid, utc_now

__all__ = [
    "ConflictError",
    "ErrorCategory",
    "ErrorContext",
    "ExecutionError",
    "IllegalStateError",
    "MigrationError",
    "NotFoundError",
    "StoreError",
    "ValidationError",
    "LogContext",
    "configure_logging",
    "get_logger",
    "generate_ulid",
    "utc_now",
]
