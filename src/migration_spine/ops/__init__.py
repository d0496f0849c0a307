"""Request-facing operations shared by the REST API and the CLI."""

from migration_spine.ops.context import OperationContext
from migration_spine.ops.requests import CreatePlanRequest, ExecutePlanRequest, ListPlansRequest
from migration_spine.ops.result import OperationError, OperationResult
from migration_spine.ops.service import MigrationService

__all__ = [
    "OperationContext",
    "CreatePlanRequest",
    "ExecutePlanRequest",
    "ListPlansRequest",
    "OperationError",
    "OperationResult",
    "MigrationService",
]
