"""
Shared API router utilities.

- ``_handle_error()``: convert a failed OperationResult to a ``problem_response``
- ``_list_response()``: wrap a list result in a :class:`ListResponse`
"""

from __future__ import annotations

from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel

from migration_spine.api.middleware.errors import (
    problem_response,
    status_for_error_code,
    title_for_status,
)
from migration_spine.api.schemas.common import ListResponse
from migration_spine.ops.result import OperationResult


def _handle_error(result: OperationResult[Any], instance: str = "") -> JSONResponse:
    """Convert a failed ``OperationResult`` into a Problem Details response.

    The error code picks the HTTP status; validation violations become
    individual ``errors`` entries.
    """
    err = result.error
    code = err.code if err else "INTERNAL"
    status = status_for_error_code(code)
    violations = err.details.get("violations", []) if err else []
    return problem_response(
        status=status,
        title=title_for_status(status),
        detail=err.message if err else "Operation failed",
        instance=instance,
        errors=[{"code": code, "message": v} for v in violations],
    )


def _list_response(
    result: OperationResult[list[dict[str, Any]]], model: type[BaseModel]
) -> ListResponse:
    items = [model(**d) for d in (result.data or [])]
    return ListResponse(
        data=items,
        total=len(items),
        elapsed_ms=result.elapsed_ms,
        warnings=result.warnings,
    )
