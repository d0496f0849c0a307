"""
Stats router: store-wide plan counters.

GET /stats
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from migration_spine.api.deps import OpContext
from migration_spine.api.schemas.common import SuccessResponse
from migration_spine.api.schemas.plans import StatisticsSchema
from migration_spine.api.utils import _handle_error
from migration_spine.ops import plans as ops

router = APIRouter(prefix="/stats")


@router.get("", response_model=SuccessResponse[StatisticsSchema])
def get_stats(ctx: OpContext, request: Request):
    """Plan totals by status and strategy, plus the last completed plan."""
    result = ops.get_statistics(ctx)
    if not result.success:
        return _handle_error(result, request.url.path)
    return SuccessResponse(data=StatisticsSchema(**result.data), elapsed_ms=result.elapsed_ms)
