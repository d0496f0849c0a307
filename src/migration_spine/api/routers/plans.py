"""
Plan router: create, execute, inspect and delete migration plans.

GET    /plans                      (filters: status, strategy, name, failed_before)
GET    /plans/active
GET    /plans/ready
GET    /plans/status/{status}
GET    /plans/{plan_id}
GET    /plans/{plan_id}/summary
GET    /plans/{plan_id}/metrics
GET    /plans/{plan_id}/events
POST   /plans                      → 201
POST   /plans/{plan_id}/execute    → 202, steps run in the background
POST   /plans/{plan_id}/cancel     → 202
DELETE /plans/{plan_id}            → 204

Tags:
    migration-spine, api, plans, execute, metrics

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Path, Query, Request, Response

from migration_spine.api.deps import OpContext
from migration_spine.api.schemas.common import ListResponse, SuccessResponse
from migration_spine.api.schemas.plans import (
    CancelAcceptedSchema,
    CreatePlanBody,
    ExecutePlanBody,
    ExecutionAcceptedSchema,
    ExecutionSummarySchema,
    PlanEventSchema,
    PlanSchema,
    StepMetricsSchema,
)
from migration_spine.api.utils import _handle_error, _list_response
from migration_spine.ops import plans as ops
from migration_spine.ops.requests import CreatePlanRequest, ExecutePlanRequest, ListPlansRequest

router = APIRouter(prefix="/plans")

PlanId = Annotated[str, Path(description="Plan id (ULID)")]


# ── Collections ──────────────────────────────────────────────────────────


@router.get("", response_model=ListResponse[PlanSchema])
def list_plans(
    ctx: OpContext,
    request: Request,
    status: str | None = Query(None, description="Filter by plan status"),
    strategy: str | None = Query(None, description="Filter by strategy"),
    name: str | None = Query(None, description="Case-insensitive name fragment"),
    failed_before: datetime | None = Query(
        None, description="Only FAILED plans that ended before this instant"
    ),
):
    """List plans, oldest first.

    Example:
        GET /api/v1/plans?status=failed&name=orders
    """
    result = ops.list_plans(
        ctx,
        ListPlansRequest(
            status=status,
            strategy=strategy,
            name_contains=name,
            failed_before=failed_before,
        ),
    )
    if not result.success:
        return _handle_error(result, request.url.path)
    return _list_response(result, PlanSchema)


@router.get("/active", response_model=ListResponse[PlanSchema])
def list_active_plans(ctx: OpContext, request: Request):
    """Plans currently running or rolling back."""
    result = ops.list_active(ctx)
    if not result.success:
        return _handle_error(result, request.url.path)
    return _list_response(result, PlanSchema)


@router.get("/ready", response_model=ListResponse[PlanSchema])
def list_ready_plans(ctx: OpContext, request: Request):
    """Plans in ``planned`` status, i.e. ready to execute."""
    result = ops.list_ready(ctx)
    if not result.success:
        return _handle_error(result, request.url.path)
    return _list_response(result, PlanSchema)


@router.get("/status/{status}", response_model=ListResponse[PlanSchema])
def list_plans_by_status(
    ctx: OpContext,
    request: Request,
    status: str = Path(..., description="planned, running, rolling_back, completed or failed"),
):
    result = ops.list_plans(ctx, ListPlansRequest(status=status))
    if not result.success:
        return _handle_error(result, request.url.path)
    return _list_response(result, PlanSchema)


# ── Single plan ──────────────────────────────────────────────────────────


@router.post("", response_model=SuccessResponse[PlanSchema], status_code=201)
def create_plan(ctx: OpContext, request: Request, body: CreatePlanBody):
    """Validate a plan definition and store it as ``planned``.

    Raises:
        400 VALIDATION_FAILED: The definition is invalid; ``errors`` lists every problem.
        409 CONFLICT: Another migration is active.
    """
    result = ops.create_plan(
        ctx,
        CreatePlanRequest(
            name=body.name,
            description=body.description,
            strategy=body.strategy,
            steps=body.steps,
        ),
    )
    if not result.success:
        return _handle_error(result, request.url.path)
    return SuccessResponse(data=PlanSchema(**result.data), elapsed_ms=result.elapsed_ms)


@router.get("/{plan_id}", response_model=SuccessResponse[PlanSchema])
def get_plan(ctx: OpContext, request: Request, plan_id: PlanId):
    result = ops.get_plan(ctx, plan_id)
    if not result.success:
        return _handle_error(result, request.url.path)
    return SuccessResponse(data=PlanSchema(**result.data), elapsed_ms=result.elapsed_ms)


@router.post(
    "/{plan_id}/execute",
    response_model=SuccessResponse[ExecutionAcceptedSchema],
    status_code=202,
)
def execute_plan(
    ctx: OpContext,
    request: Request,
    plan_id: PlanId,
    body: ExecutePlanBody | None = None,
    dry_run: bool | None = Query(None, description="Record mutations instead of applying them"),
    pre_validation: bool | None = Query(None, description="Validate against the target first"),
    continue_on_errors: bool | None = Query(None, description="Keep going after a failed step"),
):
    """Start a ``planned`` plan; the steps run in the background.

    Options may be given as query parameters or as a JSON body; query
    parameters win.  Poll ``GET /plans/{plan_id}`` or ``/summary`` for
    progress.

    Raises:
        400 VALIDATION_FAILED: Pre-validation failed (the plan is now ``failed``).
        404 NOT_FOUND: Unknown plan.
        409 ILLEGAL_STATE: The plan is not ``planned``.
    """
    body = body or ExecutePlanBody()
    result = ops.execute_plan(
        ctx,
        ExecutePlanRequest(
            plan_id=plan_id,
            dry_run=body.dry_run if dry_run is None else dry_run,
            pre_validation=body.pre_validation if pre_validation is None else pre_validation,
            continue_on_errors=(
                body.continue_on_errors if continue_on_errors is None else continue_on_errors
            ),
        ),
    )
    if not result.success:
        return _handle_error(result, request.url.path)
    return SuccessResponse(
        data=ExecutionAcceptedSchema(**result.data), elapsed_ms=result.elapsed_ms
    )


@router.post(
    "/{plan_id}/cancel",
    response_model=SuccessResponse[CancelAcceptedSchema],
    status_code=202,
)
def cancel_plan(ctx: OpContext, request: Request, plan_id: PlanId):
    """Ask a running plan to stop before its next step."""
    result = ops.cancel_plan(ctx, plan_id)
    if not result.success:
        return _handle_error(result, request.url.path)
    return SuccessResponse(data=CancelAcceptedSchema(**result.data), elapsed_ms=result.elapsed_ms)


@router.delete("/{plan_id}", status_code=204, response_class=Response)
def delete_plan(ctx: OpContext, request: Request, plan_id: PlanId) -> Response:
    """Delete a plan that is not running or rolling back."""
    result = ops.delete_plan(ctx, plan_id)
    if not result.success:
        return _handle_error(result, request.url.path)
    return Response(status_code=204)


# ── Metrics ──────────────────────────────────────────────────────────────


@router.get("/{plan_id}/summary", response_model=SuccessResponse[ExecutionSummarySchema])
def get_plan_summary(ctx: OpContext, request: Request, plan_id: PlanId):
    """Aggregate step counts, completion and throughput for one plan."""
    result = ops.get_summary(ctx, plan_id)
    if not result.success:
        return _handle_error(result, request.url.path)
    return SuccessResponse(
        data=ExecutionSummarySchema(**result.data), elapsed_ms=result.elapsed_ms
    )


@router.get("/{plan_id}/metrics", response_model=ListResponse[StepMetricsSchema])
def get_plan_metrics(ctx: OpContext, request: Request, plan_id: PlanId):
    """Per-step timing and record counts."""
    result = ops.get_step_metrics(ctx, plan_id)
    if not result.success:
        return _handle_error(result, request.url.path)
    return _list_response(result, StepMetricsSchema)


@router.get("/{plan_id}/events", response_model=ListResponse[PlanEventSchema])
def get_plan_events(ctx: OpContext, request: Request, plan_id: PlanId):
    """Lifecycle history (started, rollback_started, completed, failed), oldest first."""
    result = ops.get_events(ctx, plan_id)
    if not result.success:
        return _handle_error(result, request.url.path)
    return _list_response(result, PlanEventSchema)
