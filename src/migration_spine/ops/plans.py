"""
Plan operations.

Transport-agnostic functions shared by the REST routers and the CLI.  Each
takes an :class:`OperationContext` plus an optional request object, calls the
:class:`MigrationService` and returns an :class:`OperationResult`.  Typed
engine errors become failed results carrying their code; anything else is
logged and reported as ``INTERNAL``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from migration_spine.core.errors import MigrationError
from migration_spine.core.logging import get_logger
from migration_spine.domain.loader import PlanDefinition, load_plan_file
from migration_spine.ops.context import OperationContext
from migration_spine.ops.requests import CreatePlanRequest, ExecutePlanRequest, ListPlansRequest
from migration_spine.ops.result import OperationResult, start_timer

logger = get_logger(__name__)


def _run[T](ctx: OperationContext, name: str, fn: Callable[[], T]) -> OperationResult[T]:
    timer = start_timer()
    with ctx.log_scope(name):
        try:
            data = fn()
        except MigrationError as exc:
            logger.info("op.rejected", code=exc.code, error=exc.message)
            return OperationResult.from_exception(exc, elapsed_ms=timer.elapsed_ms)
        except Exception as exc:
            logger.exception("op.failed", error=str(exc))
            return OperationResult.fail(
                "INTERNAL", f"{name} failed: {exc}", elapsed_ms=timer.elapsed_ms
            )
    return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


def create_plan(
    ctx: OperationContext, request: CreatePlanRequest | PlanDefinition
) -> OperationResult[dict[str, Any]]:
    """Validate a definition and create a ``PLANNED`` plan."""

    def _create() -> dict[str, Any]:
        definition = (
            request if isinstance(request, PlanDefinition) else request.to_definition()
        )
        return ctx.service.create_plan(definition).to_dict()

    return _run(ctx, "create_plan", _create)


def create_plan_from_file(ctx: OperationContext, path: str) -> OperationResult[dict[str, Any]]:
    """Load a YAML plan file and create the plan it defines."""
    return _run(
        ctx,
        "create_plan_from_file",
        lambda: ctx.service.create_plan(load_plan_file(path)).to_dict(),
    )


def execute_plan(
    ctx: OperationContext, request: ExecutePlanRequest
) -> OperationResult[dict[str, Any]]:
    """Start a plan; returns an acknowledgement, the steps run in the background."""

    def _execute() -> dict[str, Any]:
        handle = ctx.service.execute_plan(
            request.plan_id,
            dry_run=request.dry_run,
            pre_validation=request.pre_validation,
            continue_on_errors=request.continue_on_errors,
        )
        plan = ctx.service.get_plan(request.plan_id)
        return {
            "plan_id": handle.plan_id,
            "status": plan.status.value,
            "dry_run": request.dry_run,
            "continue_on_errors": request.continue_on_errors,
            "message": "execution started",
        }

    return _run(ctx, "execute_plan", _execute)


def delete_plan(ctx: OperationContext, plan_id: str) -> OperationResult[None]:
    return _run(ctx, "delete_plan", lambda: ctx.service.delete_plan(plan_id))


def cancel_plan(ctx: OperationContext, plan_id: str) -> OperationResult[dict[str, Any]]:
    def _cancel() -> dict[str, Any]:
        requested = ctx.service.cancel_plan(plan_id)
        return {"plan_id": plan_id, "cancel_requested": requested}

    return _run(ctx, "cancel_plan", _cancel)


def wait_for_plan(
    ctx: OperationContext, plan_id: str, timeout: float | None = None
) -> OperationResult[dict[str, Any]]:
    """Wait for a background run and return its execution summary."""

    def _wait() -> dict[str, Any]:
        ctx.service.wait_for_plan(plan_id, timeout)
        return ctx.service.summary(plan_id).to_dict()

    return _run(ctx, "wait_for_plan", _wait)


# ------------------------------------------------------------------ #
# Queries
# ------------------------------------------------------------------ #


def list_plans(
    ctx: OperationContext, request: ListPlansRequest | None = None
) -> OperationResult[list[dict[str, Any]]]:
    """List plans matching every filter *request* sets."""
    request = request or ListPlansRequest()

    def _list() -> list[dict[str, Any]]:
        service = ctx.service
        plans = service.list_plans()

        def narrow(matches: list[Any]) -> None:
            nonlocal plans
            wanted = {p.id for p in matches}
            plans = [p for p in plans if p.id in wanted]

        if request.status:
            narrow(service.list_by_status(request.status.lower()))
        if request.failed_before is not None:
            narrow(service.list_failed_before(request.failed_before))
        if request.strategy:
            narrow(service.list_by_strategy(request.strategy.lower()))
        if request.name_contains:
            needle = request.name_contains.lower()
            plans = [p for p in plans if needle in p.name.lower()]
        return [p.to_dict() for p in plans]

    return _run(ctx, "list_plans", _list)


def get_plan(ctx: OperationContext, plan_id: str) -> OperationResult[dict[str, Any]]:
    return _run(ctx, "get_plan", lambda: ctx.service.get_plan(plan_id).to_dict())


def list_active(ctx: OperationContext) -> OperationResult[list[dict[str, Any]]]:
    return _run(ctx, "list_active", lambda: [p.to_dict() for p in ctx.service.list_active()])


def list_ready(ctx: OperationContext) -> OperationResult[list[dict[str, Any]]]:
    return _run(ctx, "list_ready", lambda: [p.to_dict() for p in ctx.service.list_ready()])


def get_summary(ctx: OperationContext, plan_id: str) -> OperationResult[dict[str, Any]]:
    return _run(ctx, "get_summary", lambda: ctx.service.summary(plan_id).to_dict())


def get_step_metrics(ctx: OperationContext, plan_id: str) -> OperationResult[list[dict[str, Any]]]:
    return _run(
        ctx,
        "get_step_metrics",
        lambda: [m.to_dict() for m in ctx.service.step_metrics(plan_id)],
    )


def get_events(ctx: OperationContext, plan_id: str) -> OperationResult[list[dict[str, Any]]]:
    return _run(
        ctx,
        "get_events",
        lambda: [e.to_dict() for e in ctx.service.plan_events(plan_id)],
    )


def get_statistics(ctx: OperationContext) -> OperationResult[dict[str, Any]]:
    return _run(ctx, "get_statistics", ctx.service.statistics)
