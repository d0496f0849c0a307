"""
Plan schemas: typed views of plans, step runs and metrics.

The operations layer returns plain dicts (``MigrationPlan.to_dict()`` and
friends); these models document and validate that shape for OpenAPI.
Steps stay loosely typed because their fields depend on ``kind``.

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ── Request bodies ───────────────────────────────────────────────────────


class CreatePlanBody(BaseModel):
    """Plan definition submitted to ``POST /plans``.

    Example:
        {
            "name": "orders-v2",
            "strategy": "incremental",
            "steps": [
                {"kind": "schema_update", "name": "add column", "order": 1,
                 "target_table": "orders", "script": "ALTER TABLE orders ADD COLUMN v INT"}
            ]
        }
    """

    name: str = Field(description="Plan name (non-blank)")
    description: str = ""
    strategy: str = Field(
        default="big_bang", description="big_bang, incremental, dual_write or rollback"
    )
    steps: list[dict[str, Any]] = Field(default_factory=list, description="Step definitions")


class ExecutePlanBody(BaseModel):
    """Options for ``POST /plans/{id}/execute``; all optional."""

    dry_run: bool = False
    pre_validation: bool | None = Field(
        default=None, description="None uses the server default"
    )
    continue_on_errors: bool = False


# ── Responses ────────────────────────────────────────────────────────────


class StepRunSchema(BaseModel):
    step_name: str
    order: int
    kind: str
    status: str
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float | None = None
    error: str | None = None
    detail: str | None = None
    total_records: int = 0
    processed_records: int = 0
    dry_run: bool = False


class PlanSchema(BaseModel):
    """A migration plan with its steps and per-step progress."""

    id: str
    name: str
    description: str = ""
    strategy: str
    status: str
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    failure_reason: str | None = None
    dry_run: bool = False
    continue_on_errors: bool = False
    progress_percentage: float = 0.0
    steps: list[dict[str, Any]] = Field(default_factory=list)
    step_runs: list[StepRunSchema] = Field(default_factory=list)


class ExecutionAcceptedSchema(BaseModel):
    """Acknowledgement that a plan was started in the background."""

    plan_id: str
    status: str
    dry_run: bool
    continue_on_errors: bool
    message: str = ""


class CancelAcceptedSchema(BaseModel):
    plan_id: str
    cancel_requested: bool


class ExecutionSummarySchema(BaseModel):
    plan_id: str
    plan_name: str
    status: str
    strategy: str
    total_steps: int
    pending_steps: int
    running_steps: int
    succeeded_steps: int
    failed_steps: int
    skipped_steps: int
    rolled_back_steps: int
    completion_percentage: float
    started_at: str | None = None
    completed_at: str | None = None
    elapsed_seconds: float | None = None
    total_records: int = 0
    processed_records: int = 0
    successful_records: int = 0
    failed_records: int = 0
    throughput: float = 0.0
    success_rate: float = 0.0
    error_rate: float = 0.0
    estimated_seconds_remaining: float = 0.0
    has_critical_issues: bool = False
    failure_reason: str | None = None
    dry_run: bool = False


class StepMetricsSchema(BaseModel):
    step_name: str
    order: int
    kind: str
    status: str
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float | None = None
    total_records: int = 0
    processed_records: int = 0
    throughput: float = 0.0
    progress_percentage: float = 0.0
    error: str | None = None
    detail: str | None = None
    dry_run: bool = False


class PlanEventSchema(BaseModel):
    """One lifecycle transition of a plan."""

    event_id: str
    plan_id: str
    event_type: str
    timestamp: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class StatisticsSchema(BaseModel):
    """Store-wide counters."""

    total_plans: int
    active_plans: int
    status_breakdown: dict[str, int] = Field(default_factory=dict)
    strategy_breakdown: dict[str, int] = Field(default_factory=dict)
    last_completed_plan_id: str | None = None
