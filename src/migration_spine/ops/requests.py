"""
Typed request objects for plan operations.

Each dataclass is the transport-agnostic *input* contract of one function
in :mod:`migration_spine.ops.plans`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class CreatePlanRequest:
    """Request for :func:`migration_spine.ops.plans.create_plan`.

    Attributes:
        name: Plan name (non-blank).
        description: Free text.
        strategy: ``big_bang``, ``incremental``, ``dual_write`` or ``rollback``.
        steps: Step definition mappings (see :func:`step_from_dict`).
    """

    name: str
    description: str = ""
    strategy: str = "big_bang"
    steps: list[dict[str, Any]] = field(default_factory=list)

    def to_definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "strategy": self.strategy,
            "steps": list(self.steps),
        }


@dataclass(frozen=True, slots=True)
class ExecutePlanRequest:
    """Request for :func:`migration_spine.ops.plans.execute_plan`.

    ``pre_validation=None`` defers to ``MIGRATION_PRE_VALIDATION_DEFAULT``.
    """

    plan_id: str
    dry_run: bool = False
    pre_validation: bool | None = None
    continue_on_errors: bool = False

    @classmethod
    def dry_run_only(cls, plan_id: str) -> ExecutePlanRequest:
        return cls(plan_id=plan_id, dry_run=True, pre_validation=True)

    @classmethod
    def production(cls, plan_id: str) -> ExecutePlanRequest:
        return cls(plan_id=plan_id, dry_run=False, pre_validation=True)


@dataclass(frozen=True, slots=True)
class ListPlansRequest:
    """Filters for :func:`migration_spine.ops.plans.list_plans`; all optional."""

    status: str | None = None
    strategy: str | None = None
    name_contains: str | None = None
    failed_before: datetime | None = None
