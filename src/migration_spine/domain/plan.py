"""
Migration plan aggregate and its lifecycle state machine.

:class:`MigrationPlan` owns an ordered tuple of immutable step definitions
and one mutable :class:`StepRun` record per step.  Every status change goes
through a method on the plan; each method checks the current status and
raises :class:`~migration_spine.core.errors.IllegalStateError` for a
transition the state machine does not allow.  Successful transitions append
a :class:`~migration_spine.domain.events.PlanEvent` to ``events``.

Manifesto:
    - **Single owner of status:** nothing outside the plan API assigns ``status``
    - **Fail loudly:** illegal transitions raise, they are never ignored
    - **History is append-only:** ``events`` grows with each transition and is never edited
    - **Aggregate validation:** ``create`` reports every structural problem at once

Architecture:
    ::

        ┌─────────┐  start()   ┌─────────┐  mark_completed()  ┌───────────┐
        │ PLANNED │──────────▶│ RUNNING │──────────────────▶│ COMPLETED │
        └─────────┘           └─────────┘                    └───────────┘
             │                 │      │ mark_failed()         ┌───────────┐
             │                 │      └──────────────────────▶│  FAILED   │
             │ mark_setup_     │ begin_rollback()             └───────────┘
             │ failed()        ▼                                 ▲   ▲
             │          ┌──────────────┐  mark_failed()          │   │
             │          │ ROLLING_BACK │─────────────────────────┘   │
             │          └──────────────┘  (mark_completed also legal)│
             └───────────────────────────────────────────────────────┘

Examples:
    >>> plan = MigrationPlan.create("users-v2", steps=[schema_step, copy_step])
    >>> plan.status
    <PlanStatus.PLANNED: 'planned'>
    >>> plan.start()
    >>> plan.start()
    Traceback (most recent call last):
    ...
    IllegalStateError: plan 'users-v2' is not ready to execute (status=running)

Tags:
    aggregate, state-machine, lifecycle, migration-spine

Doc-Types:
    - API Reference
    - Data Model
"""

from __future__ import annotations

import copy
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from migration_spine.core.errors import IllegalStateError, ValidationError
from migration_spine.core.timestamps import (
    ensure_utc,
    from_iso8601,
    generate_ulid,
    to_iso8601,
    utc_now,
)
from migration_spine.domain.enums import PlanEventType, PlanStatus, StepKind, StepStatus, Strategy
from migration_spine.domain.events import PlanEvent
from migration_spine.domain.steps import Step, step_from_dict


@dataclass
class StepRun:
    """Execution record of one step within a plan run."""

    step_name: str
    order: int
    kind: StepKind
    status: StepStatus = StepStatus.PENDING
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None
    detail: str | None = None
    total_records: int = 0
    processed_records: int = 0
    dry_run: bool = False

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def progress_percentage(self) -> float:
        if self.status == StepStatus.COMPLETED and not self.total_records:
            return 100.0
        if self.total_records <= 0:
            return 0.0
        return min(100.0, self.processed_records * 100.0 / self.total_records)

    def mark_running(self, *, dry_run: bool = False, total_records: int = 0) -> None:
        self.status = StepStatus.RUNNING
        self.started_at = utc_now()
        self.completed_at = None
        self.error = None
        self.detail = None
        self.dry_run = dry_run
        self.total_records = max(0, total_records)
        self.processed_records = 0

    def mark_completed(
        self, processed_records: int | None = None, *, detail: str | None = None
    ) -> None:
        self.status = StepStatus.COMPLETED
        self.completed_at = utc_now()
        self.detail = detail
        self.processed_records = (
            self.total_records if processed_records is None else max(0, processed_records)
        )
        if self.processed_records > self.total_records:
            self.total_records = self.processed_records

    def mark_failed(self, error: str) -> None:
        self.status = StepStatus.FAILED
        self.completed_at = utc_now()
        self.error = error

    def mark_skipped(self, reason: str | None = None) -> None:
        self.status = StepStatus.SKIPPED
        self.error = reason

    def mark_rolled_back(self) -> None:
        self.status = StepStatus.ROLLED_BACK

    def to_dict(self) -> dict[str, Any]:
        return {
            "step_name": self.step_name,
            "order": self.order,
            "kind": self.kind.value,
            "status": self.status.value,
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "duration_seconds": self.duration_seconds,
            "error": self.error,
            "detail": self.detail,
            "total_records": self.total_records,
            "processed_records": self.processed_records,
            "dry_run": self.dry_run,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepRun:
        return cls(
            step_name=data["step_name"],
            order=int(data["order"]),
            kind=StepKind(data["kind"]),
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            started_at=from_iso8601(data.get("started_at")),
            completed_at=from_iso8601(data.get("completed_at")),
            error=data.get("error"),
            detail=data.get("detail"),
            total_records=int(data.get("total_records") or 0),
            processed_records=int(data.get("processed_records") or 0),
            dry_run=bool(data.get("dry_run", False)),
        )

    @classmethod
    def for_step(cls, step: Step) -> StepRun:
        return cls(step_name=step.name, order=step.order, kind=step.kind)


def plan_violations(name: str, steps: Iterable[Step]) -> list[str]:
    """Structural problems that prevent a plan from being created."""
    problems = []
    if not name or not name.strip():
        problems.append("plan name must not be blank")
    steps = list(steps)
    if not steps:
        problems.append("plan must contain at least one step")
    orders = [s.order for s in steps]
    for order in sorted({o for o in orders if o < 0}):
        problems.append(f"step order {order} is negative")
    for order, count in sorted(Counter(orders).items()):
        if count > 1:
            names = ", ".join(s.name for s in steps if s.order == order)
            problems.append(f"step order {order} is used by {count} steps ({names})")
    return problems


@dataclass
class MigrationPlan:
    """Named, ordered collection of steps with a lifecycle status.

    Construct through :meth:`create` (validates) or :meth:`from_dict`
    (rehydrates a stored snapshot).
    """

    id: str
    name: str
    description: str
    strategy: Strategy
    steps: tuple[Step, ...]
    status: PlanStatus = PlanStatus.PLANNED
    created_at: datetime = field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    failure_reason: str | None = None
    step_runs: list[StepRun] = field(default_factory=list)
    dry_run: bool = False
    continue_on_errors: bool = False
    events: list[PlanEvent] = field(default_factory=list)

    # ------------------------------------------------------------------ #
    # Construction
    # ------------------------------------------------------------------ #

    @classmethod
    def create(
        cls,
        name: str,
        description: str = "",
        strategy: Strategy = Strategy.BIG_BANG,
        steps: Iterable[Step] = (),
        *,
        plan_id: str | None = None,
    ) -> MigrationPlan:
        """Validate and build a new plan in ``PLANNED``.

        Raises:
            ValidationError: Blank name, no steps, or negative/duplicate orders.
                All problems are reported together.
        """
        steps = list(steps)
        problems = plan_violations(name, steps)
        if problems:
            raise ValidationError(
                f"plan '{name}' is invalid: {'; '.join(problems)}", violations=problems
            )
        ordered = tuple(sorted(steps, key=lambda s: s.order))
        return cls(
            id=plan_id or generate_ulid(),
            name=name.strip(),
            description=description or "",
            strategy=Strategy(strategy),
            steps=ordered,
            step_runs=[StepRun.for_step(s) for s in ordered],
        )

    def copy(self) -> MigrationPlan:
        """Independent snapshot; steps are immutable and shared."""
        clone = copy.copy(self)
        clone.step_runs = [copy.copy(run) for run in self.step_runs]
        clone.events = list(self.events)
        return clone

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def is_ready_to_execute(self) -> bool:
        return self.status == PlanStatus.PLANNED

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def start(self, *, dry_run: bool = False, continue_on_errors: bool = False) -> None:
        """``PLANNED → RUNNING``; resets step runs for a fresh execution."""
        if not self.is_ready_to_execute():
            raise IllegalStateError(
                f"plan '{self.name}' is not ready to execute (status={self.status.value})"
            ).with_context(plan_id=self.id, plan_name=self.name)
        self.status = PlanStatus.RUNNING
        self.started_at = utc_now()
        self.completed_at = None
        self.failure_reason = None
        self.dry_run = dry_run
        self.continue_on_errors = continue_on_errors
        self.step_runs = [StepRun.for_step(s) for s in self.steps]
        self._record(PlanEventType.STARTED, dry_run=dry_run, continue_on_errors=continue_on_errors)

    def mark_completed(self) -> None:
        self._require(PlanStatus.RUNNING, PlanStatus.ROLLING_BACK, action="complete")
        self.status = PlanStatus.COMPLETED
        self.completed_at = utc_now()
        self._record(
            PlanEventType.COMPLETED,
            processed_records=sum(r.processed_records for r in self.step_runs),
        )

    def mark_failed(self, reason: str) -> None:
        self._require(PlanStatus.RUNNING, PlanStatus.ROLLING_BACK, action="fail")
        self.status = PlanStatus.FAILED
        self.completed_at = utc_now()
        self.failure_reason = reason
        self._record(PlanEventType.FAILED, reason=reason)

    def mark_setup_failed(self, reason: str) -> None:
        """Fail a plan whose execution setup broke before ``start()``."""
        self._require(PlanStatus.PLANNED, action="fail setup of")
        self.status = PlanStatus.FAILED
        self.completed_at = utc_now()
        self.failure_reason = reason
        self._record(PlanEventType.FAILED, reason=reason, setup=True)

    def begin_rollback(self) -> None:
        self._require(PlanStatus.RUNNING, action="roll back")
        if not self.strategy.compensates_on_failure:
            raise IllegalStateError(
                f"strategy {self.strategy.value} does not compensate failed runs"
            ).with_context(plan_id=self.id, plan_name=self.name)
        self.status = PlanStatus.ROLLING_BACK
        self._record(PlanEventType.ROLLBACK_STARTED, strategy=self.strategy.value)

    def _require(self, *allowed: PlanStatus, action: str) -> None:
        if self.status not in allowed:
            expected = " or ".join(s.value for s in allowed)
            raise IllegalStateError(
                f"cannot {action} plan '{self.name}' in status {self.status.value} "
                f"(expected {expected})"
            ).with_context(plan_id=self.id, plan_name=self.name)

    def _record(self, event_type: PlanEventType, **data: Any) -> None:
        self.events.append(PlanEvent.record(self.id, event_type, **data))

    # ------------------------------------------------------------------ #
    # Step run access
    # ------------------------------------------------------------------ #

    def step_run(self, order: int) -> StepRun:
        for run in self.step_runs:
            if run.order == order:
                return run
        raise KeyError(order)

    def runs_with(self, *statuses: StepStatus) -> list[StepRun]:
        return [r for r in self.step_runs if r.status in statuses]

    def next_pending_step(self) -> Step | None:
        for step, run in zip(self.steps, self.step_runs, strict=True):
            if run.status == StepStatus.PENDING:
                return step
        return None

    def has_mutation_before(self, order: int) -> bool:
        """Whether a non-validation step runs before the step at *order*.

        Validation steps with no mutation ahead of them check preconditions
        of the current target; later ones check results of this plan.
        """
        return any(s.kind != StepKind.VALIDATION and s.order < order for s in self.steps)

    @property
    def failed_step_names(self) -> list[str]:
        return [r.step_name for r in self.runs_with(StepStatus.FAILED)]

    @property
    def progress_percentage(self) -> float:
        if not self.step_runs:
            return 0.0
        done = len(self.runs_with(StepStatus.COMPLETED))
        return round(done * 100.0 / len(self.step_runs), 2)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None:
            return None
        end = self.completed_at or utc_now()
        return (end - self.started_at).total_seconds()

    # ------------------------------------------------------------------ #
    # Serialisation
    # ------------------------------------------------------------------ #

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "strategy": self.strategy.value,
            "status": self.status.value,
            "created_at": to_iso8601(self.created_at),
            "started_at": to_iso8601(self.started_at),
            "completed_at": to_iso8601(self.completed_at),
            "failure_reason": self.failure_reason,
            "dry_run": self.dry_run,
            "continue_on_errors": self.continue_on_errors,
            "progress_percentage": self.progress_percentage,
            "steps": [s.to_dict() for s in self.steps],
            "step_runs": [r.to_dict() for r in self.step_runs],
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MigrationPlan:
        steps = tuple(step_from_dict(s) for s in data.get("steps", []))
        runs = [StepRun.from_dict(r) for r in data.get("step_runs", [])]
        if len(runs) != len(steps):
            runs = [StepRun.for_step(s) for s in steps]
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            strategy=Strategy(data.get("strategy", Strategy.BIG_BANG.value)),
            steps=steps,
            status=PlanStatus(data.get("status", PlanStatus.PLANNED.value)),
            created_at=ensure_utc(from_iso8601(data.get("created_at"))) or utc_now(),
            started_at=from_iso8601(data.get("started_at")),
            completed_at=from_iso8601(data.get("completed_at")),
            failure_reason=data.get("failure_reason"),
            step_runs=runs,
            dry_run=bool(data.get("dry_run", False)),
            continue_on_errors=bool(data.get("continue_on_errors", False)),
            events=[PlanEvent.from_dict(e) for e in data.get("events", [])],
        )
