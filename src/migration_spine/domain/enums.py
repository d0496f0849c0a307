"""Enumerations for plan lifecycle, step kinds and strategies."""

from __future__ import annotations

from enum import Enum


class PlanStatus(str, Enum):
    """Lifecycle status of a migration plan."""

    PLANNED = "planned"
    RUNNING = "running"
    ROLLING_BACK = "rolling_back"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        """Running or rolling back: the plan currently owns the target."""
        return self in (PlanStatus.RUNNING, PlanStatus.ROLLING_BACK)

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.FAILED)


ACTIVE_STATUSES: frozenset[PlanStatus] = frozenset(
    {PlanStatus.RUNNING, PlanStatus.ROLLING_BACK}
)


class Strategy(str, Enum):
    """How a plan reacts to failure.

    ``incremental`` and ``dual_write`` keep the source authoritative while
    the target is filled, so a failed run can be compensated by replaying
    the rollback scripts of the steps that already completed.
    """

    BIG_BANG = "big_bang"
    INCREMENTAL = "incremental"
    DUAL_WRITE = "dual_write"
    ROLLBACK = "rollback"

    @property
    def supports_zero_downtime(self) -> bool:
        return self in (Strategy.INCREMENTAL, Strategy.DUAL_WRITE)

    @property
    def compensates_on_failure(self) -> bool:
        return self in (Strategy.INCREMENTAL, Strategy.DUAL_WRITE)


class StepKind(str, Enum):
    DATA_MIGRATION = "data_migration"
    SCHEMA_UPDATE = "schema_update"
    VALIDATION = "validation"
    CLEANUP = "cleanup"


class StepStatus(str, Enum):
    """Execution status of a single step within a plan run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"

    @property
    def is_finished(self) -> bool:
        return self not in (StepStatus.PENDING, StepStatus.RUNNING)


class RuleType(str, Enum):
    RECORD_COUNT = "record_count"
    DATA_INTEGRITY = "data_integrity"
    UNIQUENESS = "uniqueness"
    REFERENTIAL_INTEGRITY = "referential_integrity"
    CUSTOM = "custom"


class PlanEventType(str, Enum):
    """Lifecycle events appended to a plan's history."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLBACK_STARTED = "rollback_started"
