"""
Execution metrics derived from plan and step state.

The reporter is a pure function of a plan snapshot: it never reads the
store or the collaborators, so a summary taken while a plan is running
reflects exactly what the last persisted snapshot says.  A dry run yields
the same shape as a real run; only the ``dry_run`` flags differ.

Examples:
    >>> summary = MetricsReporter().summary(plan)
    >>> summary.succeeded_steps, summary.failed_steps, summary.completion_percentage
    (3, 0, 100.0)
    >>> summary.success_rate, summary.error_rate, summary.has_critical_issues
    (100.0, 0.0, False)

Tags:
    metrics, reporting, summary, throughput, migration-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any

from migration_spine.core.timestamps import to_iso8601
from migration_spine.domain.enums import StepStatus
from migration_spine.domain.plan import MigrationPlan, StepRun

# Percent of attempted records, and absolute count, above which a run is critical.
CRITICAL_ERROR_RATE = 5.0
CRITICAL_FAILED_RECORDS = 100


def _throughput(records: int, seconds: float | None) -> float:
    if not seconds or seconds <= 0:
        return 0.0
    return round(records / seconds, 2)


def _rate(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part * 100.0 / whole, 2)


@dataclass(frozen=True)
class StepMetrics:
    """Per-step timing, outcome and record counts."""

    step_name: str
    order: int
    kind: str
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: float | None
    total_records: int
    processed_records: int
    throughput: float
    progress_percentage: float
    error: str | None
    detail: str | None
    dry_run: bool

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = to_iso8601(self.started_at)
        data["completed_at"] = to_iso8601(self.completed_at)
        return data


@dataclass(frozen=True)
class ExecutionSummary:
    """Plan-level aggregate of step outcomes, timing and records."""

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
    started_at: datetime | None
    completed_at: datetime | None
    elapsed_seconds: float | None
    total_records: int
    processed_records: int
    successful_records: int
    failed_records: int
    throughput: float
    success_rate: float
    error_rate: float
    estimated_seconds_remaining: float
    failure_reason: str | None
    dry_run: bool

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["started_at"] = to_iso8601(self.started_at)
        data["completed_at"] = to_iso8601(self.completed_at)
        data["has_critical_issues"] = self.has_critical_issues
        return data

    @property
    def has_critical_issues(self) -> bool:
        """Too large a share, or too many, of the attempted records failed."""
        return (
            self.error_rate > CRITICAL_ERROR_RATE
            or self.failed_records > CRITICAL_FAILED_RECORDS
        )


class MetricsReporter:
    """Builds :class:`ExecutionSummary` and :class:`StepMetrics` from snapshots."""

    def summary(self, plan: MigrationPlan) -> ExecutionSummary:
        runs = plan.step_runs

        def count(status: StepStatus) -> int:
            return sum(1 for r in runs if r.status == status)

        succeeded = [r for r in runs if r.status == StepStatus.COMPLETED]
        failed = [r for r in runs if r.status == StepStatus.FAILED]
        total = sum(r.total_records for r in runs)
        processed = sum(r.processed_records for r in runs)
        successful = sum(r.processed_records for r in succeeded)
        failed_records = sum(max(0, r.total_records - r.processed_records) for r in failed)
        elapsed = plan.duration_seconds
        throughput = _throughput(processed, elapsed)

        return ExecutionSummary(
            plan_id=plan.id,
            plan_name=plan.name,
            status=plan.status.value,
            strategy=plan.strategy.value,
            total_steps=len(runs),
            pending_steps=count(StepStatus.PENDING),
            running_steps=count(StepStatus.RUNNING),
            succeeded_steps=len(succeeded),
            failed_steps=len(failed),
            skipped_steps=count(StepStatus.SKIPPED),
            rolled_back_steps=count(StepStatus.ROLLED_BACK),
            completion_percentage=plan.progress_percentage,
            started_at=plan.started_at,
            completed_at=plan.completed_at,
            elapsed_seconds=elapsed,
            total_records=total,
            processed_records=processed,
            successful_records=successful,
            failed_records=failed_records,
            throughput=throughput,
            success_rate=_rate(successful, successful + failed_records),
            error_rate=_rate(failed_records, successful + failed_records),
            estimated_seconds_remaining=self._remaining(plan, total - processed, throughput),
            failure_reason=plan.failure_reason,
            dry_run=plan.dry_run,
        )

    @staticmethod
    def _remaining(plan: MigrationPlan, records_left: int, throughput: float) -> float:
        """Seconds until the records estimated so far are processed at the current rate."""
        if not plan.is_active or throughput <= 0 or records_left <= 0:
            return 0.0
        return round(records_left / throughput, 2)

    def step_metrics(self, run: StepRun) -> StepMetrics:
        return StepMetrics(
            step_name=run.step_name,
            order=run.order,
            kind=run.kind.value,
            status=run.status.value,
            started_at=run.started_at,
            completed_at=run.completed_at,
            duration_seconds=run.duration_seconds,
            total_records=run.total_records,
            processed_records=run.processed_records,
            throughput=_throughput(run.processed_records, run.duration_seconds),
            progress_percentage=round(run.progress_percentage, 2),
            error=run.error,
            detail=run.detail,
            dry_run=run.dry_run,
        )

    def all_step_metrics(self, plan: MigrationPlan) -> list[StepMetrics]:
        return [self.step_metrics(r) for r in plan.step_runs]
