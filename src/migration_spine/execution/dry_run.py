"""Dry-run recorder: a ScriptRunner that records instead of mutating.

In a dry run every step still goes through dispatch, validation and
metrics recording.  Only the mutating calls are replaced: the recorder
answers each of them with a :class:`ScriptResult` of the same shape a real
run produces (``affected_records`` taken from the read-only estimate) and
appends a :class:`RecordedCall` so callers can inspect what *would* have
happened.

::

    DryRunScriptRunner(delegate)
    ├── estimate_records()   → delegate.estimate_records()   (read-only)
    ├── run_transformation() → recorded, ScriptResult(dry_run=True)
    ├── run_schema_update()  → recorded, ScriptResult(dry_run=True)
    ├── purge_table()        → recorded, ScriptResult(dry_run=True)
    └── run_rollback()       → recorded, ScriptResult(dry_run=True)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime

from migration_spine.core.logging import get_logger
from migration_spine.core.timestamps import utc_now
from migration_spine.domain.steps import (
    CleanupStep,
    DataMigrationStep,
    SchemaUpdateStep,
    Step,
)
from migration_spine.execution.ports import ScriptResult, ScriptRunner

logger = get_logger(__name__)


@dataclass(frozen=True)
class RecordedCall:
    """A mutating call that a dry run intercepted."""

    operation: str
    step_name: str
    target_table: str | None
    script: str | None
    estimated_records: int
    recorded_at: datetime = field(default_factory=utc_now)


class DryRunScriptRunner:
    """Wraps a real :class:`ScriptRunner`; forwards only ``estimate_records``."""

    def __init__(self, delegate: ScriptRunner | None = None) -> None:
        self._delegate = delegate
        self._calls: list[RecordedCall] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> list[RecordedCall]:
        with self._lock:
            return list(self._calls)

    def estimate_records(self, step: Step) -> int:
        if self._delegate is None:
            return 0
        return self._delegate.estimate_records(step)

    def _record(
        self, operation: str, step: Step, target: str | None, script: str | None
    ) -> ScriptResult:
        estimate = self.estimate_records(step)
        call = RecordedCall(
            operation=operation,
            step_name=step.name,
            target_table=target,
            script=script,
            estimated_records=estimate,
        )
        with self._lock:
            self._calls.append(call)
        logger.debug("dry_run.recorded", operation=operation, step=step.name, target=target)
        return ScriptResult(
            affected_records=estimate,
            detail=f"[dry-run] would {operation.replace('_', ' ')} on {target}",
            dry_run=True,
        )

    def run_transformation(self, step: DataMigrationStep) -> ScriptResult:
        return self._record("run_transformation", step, step.target_table, step.script)

    def run_schema_update(self, step: SchemaUpdateStep) -> ScriptResult:
        return self._record("run_schema_update", step, step.target_table, step.script)

    def purge_table(self, step: CleanupStep) -> ScriptResult:
        return self._record("purge_table", step, step.target_table, None)

    def run_rollback(self, step: DataMigrationStep | SchemaUpdateStep) -> ScriptResult:
        return self._record("run_rollback", step, step.target_table, step.rollback_script)
