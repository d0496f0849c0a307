"""SQLite migration target.

Reference implementation of both collaborator ports against a SQLite
database: :class:`SqliteTarget` is a
:class:`~migration_spine.execution.ports.ScriptRunner` *and* a
:class:`~migration_spine.execution.ports.RuleEvaluator`.

Scripts run inside an explicit transaction, so a failing multi-statement
script leaves the target untouched.

Usage::

    target = SqliteTarget("warehouse.db")
    target.table_exists("users")               # True
    target.evaluate(ValidationRule.record_count("n", "users", 3))
"""

from __future__ import annotations

import sqlite3
import threading
from typing import Any, assert_never

from migration_spine.core.errors import ExecutionError
from migration_spine.core.logging import get_logger
from migration_spine.domain.rules import ValidationRule
from migration_spine.domain.steps import (
    CleanupStep,
    DataMigrationStep,
    SchemaUpdateStep,
    Step,
    ValidationStep,
)
from migration_spine.execution.ports import RuleOutcome, ScriptResult

logger = get_logger(__name__)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


class SqliteTarget:
    """Script runner and rule evaluator over one SQLite connection."""

    def __init__(self, path: str = ":memory:") -> None:
        self._path = path
        self._conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self._lock = threading.RLock()

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (fixtures, pragmas)."""
        return self._conn

    def close(self) -> None:
        self._conn.close()

    # -- RuleEvaluator -----------------------------------------------------

    def table_exists(self, table: str) -> bool:
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type IN ('table', 'view') "
                "AND name = ? COLLATE NOCASE",
                (table,),
            ).fetchone()
        return row is not None

    def evaluate(self, rule: ValidationRule) -> RuleOutcome:
        with self._lock:
            try:
                row = self._conn.execute(rule.query).fetchone()
            except sqlite3.Error as exc:
                raise ExecutionError(f"rule '{rule.name}' query failed: {exc}", cause=exc) from exc
        actual: Any = row[0] if row else None
        outcome = RuleOutcome.from_actual(rule, actual)
        logger.debug("sqlite_target.rule_evaluated", rule=rule.name, passed=outcome.passed)
        return outcome

    # -- ScriptRunner ------------------------------------------------------

    def estimate_records(self, step: Step) -> int:
        match step:
            case DataMigrationStep():
                return self._count(step.source_table)
            case CleanupStep():
                return self._count(step.target_table)
            case SchemaUpdateStep() | ValidationStep():
                return 0
            case _:
                assert_never(step)

    def run_transformation(self, step: DataMigrationStep) -> ScriptResult:
        changed = self._apply(step, step.script)
        return ScriptResult(
            affected_records=changed,
            detail=f"migrated {changed} record(s) from {step.source_table} to {step.target_table}",
        )

    def run_schema_update(self, step: SchemaUpdateStep) -> ScriptResult:
        self._apply(step, step.script)
        return ScriptResult(detail=f"updated schema of {step.target_table}")

    def purge_table(self, step: CleanupStep) -> ScriptResult:
        with self._lock:
            try:
                cursor = self._conn.execute(f"DELETE FROM {quote_identifier(step.target_table)}")
            except sqlite3.Error as exc:
                raise ExecutionError(str(exc), step_name=step.name, cause=exc) from exc
        return ScriptResult(
            affected_records=max(0, cursor.rowcount),
            detail=f"purged {step.target_table}",
        )

    def run_rollback(self, step: DataMigrationStep | SchemaUpdateStep) -> ScriptResult:
        if not step.rollback_script:
            raise ExecutionError(f"step '{step.name}' has no rollback script", step_name=step.name)
        changed = self._apply(step, step.rollback_script)
        return ScriptResult(affected_records=changed, detail=f"rolled back {step.name}")

    # -- internals ---------------------------------------------------------

    def _count(self, table: str) -> int:
        if not self.table_exists(table):
            return 0
        with self._lock:
            row = self._conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()
        return int(row[0]) if row else 0

    def _apply(self, step: Step, script: str) -> int:
        """Run *script* atomically; return the number of rows it changed."""
        with self._lock:
            before = self._conn.total_changes
            try:
                self._conn.executescript(f"BEGIN;\n{script}\n;COMMIT;")
            except sqlite3.Error as exc:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                logger.warning("sqlite_target.script_failed", step=step.name, error=str(exc))
                raise ExecutionError(str(exc), step_name=step.name, cause=exc) from exc
            return self._conn.total_changes - before
