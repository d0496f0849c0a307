"""
Shared pytest fixtures for migration-spine tests.

This module provides:
- Step builders for the four step kinds
- ``RecordingTarget``: an in-process ScriptRunner/RuleEvaluator that records
  every call and can be told which steps fail
- Store, target, executor and service fixtures wired the way production wires them

Usage:
    def test_something(service, recording_target):
        plan = service.create_plan({...})
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Any

import pytest

# Ensure the package is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from migration_spine.adapters.sqlite_target import SqliteTarget
from migration_spine.core.errors import ExecutionError
from migration_spine.domain import (
    CleanupStep,
    DataMigrationStep,
    SchemaUpdateStep,
    Step,
    Strategy,
    ValidationRule,
    ValidationStep,
)
from migration_spine.domain.plan import MigrationPlan
from migration_spine.execution.executor import PlanExecutor
from migration_spine.execution.ports import RuleOutcome, ScriptResult
from migration_spine.execution.validator import PlanValidator
from migration_spine.ops.service import MigrationService
from migration_spine.store.memory import InMemoryPlanStore

# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        parts = set(test_path.parts)
        if parts & {"integration", "api", "cli"}:
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Step builders
# =============================================================================


def data_step(
    name: str = "copy-users",
    order: int = 1,
    *,
    source: str = "users",
    target: str = "users_v2",
    script: str = "INSERT INTO users_v2 SELECT * FROM users",
    rollback: str | None = None,
) -> DataMigrationStep:
    return DataMigrationStep(
        name=name,
        order=order,
        source_table=source,
        target_table=target,
        script=script,
        rollback_script=rollback,
    )


def schema_step(
    name: str = "create-users-v2",
    order: int = 1,
    *,
    target: str = "users_v2",
    script: str = "CREATE TABLE users_v2 (id INTEGER PRIMARY KEY, email TEXT)",
    rollback: str | None = None,
) -> SchemaUpdateStep:
    return SchemaUpdateStep(
        name=name, order=order, target_table=target, script=script, rollback_script=rollback
    )


def validation_step(
    name: str = "check-count",
    order: int = 1,
    *,
    query: str = "SELECT COUNT(*) FROM users",
    expected: str | None = "3",
    required: bool = True,
) -> ValidationStep:
    rule = ValidationRule(name=name, query=query, expected_result=expected, required=required)
    return ValidationStep(name=name, order=order, rule=rule)


def cleanup_step(name: str = "purge-staging", order: int = 1, *, target: str = "staging") -> CleanupStep:
    return CleanupStep(name=name, order=order, target_table=target)


def make_plan(
    *steps: Step, name: str = "test-plan", strategy: Strategy = Strategy.BIG_BANG
) -> MigrationPlan:
    return MigrationPlan.create(name, "", strategy, steps or (data_step(),))


def plan_definition(name: str = "users-v2", strategy: str = "big_bang") -> dict[str, Any]:
    """A valid three-step definition mapping (schema, data, validation)."""
    return {
        "name": name,
        "description": "move users to the v2 table",
        "strategy": strategy,
        "steps": [
            {
                "kind": "schema_update",
                "name": "create-users-v2",
                "order": 1,
                "target_table": "users_v2",
                "script": "CREATE TABLE users_v2 (id INTEGER PRIMARY KEY, email TEXT)",
                "rollback_script": "DROP TABLE users_v2",
            },
            {
                "kind": "data_migration",
                "name": "copy-users",
                "order": 2,
                "source_table": "users",
                "target_table": "users_v2",
                "script": "INSERT INTO users_v2 (id, email) SELECT id, email FROM users",
                "rollback_script": "DELETE FROM users_v2",
            },
            {
                "kind": "validation",
                "name": "check-copied",
                "order": 3,
                "rule": {
                    "name": "users-v2-count",
                    "query": "SELECT COUNT(*) FROM users_v2",
                    "expected_result": "3",
                },
            },
        ],
    }


# =============================================================================
# Recording collaborator
# =============================================================================


class RecordingTarget:
    """ScriptRunner + RuleEvaluator double.

    Every call is appended to ``calls`` as ``(operation, step_or_rule_name)``.
    ``fail_steps`` names steps whose mutating call raises; ``rule_results``
    maps rule names to the scalar the rule "returns" (default: its expected
    value).  ``block`` lets a test hold a step until it sets the event.
    """

    def __init__(
        self,
        *,
        tables: set[str] | None = None,
        fail_steps: set[str] | None = None,
        fail_rollbacks: set[str] | None = None,
        rule_results: dict[str, Any] | None = None,
        records: int = 10,
    ) -> None:
        self.tables = {t.lower() for t in (tables or {"users", "users_v2", "staging"})}
        self.fail_steps = fail_steps or set()
        self.fail_rollbacks = fail_rollbacks or set()
        self.rule_results = rule_results or {}
        self.records = records
        self.calls: list[tuple[str, str]] = []
        self.block: threading.Event | None = None
        self.entered = threading.Event()
        self._lock = threading.Lock()

    def _log(self, operation: str, name: str) -> None:
        with self._lock:
            self.calls.append((operation, name))

    def mutating_calls(self) -> list[tuple[str, str]]:
        return [c for c in self.calls if c[0] not in ("estimate_records", "evaluate", "table_exists")]

    # -- RuleEvaluator -----------------------------------------------------

    def table_exists(self, table: str) -> bool:
        self._log("table_exists", table)
        return table.lower() in self.tables

    def evaluate(self, rule: ValidationRule) -> RuleOutcome:
        self._log("evaluate", rule.name)
        actual = self.rule_results.get(rule.name, rule.expected_result)
        if isinstance(actual, Exception):
            raise actual
        return RuleOutcome.from_actual(rule, actual)

    # -- ScriptRunner ------------------------------------------------------

    def estimate_records(self, step: Step) -> int:
        self._log("estimate_records", step.name)
        return self.records if isinstance(step, DataMigrationStep | CleanupStep) else 0

    def _mutate(self, operation: str, step: Step) -> ScriptResult:
        self._log(operation, step.name)
        self.entered.set()
        if self.block is not None:
            self.block.wait(timeout=5)
        if step.name in self.fail_steps:
            raise ExecutionError(f"{operation} failed for {step.name}", step_name=step.name)
        affected = self.records if isinstance(step, DataMigrationStep | CleanupStep) else 0
        return ScriptResult(affected_records=affected, detail=f"{operation} {step.name}")

    def run_transformation(self, step: DataMigrationStep) -> ScriptResult:
        return self._mutate("run_transformation", step)

    def run_schema_update(self, step: SchemaUpdateStep) -> ScriptResult:
        return self._mutate("run_schema_update", step)

    def purge_table(self, step: CleanupStep) -> ScriptResult:
        return self._mutate("purge_table", step)

    def run_rollback(self, step: DataMigrationStep | SchemaUpdateStep) -> ScriptResult:
        self._log("run_rollback", step.name)
        if step.name in self.fail_rollbacks:
            raise ExecutionError(f"rollback failed for {step.name}", step_name=step.name)
        return ScriptResult(detail=f"rolled back {step.name}")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def memory_store() -> InMemoryPlanStore:
    return InMemoryPlanStore()


@pytest.fixture
def recording_target() -> RecordingTarget:
    return RecordingTarget()


@pytest.fixture
def executor(memory_store, recording_target):
    executor = PlanExecutor(memory_store, recording_target, recording_target, max_workers=1)
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def service(memory_store, recording_target, executor) -> MigrationService:
    return MigrationService(memory_store, executor, PlanValidator(recording_target))


@pytest.fixture
def sqlite_target():
    """In-memory SQLite target seeded with three users and a staging table."""
    target = SqliteTarget(":memory:")
    target.raw.executescript(
        """
        CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT NOT NULL);
        INSERT INTO users (id, email) VALUES
            (1, 'ada@example.com'), (2, 'grace@example.com'), (3, 'linus@example.com');
        CREATE TABLE staging (id INTEGER);
        INSERT INTO staging (id) VALUES (1), (2);
        """
    )
    yield target
    target.close()
