"""
Collaborator ports consumed by the validator and the executor.

The engine never touches a database directly.  It talks to two injected
collaborators:

* :class:`ScriptRunner`: the *mutating* side: applies transformation and
  schema scripts, purges tables, replays rollback scripts.  Its
  ``estimate_records`` method is read-only and is the only method a dry run
  may call on the real runner.
* :class:`RuleEvaluator`: the *read-only* side: evaluates validation rules
  and answers whether a table exists.

Collaborators signal failure by raising; the executor turns the exception
into step state.  :class:`ScriptResult` and :class:`RuleOutcome` are the
result shapes shared by real runs and dry runs.

Tags:
    protocol, ports, collaborators, migration-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from migration_spine.domain.rules import ValidationRule
from migration_spine.domain.steps import (
    CleanupStep,
    DataMigrationStep,
    SchemaUpdateStep,
    Step,
)


@dataclass(frozen=True)
class ScriptResult:
    """Outcome of a mutating call.

    Attributes:
        affected_records: Rows written or removed (0 when unknown).
        detail: Short human-readable description of what was done.
        dry_run: ``True`` when the call was recorded instead of applied.
    """

    affected_records: int = 0
    detail: str = ""
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "affected_records": self.affected_records,
            "detail": self.detail,
            "dry_run": self.dry_run,
        }


@dataclass(frozen=True)
class RuleOutcome:
    """Result of evaluating a :class:`ValidationRule`."""

    rule_name: str
    passed: bool
    actual: str | None = None
    expected: str | None = None
    message: str = ""

    @classmethod
    def from_actual(cls, rule: ValidationRule, actual: Any) -> RuleOutcome:
        text = None if actual is None else str(actual)
        passed = rule.is_result_valid(text)
        message = (
            f"rule '{rule.name}' passed"
            if passed
            else f"rule '{rule.name}' expected {rule.expected_result!r}, got {text!r}"
        )
        return cls(
            rule_name=rule.name,
            passed=passed,
            actual=text,
            expected=rule.expected_result,
            message=message,
        )


@runtime_checkable
class ScriptRunner(Protocol):
    """Mutating collaborator that applies step scripts to the target."""

    def estimate_records(self, step: Step) -> int:
        """Rows the step is expected to touch. Must not mutate anything."""
        ...

    def run_transformation(self, step: DataMigrationStep) -> ScriptResult: ...

    def run_schema_update(self, step: SchemaUpdateStep) -> ScriptResult: ...

    def purge_table(self, step: CleanupStep) -> ScriptResult: ...

    def run_rollback(self, step: DataMigrationStep | SchemaUpdateStep) -> ScriptResult:
        """Apply ``step.rollback_script``."""
        ...


@runtime_checkable
class RuleEvaluator(Protocol):
    """Read-only collaborator that inspects the target."""

    def evaluate(self, rule: ValidationRule) -> RuleOutcome: ...

    def table_exists(self, table: str) -> bool: ...
