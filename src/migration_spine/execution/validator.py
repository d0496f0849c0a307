"""
Pre-execution validation of migration plans.

:class:`PlanValidator` inspects a plan without mutating it and reports
**every** problem it finds in a single
:class:`~migration_spine.core.errors.ValidationError`.  Checks per step kind:

========================  =====================================================
data_migration            script well-formed; source and target tables exist
schema_update             script well-formed (and rollback script, if any)
validation                rule is read-only; precondition rules must pass
cleanup                   target table exists
plan                      non-blank name, ≥1 step, unique non-negative orders
========================  =====================================================

A table "exists" when the rule evaluator finds it in the target or when an
earlier schema-update step of the same plan targets it.  Validation steps
that run after a mutating step check *results* of the plan itself; they are
structurally checked here and evaluated by the executor at run time.

Without a :class:`RuleEvaluator` only structural checks run.

Tags:
    validation, pre-flight, aggregate-errors, migration-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import assert_never

from migration_spine.core.errors import ValidationError
from migration_spine.core.logging import get_logger
from migration_spine.domain.plan import MigrationPlan, plan_violations
from migration_spine.domain.rules import rule_query_violations
from migration_spine.domain.steps import (
    CleanupStep,
    DataMigrationStep,
    SchemaUpdateStep,
    Step,
    ValidationStep,
    script_violations,
)
from migration_spine.execution.ports import RuleEvaluator

logger = get_logger(__name__)


class PlanValidator:
    """Aggregating pre-execution checks."""

    def __init__(self, evaluator: RuleEvaluator | None = None) -> None:
        self._evaluator = evaluator

    def validate_before_execution(self, plan: MigrationPlan) -> None:
        """Raise :class:`ValidationError` listing every violation in *plan*."""
        violations = self.check(plan)
        if violations:
            logger.warning(
                "validator.rejected",
                plan_id=plan.id,
                plan=plan.name,
                violation_count=len(violations),
            )
            raise ValidationError(
                f"plan '{plan.name}' failed pre-execution validation with "
                f"{len(violations)} violation(s)",
                violations=violations,
            ).with_context(plan_id=plan.id, plan_name=plan.name)
        logger.info("validator.passed", plan_id=plan.id, plan=plan.name)

    def check(self, plan: MigrationPlan) -> list[str]:
        """Return every violation in *plan* without raising."""
        violations = list(plan_violations(plan.name, plan.steps))
        created: set[str] = set()
        for step in plan.steps:
            for problem in self.validate_step(step, known_tables=created):
                violations.append(f"step '{step.name}' (order {step.order}): {problem}")
            if isinstance(step, ValidationStep) and not plan.has_mutation_before(step.order):
                violations.extend(self._evaluate_precondition(step))
            if isinstance(step, SchemaUpdateStep):
                created.add(step.target_table.lower())
        return violations

    def validate_step(self, step: Step, *, known_tables: set[str] | None = None) -> list[str]:
        """Structural and existence checks for a single step."""
        known = known_tables or set()
        match step:
            case DataMigrationStep():
                problems = script_violations(step.script)
                problems += self._rollback_violations(step.rollback_script)
                problems += self._missing_tables(
                    (step.source_table, step.target_table), known
                )
            case SchemaUpdateStep():
                problems = script_violations(step.script)
                problems += self._rollback_violations(step.rollback_script)
            case ValidationStep():
                problems = [f"rule '{step.rule.name}': {p}" for p in rule_query_violations(step.rule.query)]
            case CleanupStep():
                problems = self._missing_tables((step.target_table,), known)
            case _:
                assert_never(step)
        return problems

    @staticmethod
    def _rollback_violations(script: str | None) -> list[str]:
        if script is None:
            return []
        return [f"rollback {p}" for p in script_violations(script)]

    def _missing_tables(self, tables: tuple[str, ...], known: set[str]) -> list[str]:
        if self._evaluator is None:
            return []
        problems = []
        for table in tables:
            if table.lower() in known:
                continue
            try:
                exists = self._evaluator.table_exists(table)
            except Exception as exc:
                problems.append(f"could not check table '{table}': {exc}")
                continue
            if not exists:
                problems.append(f"table '{table}' does not exist")
        return problems

    def _evaluate_precondition(self, step: ValidationStep) -> list[str]:
        if self._evaluator is None:
            return []
        rule = step.rule
        prefix = f"step '{step.name}' (order {step.order})"
        try:
            outcome = self._evaluator.evaluate(rule)
        except Exception as exc:
            return [f"{prefix}: rule '{rule.name}' could not be evaluated: {exc}"]
        if outcome.passed or not rule.required:
            return []
        return [f"{prefix}: {outcome.message}"]
