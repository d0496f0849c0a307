"""
Migration service: the request-facing operations of the engine.

:class:`MigrationService` composes the store, validator, executor and
metrics reporter.  Its methods raise typed
:class:`~migration_spine.core.errors.MigrationError` subclasses; the
functions in :mod:`migration_spine.ops.plans` turn those into
:class:`~migration_spine.ops.result.OperationResult` envelopes for the API
and CLI.

Create path::

    definition ─▶ PlanDefinition.from_dict (ValidationError)
               ─▶ MigrationPlan.create
               ─▶ store.insert_exclusive  (ConflictError if a plan is open)

Execute path::

    store.get (NotFoundError) ─▶ is_ready_to_execute? (IllegalStateError)
       ─▶ validator.validate_before_execution   ┐ any failure here marks
       ─▶ store.transition(plan.start)           ┘ the plan FAILED, re-raises
       ─▶ executor.execute_async ─▶ ExecutionHandle (returns immediately)

Tags:
    service, use-cases, composition, migration-spine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from migration_spine.core.errors import (
    ConflictError,
    IllegalStateError,
    NotFoundError,
    ValidationError,
)
from migration_spine.core.logging import get_logger
from migration_spine.core.settings import MigrationSettings
from migration_spine.domain.enums import PlanStatus, Strategy
from migration_spine.domain.events import PlanEvent
from migration_spine.domain.loader import PlanDefinition
from migration_spine.domain.plan import MigrationPlan
from migration_spine.execution.executor import ExecutionHandle, PlanExecutor
from migration_spine.execution.metrics import ExecutionSummary, MetricsReporter, StepMetrics
from migration_spine.execution.ports import RuleEvaluator, ScriptRunner
from migration_spine.execution.validator import PlanValidator
from migration_spine.store.base import PlanStore

logger = get_logger(__name__)


def _parse[E: (PlanStatus, Strategy)](enum_type: type[E], value: E | str) -> E:
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(m.value for m in enum_type)
        raise ValidationError(
            f"unknown {enum_type.__name__} '{value}' (expected one of: {allowed})", cause=exc
        ) from exc


class MigrationService:
    """Facade over store, validator, executor and metrics."""

    def __init__(
        self,
        store: PlanStore,
        executor: PlanExecutor,
        validator: PlanValidator | None = None,
        metrics: MetricsReporter | None = None,
        *,
        pre_validation_default: bool = True,
    ) -> None:
        self.store = store
        self.executor = executor
        self.validator = validator or PlanValidator()
        self.metrics = metrics or MetricsReporter()
        self.pre_validation_default = pre_validation_default

    @classmethod
    def from_settings(
        cls,
        settings: MigrationSettings,
        *,
        store: PlanStore | None = None,
        runner: ScriptRunner | None = None,
        evaluator: RuleEvaluator | None = None,
    ) -> MigrationService:
        """Wire a service from settings; collaborators default to a SQLite target."""
        from migration_spine.adapters.sqlite_target import SqliteTarget
        from migration_spine.store import create_store

        store = store or create_store(settings)
        if runner is None or evaluator is None:
            target = SqliteTarget(settings.target_database)
            runner = runner or target
            evaluator = evaluator or target
        executor = PlanExecutor(
            store,
            runner,
            evaluator,
            max_workers=settings.executor_workers,
            plan_timeout_seconds=settings.plan_timeout_seconds,
        )
        return cls(
            store,
            executor,
            PlanValidator(evaluator),
            pre_validation_default=settings.pre_validation_default,
        )

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def create_plan(self, definition: PlanDefinition | dict[str, Any]) -> MigrationPlan:
        """Validate *definition* and insert a ``PLANNED`` plan.

        Raises:
            ValidationError: Invalid definition (all problems listed).
            ConflictError: Another plan is open (planned, running or rolling back).
        """
        if not isinstance(definition, PlanDefinition):
            definition = PlanDefinition.from_dict(definition)

        if self.store.has_active_migration():
            raise ConflictError(
                f"cannot create plan '{definition.name}': a migration is already active"
            ).with_context(plan_name=definition.name, operation="create_plan")

        plan = self.store.insert_exclusive(definition.to_plan())
        logger.info(
            "plan.created",
            plan_id=plan.id,
            plan=plan.name,
            strategy=plan.strategy.value,
            step_count=len(plan.steps),
        )
        return plan

    def execute_plan(
        self,
        plan_id: str,
        *,
        dry_run: bool = False,
        pre_validation: bool | None = None,
        continue_on_errors: bool = False,
    ) -> ExecutionHandle:
        """Start *plan_id* and hand it to the executor.

        Returns once the plan is ``RUNNING`` and persisted; the steps run in
        the background.

        Raises:
            NotFoundError: Unknown plan.
            IllegalStateError: The plan is not ``PLANNED``.
            ValidationError: Pre-validation failed (the plan is now ``FAILED``).
        """
        plan = self.store.get(plan_id)
        if not plan.is_ready_to_execute():
            raise IllegalStateError(
                f"plan '{plan.name}' is not ready to execute (status={plan.status.value})"
            ).with_context(plan_id=plan_id, plan_name=plan.name, operation="execute_plan")

        if pre_validation is None:
            pre_validation = self.pre_validation_default

        try:
            if pre_validation:
                self.validator.validate_before_execution(plan)
            started = self.store.transition(
                plan_id,
                lambda p: p.start(dry_run=dry_run, continue_on_errors=continue_on_errors),
            )
            handle = self.executor.execute_async(
                started, dry_run=dry_run, continue_on_errors=continue_on_errors
            )
        except (IllegalStateError, NotFoundError):
            raise
        except Exception as exc:
            self._fail_setup(plan_id, exc)
            raise

        logger.info(
            "plan.execution_started",
            plan_id=plan_id,
            plan=plan.name,
            dry_run=dry_run,
            pre_validation=pre_validation,
            continue_on_errors=continue_on_errors,
        )
        return handle

    def _fail_setup(self, plan_id: str, exc: Exception) -> None:
        reason = f"execution setup failed: {exc}"

        def fail(plan: MigrationPlan) -> None:
            if plan.is_ready_to_execute():
                plan.mark_setup_failed(reason)
            elif plan.is_active:
                plan.mark_failed(reason)

        self.store.transition(plan_id, fail)
        logger.warning("plan.setup_failed", plan_id=plan_id, error=str(exc))

    def delete_plan(self, plan_id: str) -> None:
        """Delete a plan that is not running or rolling back."""
        self.store.delete(plan_id)
        logger.info("plan.deleted", plan_id=plan_id)

    def cancel_plan(self, plan_id: str) -> bool:
        """Request cooperative cancellation of a running plan.

        Raises:
            IllegalStateError: The plan is not running or rolling back.
        """
        plan = self.store.get(plan_id)
        if not plan.is_active:
            raise IllegalStateError(
                f"plan '{plan.name}' is not running (status={plan.status.value})"
            ).with_context(plan_id=plan_id, operation="cancel_plan")
        return self.executor.cancel(plan_id)

    def wait_for_plan(self, plan_id: str, timeout: float | None = None) -> MigrationPlan:
        """Block until *plan_id* stops running here (or *timeout* elapses); return its snapshot."""
        handle = self.executor.get_handle(plan_id)
        if handle is not None:
            try:
                handle.wait(timeout)
            except TimeoutError:
                logger.info("plan.wait_timed_out", plan_id=plan_id, timeout=timeout)
        return self.store.get(plan_id)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_plan(self, plan_id: str) -> MigrationPlan:
        return self.store.get(plan_id)

    def list_plans(self) -> list[MigrationPlan]:
        return self.store.find_all()

    def list_by_status(self, status: PlanStatus | str) -> list[MigrationPlan]:
        return self.store.find_by_status(_parse(PlanStatus, status))

    def list_by_strategy(self, strategy: Strategy | str) -> list[MigrationPlan]:
        return self.store.find_by_strategy(_parse(Strategy, strategy))

    def list_active(self) -> list[MigrationPlan]:
        return self.store.find_active()

    def list_ready(self) -> list[MigrationPlan]:
        return self.store.find_ready_to_execute()

    def list_failed_before(self, cutoff: datetime) -> list[MigrationPlan]:
        return self.store.find_failed_older_than(cutoff)

    def search(self, name_fragment: str) -> list[MigrationPlan]:
        return self.store.find_by_name_containing(name_fragment)

    def last_completed(self) -> MigrationPlan | None:
        return self.store.find_last_completed()

    def summary(self, plan_id: str) -> ExecutionSummary:
        return self.metrics.summary(self.store.get(plan_id))

    def plan_events(self, plan_id: str) -> list[PlanEvent]:
        """Lifecycle history of a plan, oldest first."""
        return list(self.store.get(plan_id).events)

    def step_metrics(self, plan_id: str) -> list[StepMetrics]:
        return self.metrics.all_step_metrics(self.store.get(plan_id))

    def statistics(self) -> dict[str, Any]:
        stats = self.store.status_statistics()
        last = self.store.find_last_completed()
        stats["last_completed_plan_id"] = last.id if last else None
        return stats

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
