"""Plan Executor: runs a started plan's steps on a background worker.

:class:`PlanExecutor` takes a plan that the request path has already moved
to ``RUNNING`` and persisted, and runs its steps strictly in ascending
``order`` on a ``ThreadPoolExecutor``.  The caller receives an
:class:`ExecutionHandle` immediately; progress is observable by re-reading
the plan from the store, which is saved after every step.

Manifesto:
    - **Error becomes state:** nothing raised inside a run reaches the caller;
      it ends up in ``StepRun.error`` / ``failure_reason`` and the log
    - **Sequential only:** one step at a time, whatever the strategy
    - **Dry runs are real runs:** same dispatch, rule evaluation and metrics;
      only the mutating collaborator is swapped for a recorder

ARCHITECTURE
────────────
::

    execute_async(plan, dry_run, continue_on_errors)
    │
    └── pool.submit(run)
        │
        ├── for step in plan.steps (ascending order)
        │   ├── cancelled / timed out?  → remaining steps SKIPPED
        │   ├── earlier failure and not continue_on_errors → SKIPPED
        │   ├── estimate_records()       (read-only, also in dry run)
        │   ├── _dispatch(step)          match on the step variant
        │   └── store.save(plan)
        │
        ├── no failure        → mark_completed()
        └── failure / stop    → [strategy compensates: begin_rollback(),
                                  rollback scripts in reverse order]
                                 mark_failed(reason naming the step)

Example::

    executor = PlanExecutor(store, runner, evaluator)
    plan = store.transition(plan_id, lambda p: p.start())
    handle = executor.execute_async(plan, dry_run=True)
    final = handle.wait(timeout=30)
    print(final.status, final.failure_reason)
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import assert_never

from migration_spine.core.errors import ConflictError, ExecutionError, IllegalStateError
from migration_spine.core.logging import LogContext, get_logger
from migration_spine.domain.enums import PlanStatus, StepStatus
from migration_spine.domain.plan import MigrationPlan, StepRun
from migration_spine.domain.steps import (
    CleanupStep,
    DataMigrationStep,
    SchemaUpdateStep,
    Step,
    ValidationStep,
)
from migration_spine.execution.dry_run import DryRunScriptRunner
from migration_spine.execution.metrics import MetricsReporter
from migration_spine.execution.ports import RuleEvaluator, ScriptRunner
from migration_spine.store.base import PlanStore

logger = get_logger(__name__)


@dataclass
class ExecutionHandle:
    """Reference to a plan running in the background."""

    plan_id: str
    future: Future[MigrationPlan]
    dry_run: bool = False
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def done(self) -> bool:
        return self.future.done()

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> bool:
        """Request cooperative cancellation; honoured before the next step starts."""
        if self.future.done():
            return False
        self.cancel_event.set()
        return True

    def wait(self, timeout: float | None = None) -> MigrationPlan:
        """Block until the run finishes and return the final plan snapshot."""
        return self.future.result(timeout=timeout)


class PlanExecutor:
    """Runs started plans on a thread pool.

    Args:
        store: Where step progress and the final status are persisted.
        runner: Mutating collaborator; replaced by a recorder in dry runs.
        evaluator: Read-only collaborator for validation steps.
        max_workers: Worker threads.  Plans are mutually exclusive, so one
            is enough; more only matter when runs overlap their tail.
        plan_timeout_seconds: Fail a run that exceeds this wall-clock limit.
    """

    def __init__(
        self,
        store: PlanStore,
        runner: ScriptRunner,
        evaluator: RuleEvaluator,
        *,
        max_workers: int = 2,
        plan_timeout_seconds: float | None = None,
    ) -> None:
        self._store = store
        self._runner = runner
        self._evaluator = evaluator
        self._timeout = plan_timeout_seconds
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="migration-executor"
        )
        self._handles: dict[str, ExecutionHandle] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def execute_async(
        self,
        plan: MigrationPlan,
        *,
        dry_run: bool = False,
        continue_on_errors: bool = False,
    ) -> ExecutionHandle:
        """Schedule *plan* (already ``RUNNING``) and return immediately.

        Raises:
            IllegalStateError: *plan* has not been started.
            ConflictError: *plan* is already being executed here.
        """
        if plan.status != PlanStatus.RUNNING:
            raise IllegalStateError(
                f"plan '{plan.name}' must be running to execute (status={plan.status.value})"
            ).with_context(plan_id=plan.id, plan_name=plan.name)

        with self._lock:
            existing = self._handles.get(plan.id)
            if existing is not None and not existing.done:
                raise ConflictError(f"plan '{plan.name}' is already executing").with_context(
                    plan_id=plan.id
                )
            cancel_event = threading.Event()
            future = self._pool.submit(
                self.run,
                plan.copy(),
                dry_run=dry_run,
                continue_on_errors=continue_on_errors,
                cancel_event=cancel_event,
            )
            handle = ExecutionHandle(
                plan_id=plan.id, future=future, dry_run=dry_run, cancel_event=cancel_event
            )
            self._handles[plan.id] = handle

        logger.info(
            "executor.scheduled",
            plan_id=plan.id,
            plan=plan.name,
            dry_run=dry_run,
            continue_on_errors=continue_on_errors,
        )
        return handle

    def get_handle(self, plan_id: str) -> ExecutionHandle | None:
        with self._lock:
            return self._handles.get(plan_id)

    def cancel(self, plan_id: str) -> bool:
        """Request cancellation of a running plan.  ``False`` if nothing to cancel."""
        handle = self.get_handle(plan_id)
        if handle is None:
            return False
        requested = handle.cancel()
        if requested:
            logger.info("executor.cancel_requested", plan_id=plan_id)
        return requested

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work; optionally wait for running plans."""
        if not wait:
            with self._lock:
                for handle in self._handles.values():
                    handle.cancel()
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> PlanExecutor:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True)

    # ------------------------------------------------------------------ #
    # Run body
    # ------------------------------------------------------------------ #

    def run(
        self,
        plan: MigrationPlan,
        *,
        dry_run: bool = False,
        continue_on_errors: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> MigrationPlan:
        """Execute every step of a running plan synchronously and return it."""
        cancel_event = cancel_event or threading.Event()
        runner: ScriptRunner = DryRunScriptRunner(self._runner) if dry_run else self._runner
        deadline = time.monotonic() + self._timeout if self._timeout else None

        with LogContext(plan_id=plan.id, plan_name=plan.name):
            logger.info(
                "executor.plan_started",
                strategy=plan.strategy.value,
                step_count=len(plan.steps),
                dry_run=dry_run,
            )
            try:
                stop_reason = self._run_steps(
                    plan, runner, dry_run, continue_on_errors, cancel_event, deadline
                )
                self._finish(plan, runner, stop_reason)
            except Exception as exc:
                logger.exception("executor.plan_crashed", error=str(exc))
                self._fail_unexpectedly(plan, exc)

            summary = MetricsReporter().summary(plan)
            if summary.has_critical_issues:
                logger.warning(
                    "executor.critical_issues",
                    error_rate=summary.error_rate,
                    failed_records=summary.failed_records,
                    failed_steps=summary.failed_steps,
                )

            logger.info(
                "executor.plan_finished",
                status=plan.status.value,
                failure_reason=plan.failure_reason,
                duration_seconds=plan.duration_seconds,
            )
        return plan

    def _run_steps(
        self,
        plan: MigrationPlan,
        runner: ScriptRunner,
        dry_run: bool,
        continue_on_errors: bool,
        cancel_event: threading.Event,
        deadline: float | None,
    ) -> str | None:
        """Run steps in order; return why the loop stopped early, if it did."""
        failed: StepRun | None = None
        for index, step in enumerate(plan.steps):
            stop = None
            if cancel_event.is_set():
                stop = "cancelled"
            elif deadline is not None and time.monotonic() > deadline:
                stop = f"timed out after {self._timeout}s"
            if stop:
                self._skip_remaining(plan, index, f"plan {stop}")
                return f"plan {stop} before step '{step.name}' (order {step.order})"

            run = plan.step_run(step.order)
            if failed is not None and not continue_on_errors:
                run.mark_skipped(f"skipped after step '{failed.step_name}' failed")
                logger.info("executor.step_skipped", step=step.name, order=step.order)
                continue

            self._run_step(plan, step, run, runner, dry_run)
            self._store.save(plan)
            if run.status == StepStatus.FAILED and failed is None:
                failed = run
        return None

    def _run_step(
        self,
        plan: MigrationPlan,
        step: Step,
        run: StepRun,
        runner: ScriptRunner,
        dry_run: bool,
    ) -> None:
        run.mark_running(dry_run=dry_run)
        self._store.save(plan)
        logger.info(
            "executor.step_started", step=step.name, order=step.order, kind=step.kind.value
        )
        try:
            run.total_records = max(0, runner.estimate_records(step))
            processed, detail = self._dispatch(plan, step, runner, dry_run)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            run.mark_failed(error)
            logger.warning(
                "executor.step_failed",
                step=step.name,
                order=step.order,
                error=error,
                error_type=exc.__class__.__name__,
            )
            return
        run.mark_completed(processed, detail=detail)
        logger.info(
            "executor.step_completed",
            step=step.name,
            order=step.order,
            processed_records=run.processed_records,
            duration_seconds=run.duration_seconds,
        )

    def _dispatch(
        self, plan: MigrationPlan, step: Step, runner: ScriptRunner, dry_run: bool
    ) -> tuple[int | None, str | None]:
        """Apply one step; return ``(processed_records, detail)`` or raise."""
        match step:
            case DataMigrationStep():
                result = runner.run_transformation(step)
                return result.affected_records, result.detail or None
            case SchemaUpdateStep():
                result = runner.run_schema_update(step)
                return result.affected_records, result.detail or None
            case ValidationStep():
                return self._evaluate(plan, step, dry_run)
            case CleanupStep():
                result = runner.purge_table(step)
                return result.affected_records, result.detail or None
            case _:
                assert_never(step)

    def _evaluate(
        self, plan: MigrationPlan, step: ValidationStep, dry_run: bool
    ) -> tuple[int | None, str | None]:
        """Evaluate a validation step's rule and return ``(None, detail)``.

        The evaluator is read-only, so rules run in dry runs too.  When a
        mutating step precedes the rule, the target never received that
        step's changes, so a failing or erroring rule is noted in the step
        detail instead of failing the step.
        """
        rule = step.rule
        provisional = dry_run and plan.has_mutation_before(step.order)
        try:
            outcome = self._evaluator.evaluate(rule)
        except Exception as exc:
            if not provisional:
                raise
            return None, f"[dry-run] rule '{rule.name}' errored (recorded steps not applied): {exc}"
        if outcome.passed or not rule.required:
            return None, outcome.message
        if provisional:
            return None, f"[dry-run] {outcome.message} (recorded steps not applied)"
        raise ExecutionError(outcome.message, step_name=step.name)

    @staticmethod
    def _skip_remaining(plan: MigrationPlan, start: int, reason: str) -> None:
        for step in plan.steps[start:]:
            run = plan.step_run(step.order)
            if run.status == StepStatus.PENDING:
                run.mark_skipped(reason)

    # ------------------------------------------------------------------ #
    # Terminal transitions
    # ------------------------------------------------------------------ #

    def _finish(self, plan: MigrationPlan, runner: ScriptRunner, stop_reason: str | None) -> None:
        failed = plan.runs_with(StepStatus.FAILED)
        if stop_reason is None and not failed:
            plan.mark_completed()
            self._store.save(plan)
            return

        if failed:
            first = failed[0]
            reason = f"step '{first.step_name}' (order {first.order}) failed: {first.error}"
            if len(failed) > 1:
                names = ", ".join(f"'{r.step_name}'" for r in failed)
                reason += f"; {len(failed)} steps failed: {names}"
            if stop_reason:
                reason += f"; {stop_reason}"
        else:
            reason = stop_reason or "plan did not complete"

        if plan.strategy.compensates_on_failure:
            reason = f"{reason}; {self._compensate(plan, runner)}"

        plan.mark_failed(reason)
        self._store.save(plan)

    def _compensate(self, plan: MigrationPlan, runner: ScriptRunner) -> str:
        """Replay rollback scripts of completed steps in reverse order."""
        plan.begin_rollback()
        self._store.save(plan)
        logger.warning("executor.rollback_started", strategy=plan.strategy.value)

        rolled_back = 0
        failures: list[str] = []
        for step in reversed(plan.steps):
            run = plan.step_run(step.order)
            if run.status != StepStatus.COMPLETED:
                continue
            if not isinstance(step, DataMigrationStep | SchemaUpdateStep) or not step.rollback_script:
                continue
            try:
                runner.run_rollback(step)
            except Exception as exc:
                failures.append(f"'{step.name}': {exc}")
                logger.error("executor.rollback_step_failed", step=step.name, error=str(exc))
            else:
                run.mark_rolled_back()
                rolled_back += 1
                logger.info("executor.step_rolled_back", step=step.name, order=step.order)
            self._store.save(plan)

        if failures:
            return f"rollback failed for {'; '.join(failures)} ({rolled_back} step(s) rolled back)"
        return f"rolled back {rolled_back} step(s)"

    def _fail_unexpectedly(self, plan: MigrationPlan, exc: Exception) -> None:
        reason = f"unexpected {exc.__class__.__name__}: {exc}"
        for run in plan.runs_with(StepStatus.RUNNING):
            run.mark_failed(reason)
        if plan.status.is_active:
            plan.mark_failed(reason)
        try:
            self._store.save(plan)
        except Exception as save_exc:
            logger.error(
                "executor.final_save_failed", error=str(save_exc), status=plan.status.value
            )
