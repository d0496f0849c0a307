"""Tests for ``migration_spine.ops.service.MigrationService``."""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import plan_definition
from migration_spine.core.errors import (
    ConflictError,
    IllegalStateError,
    NotFoundError,
    ValidationError,
)
from migration_spine.core.settings import MigrationSettings
from migration_spine.domain import PlanStatus
from migration_spine.ops.service import MigrationService
from migration_spine.store.memory import InMemoryPlanStore


def ghost_definition():
    definition = plan_definition(name="ghost-copy")
    definition["steps"][1]["target_table"] = "ghost"
    return definition


class TestCreatePlan:
    def test_creates_planned_plan(self, service, memory_store):
        plan = service.create_plan(plan_definition())
        assert plan.status == PlanStatus.PLANNED
        assert [s.order for s in plan.steps] == [1, 2, 3]
        assert memory_store.slot_holder() == plan.id

    def test_invalid_definition_lists_every_problem(self, service):
        with pytest.raises(ValidationError) as exc_info:
            service.create_plan({"name": " ", "strategy": "sideways", "steps": []})
        violations = exc_info.value.violations
        assert "unknown strategy 'sideways'" in violations
        assert "plan name must not be blank" in violations
        assert "plan must contain at least one step" in violations

    def test_second_plan_conflicts_while_first_is_open(self, service):
        service.create_plan(plan_definition(name="first"))
        with pytest.raises(ConflictError):
            service.create_plan(plan_definition(name="second"))

    def test_concurrent_creates_admit_exactly_one(self, service):
        def create(i):
            try:
                return service.create_plan(plan_definition(name=f"plan-{i}"))
            except ConflictError:
                return None

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(create, range(8)))
        assert len([r for r in results if r is not None]) == 1
        assert len(service.list_plans()) == 1


class TestExecutePlan:
    def test_runs_to_completion(self, service):
        plan = service.create_plan(plan_definition())
        handle = service.execute_plan(plan.id)
        final = handle.wait(timeout=5)
        assert final.status == PlanStatus.COMPLETED
        assert service.get_plan(plan.id).status == PlanStatus.COMPLETED

    def test_unknown_plan(self, service):
        with pytest.raises(NotFoundError):
            service.execute_plan("01UNKNOWN")

    def test_second_execute_is_rejected(self, service):
        plan = service.create_plan(plan_definition())
        service.execute_plan(plan.id).wait(timeout=5)
        with pytest.raises(IllegalStateError):
            service.execute_plan(plan.id)
        assert service.get_plan(plan.id).status == PlanStatus.COMPLETED

    def test_pre_validation_failure_fails_plan(self, service, memory_store):
        plan = service.create_plan(ghost_definition())
        with pytest.raises(ValidationError) as exc_info:
            service.execute_plan(plan.id)
        assert any("table 'ghost' does not exist" in v for v in exc_info.value.violations)

        stored = service.get_plan(plan.id)
        assert stored.status == PlanStatus.FAILED
        assert stored.failure_reason.startswith("execution setup failed")
        assert memory_store.slot_holder() is None

    def test_pre_validation_can_be_skipped(self, service, recording_target):
        recording_target.fail_steps = {"copy-users"}
        plan = service.create_plan(ghost_definition())
        final = service.execute_plan(plan.id, pre_validation=False).wait(timeout=5)
        assert final.status == PlanStatus.FAILED
        assert "step 'copy-users' (order 2) failed" in final.failure_reason

    def test_dry_run_mutates_nothing(self, service, recording_target):
        plan = service.create_plan(plan_definition())
        final = service.execute_plan(plan.id, dry_run=True).wait(timeout=5)
        assert final.status == PlanStatus.COMPLETED
        assert final.dry_run is True
        assert recording_target.mutating_calls() == []


class TestCancelWaitDelete:
    def test_cancel_requires_running_plan(self, service):
        plan = service.create_plan(plan_definition())
        with pytest.raises(IllegalStateError):
            service.cancel_plan(plan.id)

    def test_cancel_and_wait(self, service, recording_target):
        recording_target.block = threading.Event()
        plan = service.create_plan(plan_definition())
        service.execute_plan(plan.id)
        assert recording_target.entered.wait(timeout=5)

        assert service.wait_for_plan(plan.id, timeout=0.05).status == PlanStatus.RUNNING
        with pytest.raises(ConflictError):
            service.delete_plan(plan.id)

        assert service.cancel_plan(plan.id) is True
        recording_target.block.set()
        final = service.wait_for_plan(plan.id, timeout=5)
        assert final.status == PlanStatus.FAILED
        assert "cancelled" in final.failure_reason

    def test_wait_for_plan_never_executed(self, service):
        plan = service.create_plan(plan_definition())
        assert service.wait_for_plan(plan.id).status == PlanStatus.PLANNED

    def test_delete_releases_slot(self, service):
        plan = service.create_plan(plan_definition(name="first"))
        service.delete_plan(plan.id)
        with pytest.raises(NotFoundError):
            service.get_plan(plan.id)
        assert service.create_plan(plan_definition(name="second")).name == "second"


class TestQueries:
    @pytest.fixture
    def finished(self, service):
        plan = service.create_plan(plan_definition(name="orders-backfill", strategy="incremental"))
        service.execute_plan(plan.id).wait(timeout=5)
        return service.get_plan(plan.id)

    def test_list_by_status(self, service, finished):
        assert [p.id for p in service.list_by_status("completed")] == [finished.id]
        assert service.list_by_status(PlanStatus.PLANNED) == []

    def test_unknown_status_is_a_validation_error(self, service):
        with pytest.raises(ValidationError, match="unknown PlanStatus 'paused'"):
            service.list_by_status("paused")

    def test_unknown_strategy_is_a_validation_error(self, service):
        with pytest.raises(ValidationError, match="unknown Strategy"):
            service.list_by_strategy("blue_green")

    def test_search_and_last_completed(self, service, finished):
        assert [p.name for p in service.search("BACKFILL")] == ["orders-backfill"]
        assert service.last_completed().id == finished.id

    def test_summary_and_step_metrics(self, service, finished):
        summary = service.summary(finished.id)
        assert summary.succeeded_steps == 3
        assert summary.completion_percentage == 100.0
        assert [m.step_name for m in service.step_metrics(finished.id)] == [
            "create-users-v2",
            "copy-users",
            "check-copied",
        ]

    def test_statistics(self, service, finished):
        stats = service.statistics()
        assert stats["total_plans"] == 1
        assert stats["active_plans"] == 0
        assert stats["status_breakdown"]["completed"] == 1
        assert stats["strategy_breakdown"]["incremental"] == 1
        assert stats["last_completed_plan_id"] == finished.id


class TestFromSettings:
    def test_wires_sqlite_target_and_memory_store(self, tmp_path):
        target_db = tmp_path / "target.db"
        settings = MigrationSettings(_env_file=None, target_database=str(target_db), executor_workers=1)
        service = MigrationService.from_settings(settings)
        try:
            assert isinstance(service.store, InMemoryPlanStore)
            assert service.pre_validation_default is True
        finally:
            service.shutdown()
