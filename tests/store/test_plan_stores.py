"""Contract tests run against every ``PlanStore`` backend."""

from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from conftest import make_plan
from migration_spine.core.errors import ConflictError, IllegalStateError, NotFoundError
from migration_spine.core.timestamps import utc_now
from migration_spine.domain.enums import PlanStatus, StepStatus, Strategy
from migration_spine.store.memory import InMemoryPlanStore
from migration_spine.store.sql import SqlPlanStore


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryPlanStore()
        return
    sql_store = SqlPlanStore(f"sqlite:///{tmp_path / 'plans.db'}")
    yield sql_store
    sql_store.dispose()


def finish(store, plan_id, *, fail: bool = False):
    def _finish(plan):
        plan.start()
        if fail:
            plan.mark_failed("boom")
        else:
            plan.mark_completed()

    return store.transition(plan_id, _finish)


class TestInsertExclusive:
    def test_insert_and_get(self, store):
        plan = store.insert_exclusive(make_plan(name="first"))
        loaded = store.get(plan.id)
        assert loaded.name == "first"
        assert loaded.status == PlanStatus.PLANNED
        assert loaded.steps == plan.steps
        assert store.slot_holder() == plan.id

    def test_second_open_plan_conflicts(self, store):
        first = store.insert_exclusive(make_plan(name="first"))
        with pytest.raises(ConflictError) as exc_info:
            store.insert_exclusive(make_plan(name="second"))
        assert exc_info.value.context.metadata["holder"] == first.id
        assert store.count() == 1

    def test_slot_released_on_terminal_status(self, store):
        first = store.insert_exclusive(make_plan(name="first"))
        finish(store, first.id)
        assert store.slot_holder() is None
        store.insert_exclusive(make_plan(name="second"))
        assert store.count() == 2

    def test_concurrent_inserts_admit_exactly_one(self, store):
        barrier = threading.Barrier(8)
        outcomes: list[str] = []
        lock = threading.Lock()

        def attempt(i: int) -> None:
            barrier.wait()
            try:
                store.insert_exclusive(make_plan(name=f"plan-{i}"))
                result = "ok"
            except ConflictError:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7
        assert store.count() == 1


class TestTransition:
    def test_applies_action_atomically(self, store):
        plan = store.insert_exclusive(make_plan())
        updated = store.transition(plan.id, lambda p: p.start(dry_run=True))
        assert updated.status == PlanStatus.RUNNING
        assert store.get(plan.id).dry_run is True
        assert store.has_active_migration() is True

    def test_failed_action_changes_nothing(self, store):
        plan = store.insert_exclusive(make_plan())
        store.transition(plan.id, lambda p: p.start())
        with pytest.raises(IllegalStateError):
            store.transition(plan.id, lambda p: p.start())
        assert store.get(plan.id).status == PlanStatus.RUNNING

    def test_unknown_plan(self, store):
        with pytest.raises(NotFoundError):
            store.transition("missing", lambda p: None)

    def test_only_one_concurrent_start_wins(self, store):
        plan = store.insert_exclusive(make_plan())
        barrier = threading.Barrier(4)
        wins: list[bool] = []

        def start() -> None:
            barrier.wait()
            try:
                store.transition(plan.id, lambda p: p.start())
                wins.append(True)
            except IllegalStateError:
                wins.append(False)

        threads = [threading.Thread(target=start) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert wins.count(True) == 1


class TestSave:
    def test_persists_step_progress(self, store):
        plan = store.insert_exclusive(make_plan())
        plan = store.transition(plan.id, lambda p: p.start())
        plan.step_runs[0].mark_running(total_records=5)
        plan.step_runs[0].mark_completed(5)
        store.save(plan)
        run = store.get(plan.id).step_runs[0]
        assert run.status == StepStatus.COMPLETED
        assert run.processed_records == 5

    def test_returned_copies_are_detached(self, store):
        plan = store.insert_exclusive(make_plan())
        loaded = store.get(plan.id)
        loaded.step_runs[0].mark_running()
        assert store.get(plan.id).step_runs[0].status == StepStatus.PENDING

    def test_lifecycle_events_are_persisted(self, store):
        plan = store.insert_exclusive(make_plan())
        finish(store, plan.id, fail=True)
        events = store.get(plan.id).events
        assert [e.event_type.value for e in events] == ["started", "failed"]
        assert events[1].data == {"reason": "boom"}
        assert events[0].plan_id == plan.id

    def test_save_waits_for_transition_on_same_plan(self, store):
        plan = store.insert_exclusive(make_plan())
        in_action = threading.Event()
        release = threading.Event()

        def slow_start(p):
            p.start()
            in_action.set()
            release.wait(timeout=5)

        transition = threading.Thread(target=store.transition, args=(plan.id, slow_start))
        transition.start()
        assert in_action.wait(timeout=5)

        snapshot = store.get(plan.id)
        snapshot.description = "saved after start"
        saver = threading.Thread(target=store.save, args=(snapshot,))
        saver.start()
        saver.join(timeout=0.2)
        assert saver.is_alive()

        release.set()
        transition.join(timeout=5)
        saver.join(timeout=5)
        assert store.get(plan.id).description == "saved after start"


class TestDelete:
    def test_delete_planned_releases_slot(self, store):
        plan = store.insert_exclusive(make_plan())
        store.delete(plan.id)
        assert store.find_by_id(plan.id) is None
        assert store.slot_holder() is None

    def test_cannot_delete_running(self, store):
        plan = store.insert_exclusive(make_plan())
        store.transition(plan.id, lambda p: p.start())
        with pytest.raises(ConflictError, match="while it is running"):
            store.delete(plan.id)

    def test_cannot_delete_rolling_back(self, store):
        plan = store.insert_exclusive(make_plan(strategy=Strategy.INCREMENTAL))

        def start_and_roll_back(p):
            p.start()
            p.begin_rollback()

        store.transition(plan.id, start_and_roll_back)
        with pytest.raises(ConflictError, match="while it is rolling_back"):
            store.delete(plan.id)
        assert store.get(plan.id).status == PlanStatus.ROLLING_BACK
        assert store.slot_holder() == plan.id

    @pytest.mark.parametrize("fail", [False, True], ids=["completed", "failed"])
    def test_delete_finished_plan(self, store, fail):
        plan = store.insert_exclusive(make_plan())
        finished = finish(store, plan.id, fail=fail)
        assert finished.status.is_terminal

        store.delete(plan.id)
        assert store.find_by_id(plan.id) is None
        assert store.count() == 0
        assert store.insert_exclusive(make_plan(name="next")).status == PlanStatus.PLANNED

    def test_delete_unknown(self, store):
        with pytest.raises(NotFoundError):
            store.delete("missing")


class TestQueries:
    @pytest.fixture
    def populated(self, store):
        done = store.insert_exclusive(make_plan(name="orders-backfill", strategy=Strategy.INCREMENTAL))
        finish(store, done.id)
        failed = store.insert_exclusive(make_plan(name="Users-v2"))
        finish(store, failed.id, fail=True)
        open_plan = store.insert_exclusive(make_plan(name="users-v3", strategy=Strategy.DUAL_WRITE))
        return done, failed, open_plan

    def test_find_all_in_creation_order(self, store, populated):
        assert [p.name for p in store.find_all()] == ["orders-backfill", "Users-v2", "users-v3"]

    def test_by_status_and_strategy(self, store, populated):
        done, failed, open_plan = populated
        assert [p.id for p in store.find_by_status(PlanStatus.FAILED)] == [failed.id]
        assert [p.id for p in store.find_ready_to_execute()] == [open_plan.id]
        assert [p.id for p in store.find_by_strategy(Strategy.INCREMENTAL)] == [done.id]

    def test_name_search_is_case_insensitive(self, store, populated):
        assert {p.name for p in store.find_by_name_containing("USERS")} == {"Users-v2", "users-v3"}

    @pytest.mark.parametrize("fragment", ["s_v", "%", "\\"])
    def test_name_search_treats_wildcards_literally(self, store, populated, fragment):
        assert store.find_by_name_containing(fragment) == []

    def test_failed_older_than(self, store, populated):
        _, failed, _ = populated
        assert [p.id for p in store.find_failed_older_than(utc_now() + timedelta(seconds=1))] == [failed.id]
        assert store.find_failed_older_than(utc_now() - timedelta(days=1)) == []

    def test_last_completed(self, store, populated):
        done, _, _ = populated
        assert store.find_last_completed().id == done.id

    def test_statistics(self, store, populated):
        stats = store.status_statistics()
        assert stats["total_plans"] == 3
        assert stats["active_plans"] == 0
        assert stats["status_breakdown"]["completed"] == 1
        assert stats["status_breakdown"]["failed"] == 1
        assert stats["status_breakdown"]["planned"] == 1
        assert stats["strategy_breakdown"]["dual_write"] == 1
        assert store.has_active_migration() is False
