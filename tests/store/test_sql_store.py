"""SQLAlchemy-specific tests for ``migration_spine.store.sql``."""

from __future__ import annotations

import pytest
from sqlalchemy import text

from conftest import data_step, make_plan
from migration_spine.core.errors import StoreError
from migration_spine.core.settings import MigrationSettings
from migration_spine.domain.enums import PlanStatus
from migration_spine.store import create_store
from migration_spine.store.memory import InMemoryPlanStore
from migration_spine.store.sql import SqlPlanStore


class TestSqlPlanStore:
    def test_survives_reopen(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'plans.db'}"
        first = SqlPlanStore(url)
        plan = first.insert_exclusive(make_plan(data_step(rollback="DELETE FROM users_v2")))
        first.transition(plan.id, lambda p: p.start(continue_on_errors=True))
        first.dispose()

        reopened = SqlPlanStore(url)
        loaded = reopened.get(plan.id)
        assert loaded.status == PlanStatus.RUNNING
        assert loaded.continue_on_errors is True
        assert loaded.steps[0].rollback_script == "DELETE FROM users_v2"
        assert loaded.created_at.tzinfo is not None
        assert reopened.slot_holder() == plan.id
        reopened.dispose()

    def test_in_memory_url_shares_one_connection(self):
        store = SqlPlanStore("sqlite://")
        plan = store.insert_exclusive(make_plan())
        assert store.get(plan.id).id == plan.id
        store.dispose()

    def test_database_errors_become_store_errors(self, tmp_path):
        store = SqlPlanStore(f"sqlite:///{tmp_path / 'plans.db'}")
        with store.engine.begin() as conn:
            conn.execute(text("DROP TABLE migration_plans"))
        with pytest.raises(StoreError) as exc_info:
            store.find_all()
        assert exc_info.value.retryable is True
        store.dispose()


class TestCreateStore:
    def test_memory_by_default(self):
        assert isinstance(create_store(MigrationSettings(_env_file=None)), InMemoryPlanStore)

    def test_sql_backend(self, tmp_path):
        settings = MigrationSettings(
            _env_file=None, store_backend="sql", database_url=f"sqlite:///{tmp_path / 's.db'}"
        )
        store = create_store(settings)
        assert isinstance(store, SqlPlanStore)
        store.dispose()
