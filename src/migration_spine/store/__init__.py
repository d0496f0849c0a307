"""Plan persistence: the store contract and its in-memory and SQLAlchemy backends."""

from migration_spine.core.settings import MigrationSettings
from migration_spine.store.base import PlanStore
from migration_spine.store.memory import InMemoryPlanStore
from migration_spine.store.sql import SqlPlanStore, create_store_engine


def create_store(settings: MigrationSettings) -> PlanStore:
    """Build the store selected by ``settings.store_backend``."""
    if settings.uses_sql_store:
        return SqlPlanStore(settings.database_url)
    return InMemoryPlanStore()


__all__ = [
    "PlanStore",
    "InMemoryPlanStore",
    "SqlPlanStore",
    "create_store",
    "create_store_engine",
]
