"""Tests for ``migration_spine.core.settings``."""

from __future__ import annotations

import pytest
from pydantic import ValidationError as PydanticValidationError

from migration_spine.core.settings import MigrationSettings


class TestMigrationSettings:
    def test_defaults(self, monkeypatch):
        for key in ("MIGRATION_STORE_BACKEND", "MIGRATION_EXECUTOR_WORKERS"):
            monkeypatch.delenv(key, raising=False)
        settings = MigrationSettings(_env_file=None)
        assert settings.store_backend == "memory"
        assert settings.uses_sql_store is False
        assert settings.pre_validation_default is True
        assert settings.api_prefix == "/api/v1"

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("MIGRATION_STORE_BACKEND", "sql")
        monkeypatch.setenv("MIGRATION_DATABASE_URL", "sqlite:///tmp/plans.db")
        monkeypatch.setenv("MIGRATION_EXECUTOR_WORKERS", "4")
        settings = MigrationSettings(_env_file=None)
        assert settings.uses_sql_store is True
        assert settings.database_url == "sqlite:///tmp/plans.db"
        assert settings.executor_workers == 4

    def test_log_level_upper_cased(self):
        assert MigrationSettings(_env_file=None, log_level="debug").log_level == "DEBUG"

    @pytest.mark.parametrize("field", ["executor_workers", "plan_timeout_seconds"])
    def test_rejects_non_positive(self, field):
        with pytest.raises(PydanticValidationError):
            MigrationSettings(_env_file=None, **{field: 0})

    def test_rejects_unknown_backend(self):
        with pytest.raises(PydanticValidationError):
            MigrationSettings(_env_file=None, store_backend="redis")
