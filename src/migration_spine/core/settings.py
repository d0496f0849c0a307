"""Settings for migration-spine.

All values are read from ``MIGRATION_``-prefixed environment variables or
a ``.env`` file, falling back to the defaults below.

Fields
──────
store_backend          : ``memory`` (process-local) or ``sql`` (SQLAlchemy)
database_url           : SQLAlchemy URL of the plan store
target_database        : SQLite file the reference script runner mutates
executor_workers       : Worker threads running plans in the background
plan_timeout_seconds   : Optional wall-clock limit per plan run
pre_validation_default : Whether ``execute`` pre-validates unless told otherwise

Examples:
    >>> settings = MigrationSettings(store_backend="sql", database_url="sqlite:///plans.db")
    >>> settings.uses_sql_store
    True

Tags:
    settings, configuration, pydantic, environment, migration-spine
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MigrationSettings(BaseSettings):
    """Process-wide configuration.

    Order of precedence (highest → lowest):
        1. Environment variables (``MIGRATION_STORE_BACKEND``, etc.)
        2. ``.env`` file
        3. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="MIGRATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Store ────────────────────────────────────────────────────────────
    store_backend: Literal["memory", "sql"] = Field(
        default="memory", description="Plan store implementation"
    )
    database_url: str = Field(
        default="sqlite:///migration_spine.db",
        description="SQLAlchemy-style URL for the sql plan store",
    )

    # ── Execution ────────────────────────────────────────────────────────
    target_database: str = Field(
        default="migration_target.db",
        description="SQLite database the reference script runner operates on",
    )
    executor_workers: int = Field(default=2, ge=1, description="Background worker threads")
    plan_timeout_seconds: float | None = Field(
        default=None, gt=0, description="Fail a running plan after this many seconds"
    )
    pre_validation_default: bool = Field(
        default=True, description="Pre-validate before execution unless the request says otherwise"
    )

    # ── Observability ────────────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool | None = Field(
        default=None, description="JSON logs; None auto-detects from the terminal"
    )

    # ── API ──────────────────────────────────────────────────────────────
    api_prefix: str = Field(default="/api/v1", description="URL prefix for all endpoints")
    api_title: str = Field(default="migration-spine API", description="OpenAPI title")
    api_version: str = Field(default="0.1.0", description="OpenAPI version string")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def uses_sql_store(self) -> bool:
        return self.store_backend == "sql"


@lru_cache(maxsize=1)
def get_settings() -> MigrationSettings:
    """Cached settings: loaded once per process."""
    return MigrationSettings()
