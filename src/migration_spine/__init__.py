"""
migration-spine: plan, validate and execute data migrations.

Layers:
- migration_spine.core: errors, logging, settings, ids
- migration_spine.domain: plans, steps, validation rules, YAML loader
- migration_spine.store: plan persistence (in-memory and SQLAlchemy)
- migration_spine.execution: validator, executor, dry-run recorder, metrics
- migration_spine.ops: the service and transport-agnostic operations
- migration_spine.api / migration_spine.cli: REST and command-line surfaces
"""

__version__ = "0.1.0"

from migration_spine.core import *  # noqa
from migration_spine.domain import *  # noqa
from migration_spine.ops.service import MigrationService  # noqa: E402
