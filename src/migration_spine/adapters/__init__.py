"""Concrete collaborators for the execution ports."""

from migration_spine.adapters.sqlite_target import SqliteTarget

__all__ = ["SqliteTarget"]
