"""
CLI utility helpers: output formatting and service wiring.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from migration_spine.core.logging import configure_logging
from migration_spine.core.settings import MigrationSettings, get_settings
from migration_spine.ops.context import OperationContext
from migration_spine.ops.result import OperationResult
from migration_spine.ops.service import MigrationService

console = Console()
err_console = Console(stderr=True)

# Columns shown when a list of plans is rendered as a table.
PLAN_COLUMNS = ("id", "name", "strategy", "status", "progress_percentage", "created_at")


# ── Service helper ───────────────────────────────────────────────────────


def load_settings(database: str | None = None, target: str | None = None) -> MigrationSettings:
    """Settings from the environment, with ``--database``/``--target`` applied.

    A ``--database`` URL always selects the SQL store, since an in-memory
    store does not outlive one command.
    """
    settings = get_settings()
    update: dict[str, Any] = {}
    if database:
        update.update(store_backend="sql", database_url=database)
    if target:
        update["target_database"] = target
    return settings.model_copy(update=update) if update else settings


def make_context(
    database: str | None = None,
    *,
    target: str | None = None,
) -> tuple[OperationContext, MigrationService]:
    """Create an ``OperationContext`` + service pair for CLI commands."""
    settings = load_settings(database, target)
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    service = MigrationService.from_settings(settings)
    return OperationContext(service=service, caller="cli"), service


# ── Output helpers ───────────────────────────────────────────────────────


def output_result(
    result: OperationResult[Any],
    *,
    as_json: bool = False,
    title: str = "",
    columns: tuple[str, ...] | None = None,
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        err = result.error
        msg = err.message if err else "Unknown error"
        code = err.code if err else "ERROR"
        err_console.print(f"[bold red]Error[/bold red] ({code}): {escape(msg)}")
        for violation in (err.details.get("violations", []) if err else []):
            err_console.print(f"  - {escape(violation)}")
        raise typer.Exit(code=1)

    data = result.data

    if as_json:
        console.print_json(json.dumps(data, default=str))
        return

    if data is None:
        return
    if isinstance(data, list):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(data, title=title, columns=columns)
    else:
        _print_dict(data, title=title)


# ── Private helpers ──────────────────────────────────────────────────────


def _print_table(
    items: list[dict[str, Any]], *, title: str = "", columns: tuple[str, ...] | None = None
) -> None:
    """Render a list of dicts as a Rich table."""
    cols = columns or tuple(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in cols:
        table.add_column(col, overflow="fold")
    for item in items:
        table.add_row(*(_cell(item.get(c)) for c in cols))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, list):
            console.print(f"  [cyan]{k}[/cyan]: {len(v)} item(s)")
        else:
            console.print(f"  [cyan]{k}[/cyan]: {_cell(v)}")


def _cell(value: Any) -> str:
    return "" if value is None else escape(str(value))
