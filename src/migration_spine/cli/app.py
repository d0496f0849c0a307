"""
Root Typer application for the migration-spine CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from migration_spine import __version__

app = Typer(
    name="migration-spine",
    help="migration-spine: plan, validate and execute data migrations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"migration-spine {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """migration-spine CLI: manage and run migration plans."""


# ── Sub-command registration ─────────────────────────────────────────────

from migration_spine.cli.plans import app as plans_app  # noqa: E402
from migration_spine.cli.serve import app as serve_app  # noqa: E402

app.add_typer(plans_app, name="plans", help="Migration plan management.")
app.add_typer(serve_app, name="serve", help="Start the API server.")
