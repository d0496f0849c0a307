"""
CLI ``migration-spine serve``: start the API server.
"""

from __future__ import annotations

import typer
import uvicorn

from migration_spine.cli.utils import console

app = typer.Typer(no_args_is_help=True)


@app.command("start")
def start(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Bind port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on changes"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the migration-spine REST API server.

    Plans run in-process, so the server always uses a single worker.
    """
    console.print(f"[bold green]Starting migration-spine API[/bold green] on {host}:{port}")
    uvicorn.run(
        "migration_spine.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=1,
        log_level=log_level,
    )
