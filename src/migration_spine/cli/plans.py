"""
CLI ``migration-spine plans``: create, execute and inspect plans.
"""

from __future__ import annotations

from pathlib import Path

import typer

from migration_spine.cli.utils import PLAN_COLUMNS, console, make_context, output_result
from migration_spine.ops import plans as ops
from migration_spine.ops.requests import ExecutePlanRequest, ListPlansRequest

app = typer.Typer(no_args_is_help=True)

STEP_RUN_COLUMNS = ("order", "step_name", "kind", "status", "processed_records", "error")

DatabaseOpt = typer.Option(None, "--database", "-d", help="Plan store URL (selects the SQL store)")
JsonOpt = typer.Option(False, "--json", help="Print JSON instead of tables")


@app.command("create")
def create_plan(
    path: Path = typer.Argument(..., help="YAML plan definition"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Create a plan from a YAML definition file."""
    ctx, _ = make_context(database)
    result = ops.create_plan_from_file(ctx, str(path))
    if result.success and not json_out:
        console.print(f"[green]Created[/green] plan {result.data['id']} ({result.data['name']})")
        return
    output_result(result, as_json=json_out)


@app.command("list")
def list_plans(
    status: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
    strategy: str | None = typer.Option(None, "--strategy", help="Filter by strategy"),
    name: str | None = typer.Option(None, "--name", "-n", help="Name fragment"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """List plans."""
    ctx, _ = make_context(database)
    request = ListPlansRequest(status=status, strategy=strategy, name_contains=name)
    output_result(ops.list_plans(ctx, request), as_json=json_out, title="Plans", columns=PLAN_COLUMNS)


@app.command("active")
def list_active(database: str | None = DatabaseOpt, json_out: bool = JsonOpt) -> None:
    """List running or rolling-back plans."""
    ctx, _ = make_context(database)
    output_result(ops.list_active(ctx), as_json=json_out, title="Active plans", columns=PLAN_COLUMNS)


@app.command("show")
def show_plan(
    plan_id: str = typer.Argument(..., help="Plan id"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Show a plan and the state of each step."""
    ctx, _ = make_context(database)
    result = ops.get_plan(ctx, plan_id)
    output_result(result, as_json=json_out, title=f"Plan: {plan_id}")
    if not json_out and result.data:
        output_result(
            ops.get_step_metrics(ctx, plan_id),
            title="Steps",
            columns=STEP_RUN_COLUMNS,
        )


@app.command("execute")
def execute_plan(
    plan_id: str = typer.Argument(..., help="Plan id"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Record mutations instead of applying them"),
    pre_validation: bool = typer.Option(
        True, "--pre-validation/--no-pre-validation", help="Validate against the target first"
    ),
    continue_on_errors: bool = typer.Option(
        False, "--continue-on-errors", help="Keep going after a failed step"
    ),
    wait: bool = typer.Option(True, "--wait/--no-wait", help="Block until the run finishes"),
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds to wait before cancelling the run"),
    target: str | None = typer.Option(None, "--target", "-t", help="Target SQLite database"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Execute a planned plan."""
    ctx, service = make_context(database, target=target)
    request = ExecutePlanRequest(
        plan_id=plan_id,
        dry_run=dry_run,
        pre_validation=pre_validation,
        continue_on_errors=continue_on_errors,
    )
    started = ops.execute_plan(ctx, request)
    if not started.success or not wait:
        output_result(started, as_json=json_out, title="Execution started")
        return

    result = ops.wait_for_plan(ctx, plan_id, timeout)
    service.shutdown(wait=False)
    output_result(result, as_json=json_out, title="Execution summary")
    if result.data and result.data["status"] == "failed":
        raise typer.Exit(code=2)


@app.command("cancel")
def cancel_plan(
    plan_id: str = typer.Argument(..., help="Plan id"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Request cancellation of a plan running in this process."""
    ctx, _ = make_context(database)
    output_result(ops.cancel_plan(ctx, plan_id), as_json=json_out, title="Cancel")


@app.command("summary")
def plan_summary(
    plan_id: str = typer.Argument(..., help="Plan id"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Show the execution summary of a plan."""
    ctx, _ = make_context(database)
    output_result(ops.get_summary(ctx, plan_id), as_json=json_out, title="Execution summary")


@app.command("metrics")
def plan_metrics(
    plan_id: str = typer.Argument(..., help="Plan id"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Show per-step metrics of a plan."""
    ctx, _ = make_context(database)
    output_result(ops.get_step_metrics(ctx, plan_id), as_json=json_out, title="Step metrics")


@app.command("events")
def plan_events(
    plan_id: str = typer.Argument(..., help="Plan id"),
    database: str | None = DatabaseOpt,
    json_out: bool = JsonOpt,
) -> None:
    """Show the lifecycle history of a plan."""
    ctx, _ = make_context(database)
    output_result(
        ops.get_events(ctx, plan_id),
        as_json=json_out,
        title="Events",
        columns=("timestamp", "event_type", "data"),
    )


@app.command("delete")
def delete_plan(
    plan_id: str = typer.Argument(..., help="Plan id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    database: str | None = DatabaseOpt,
) -> None:
    """Delete a plan that is not running."""
    if not yes:
        typer.confirm(f"Delete plan {plan_id}?", abort=True)
    ctx, _ = make_context(database)
    output_result(ops.delete_plan(ctx, plan_id))
    console.print(f"[green]Deleted[/green] plan {plan_id}")


@app.command("stats")
def plan_stats(database: str | None = DatabaseOpt, json_out: bool = JsonOpt) -> None:
    """Plan counts by status and strategy."""
    ctx, _ = make_context(database)
    output_result(ops.get_statistics(ctx), as_json=json_out, title="Plan statistics")
