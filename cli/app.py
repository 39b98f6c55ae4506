from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from cli.render import render_entries, render_failure, render_report
from datastore.heatmap_table import HeatMapTable
from services.errors import EmptyInputError, SinkWriteError
from services.ingest import parse_readings
from services.intervals import IntervalPlanner
from services.pipeline import HeatMapPipeline
from settings import get_settings


@dataclass
class CLIState:
    table: HeatMapTable
    timezone: str


app = typer.Typer(
    help="Build and inspect daily grid-cell heat maps from reading batches.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    table_path: Optional[Path] = typer.Option(
        None,
        "--table",
        "-t",
        help="Heat map JSON table (defaults to HEATMAP_PERSISTENCE_PATH).",
    ),
    timezone_name: Optional[str] = typer.Option(
        None,
        "--timezone",
        help="IANA time zone that defines midnight (defaults to HEATMAP_TIMEZONE).",
    ),
) -> None:
    """Entry point for the CLI."""
    settings = get_settings()
    path = table_path
    if path is None and settings.table_persistence_path:
        path = Path(settings.table_persistence_path)
    ctx.obj = CLIState(
        table=HeatMapTable(name=settings.table_name, persistence_path=path),
        timezone=timezone_name or settings.timezone,
    )


@app.command("run")
def run_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="CSV batch of readings."),
) -> None:
    """Build the heat map for a CSV batch and store it in the table."""
    state = _get_state(ctx)
    settings = get_settings()
    try:
        planner = IntervalPlanner(state.timezone)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--timezone") from exc

    with file.open("r", encoding="utf-8", newline="") as handle:
        try:
            parsed = parse_readings(handle, source=file.name)
        except ValueError as exc:
            render_failure(str(exc))
            raise typer.Exit(code=1) from exc

    if parsed.errors:
        typer.secho(f"Skipped {len(parsed.errors)} invalid row(s).", fg=typer.colors.YELLOW)

    pipeline = HeatMapPipeline(
        sink=state.table,
        planner=planner,
        workers=settings.pipeline_workers,
        partition_size=settings.partition_size,
    )
    try:
        report = pipeline.run(parsed.readings, run_id=file.name)
    except (EmptyInputError, SinkWriteError) as exc:
        render_failure(str(exc))
        raise typer.Exit(code=1) from exc
    render_report(report)


@app.command("show")
def show_command(
    ctx: typer.Context,
    day: Optional[datetime] = typer.Option(
        None,
        "--day",
        formats=["%Y-%m-%d"],
        help="Only show the window starting on this day.",
    ),
) -> None:
    """Print stored heat map rows."""
    state = _get_state(ctx)
    render_entries(state.table.query(day=day.date() if day else None))
