from __future__ import annotations

from typing import Any, Iterable, Sequence

import typer

from app.schemas import HeatMapEntry
from services.pipeline import RunReport


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_report(report: RunReport) -> None:
    echo_heading("Heat Map Run")
    echo_key_values(
        [
            ("reading_count", report.reading_count),
            ("min_timestamp", report.min_timestamp.isoformat()),
            ("max_timestamp", report.max_timestamp.isoformat()),
            ("window_count", len(report.windows)),
            ("record_count", report.record_count),
            ("processing_ms", report.processing_ms),
        ]
    )

    typer.echo()
    echo_heading("Windows")
    if not report.windows:
        typer.echo("No full day in batch; nothing written.")
        return
    for result in report.windows:
        typer.echo(
            f"  - {result.window.start.date().isoformat()}: "
            f"{result.reading_count} reading(s) in {result.record_count} cell(s)"
        )


def render_entries(entries: Sequence[HeatMapEntry]) -> None:
    echo_heading("Heat Map")
    if not entries:
        typer.echo("No heat map rows stored.")
        return
    for entry in entries:
        typer.echo(
            f"  {entry.timestamp.date().isoformat()}  "
            f"{entry.latitude:.4f},{entry.longitude:.4f}  {entry.total_count}"
        )


def render_failure(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
