"""
Root Typer application for the Cadence CLI.
"""

from __future__ import annotations

import typer
from pydantic import ValidationError
from typer import Typer

from cadence.core.logging import configure_from_settings
from cadence.core.settings import get_settings

app = Typer(
    name="cadence",
    help="cadence - in-process periodic task scheduler.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from cadence import __version__

        typer.echo(f"cadence {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Override CADENCE_LOG_LEVEL."),
    json_logs: bool | None = typer.Option(None, "--json-logs/--console-logs", help="Log renderer."),
) -> None:
    """cadence CLI - run, inspect and test scheduled tasks."""
    try:
        settings = get_settings()
    except ValidationError as exc:
        typer.echo(f"Invalid configuration:\n{exc}", err=True)
        raise typer.Exit(code=2) from exc

    try:
        configure_from_settings(settings, level=log_level, json_format=json_logs)
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from exc


# ── Sub-command registration ─────────────────────────────────────────────

from cadence.cli.schedule import app as sched_app  # noqa: E402

app.add_typer(sched_app, name="schedule", help="Run and inspect the task schedule.")
