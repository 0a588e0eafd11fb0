"""
CLI: ``cadence schedule`` - run, work, list and test scheduled tasks.

Run one tick from system cron::

    * * * * * cd /srv/app && cadence schedule run --schedule app.schedule:register
"""

from __future__ import annotations

import time

import typer

from cadence.cli.utils import console, fail, load_schedule, print_json, print_table
from cadence.core.errors import ConfigError
from cadence.core.settings import get_settings
from cadence.scheduling import DispatchOutcome, SchedulerService, ThreadSchedulerBackend, create_scheduler

app = typer.Typer(no_args_is_help=True)

SCHEDULE_OPTION = typer.Option(
    None, "--schedule", "-s", help="Schedule module as package.module:function (CADENCE_SCHEDULE_MODULE)."
)


def _build(schedule: str | None) -> SchedulerService:
    settings = get_settings()
    try:
        registry, commands = load_schedule(schedule, settings)
    except ConfigError as exc:
        raise fail(exc.message, code=2) from exc
    return create_scheduler(registry, commands, settings=settings)


def _run_failed(outcome: DispatchOutcome) -> bool:
    if outcome.failed:
        return True
    if outcome.future is not None:
        try:
            return not outcome.future.result().succeeded
        except Exception:
            return True
    return False


def _state_label(outcome: DispatchOutcome) -> str:
    if outcome.future is not None:
        return "failed" if _run_failed(outcome) else "succeeded"
    return outcome.state.value


@app.command("run")
def run(schedule: str | None = SCHEDULE_OPTION) -> None:
    """Evaluate the schedule once and run every due task."""
    service = _build(schedule)
    outcomes = service.run_due()
    # a one-shot process waits for its background runs
    service.dispatcher.shutdown(wait=True)

    if not outcomes:
        console.print("[dim]No scheduled tasks are due.[/dim]")
        return

    for outcome in outcomes:
        label = _state_label(outcome)
        suffix = f" ({outcome.reason})" if outcome.reason else ""
        console.print(f"{outcome.task_name}: {label}{suffix}")

    if any(_run_failed(o) for o in outcomes):
        raise typer.Exit(code=1)


@app.command("work")
def work(
    schedule: str | None = SCHEDULE_OPTION,
    align: bool = typer.Option(True, "--align/--no-align", help="Tick on minute boundaries."),
) -> None:
    """Run the scheduler in the foreground until interrupted."""
    service = _build(schedule)
    service.backend = ThreadSchedulerBackend(align_to_minute=align)
    service.start()
    console.print(f"Scheduler running with {len(service.registry)} task(s). Press Ctrl+C to stop.")
    try:
        while service.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        console.print("Stopping scheduler...")
    finally:
        service.stop(wait=True)


@app.command("list")
def list_tasks(
    schedule: str | None = SCHEDULE_OPTION,
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the registered tasks in registration order."""
    service = _build(schedule)
    rows = [definition.summary() for definition in service.registry]
    if json_out:
        print_json(rows)
        return
    for row in rows:
        flags = [
            flag
            for flag, on in (
                ("no-overlap", row["without_overlapping"]),
                ("background", row["run_in_background"]),
                ("maintenance", row["even_in_maintenance_mode"]),
            )
            if on
        ]
        row["flags"] = ", ".join(flags)
    print_table(
        rows,
        [
            ("name", "Task"),
            ("frequency", "Frequency"),
            ("expression", "Cron"),
            ("window", "Window"),
            ("days", "Days"),
            ("flags", "Flags"),
            ("description", "Description"),
        ],
        title="Scheduled tasks",
    )


@app.command("test")
def test_task(
    name: str = typer.Argument(..., help="Task name"),
    schedule: str | None = SCHEDULE_OPTION,
) -> None:
    """Run one task now, ignoring its frequency."""
    service = _build(schedule)
    try:
        outcome = service.trigger(name)
    except KeyError as exc:
        raise fail(f"No scheduled task named {name!r}") from exc

    result = outcome.wait()
    service.dispatcher.shutdown(wait=True)

    if outcome.skipped:
        console.print(f"{name}: skipped ({outcome.reason})")
        return
    if result is not None and result.stdout:
        typer.echo(result.stdout, nl=not result.stdout.endswith("\n"))
    if result is not None:
        console.print(f"{name}: {result.status.value} in {result.duration_seconds:.2f}s")
    if outcome.failed or (result is not None and not result.succeeded):
        message = outcome.error.message if outcome.error else (result.error if result else "failed")
        raise fail(message)
