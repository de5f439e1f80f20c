"""
CLI interface for Refill Guard.

Provides command-line access to the dose log, the inventory and refill
reminders. The mutating commands and `check` are re-evaluation triggers:
they reschedule reminders into the notification outbox before exiting.
"""

import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from refill_guard.config.loader import (
    DEFAULT_CONFIG_PATH,
    SettingsState,
    load_settings,
    save_settings,
)
from refill_guard.core.doses import DailyProgress, adherence, start_of_day
from refill_guard.core.forecast import SupplyLevel
from refill_guard.core.inventory import InvalidPillCountError
from refill_guard.core.scheduler import ReminderScheduler, SchedulingReport
from refill_guard.core.tracker import MedicationTracker
from refill_guard.logger import setup_logger
from refill_guard.notify.base import NotifyError
from refill_guard.notify.outbox import OutboxNotifier
from refill_guard.storage.db import DEFAULT_DB_PATH
from refill_guard.storage.repository import InventoryRepository, StorageError

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

_COMMAND_ERRORS = (StorageError, NotifyError, ValueError, yaml.YAMLError)

_DATETIME_FORMATS = [
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
]

_LEVEL_STYLES = {
    SupplyLevel.CRITICAL: "red",
    SupplyLevel.LOW: "yellow",
    SupplyLevel.OK: "green",
}


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to the SQLite database"),
    config: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to the YAML settings file"),
    now: Optional[datetime] = typer.Option(
        None,
        "--now",
        help="Evaluate as if it were this time (ISO format)",
        formats=_DATETIME_FORMATS
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
    log_file: Optional[str] = typer.Option(None, "--log-file", help="Also write logs to this file"),
):
    """Refill Guard CLI."""
    setup_logger(logging.DEBUG if verbose else logging.WARNING, log_file)
    ctx.obj = {"db": db, "config": config, "now": now}
    if ctx.invoked_subcommand is None:
        console.print("Refill Guard - Use --help to see available commands")


def _now(ctx: typer.Context) -> datetime:
    return ctx.obj.get("now") or datetime.now()


def _settings(ctx: typer.Context) -> SettingsState:
    return load_settings(ctx.obj["config"], missing_ok=True)


def _build_tracker(ctx: typer.Context) -> MedicationTracker:
    db_path = ctx.obj["db"]
    notifier = OutboxNotifier(db_path)
    notifier.initialize_schema()
    return MedicationTracker(
        repository=InventoryRepository(db_path),
        scheduler=ReminderScheduler(notifier),
        settings=_settings(ctx)
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/] {message}", soft_wrap=True)
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def init(ctx: typer.Context):
    """Initialize the database and write a default settings file if missing."""
    try:
        InventoryRepository(ctx.obj["db"]).initialize_schema()
        OutboxNotifier(ctx.obj["db"]).initialize_schema()
        if not Path(ctx.obj["config"]).exists():
            save_settings(SettingsState(), ctx.obj["config"])
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(ctx: typer.Context):
    """Show inventory, forecast and refill status."""
    try:
        tracker = _build_tracker(ctx)
        now = _now(ctx)
        progress = tracker.today(now)
    except _COMMAND_ERRORS as e:
        _fail(str(e))
    _display_status(tracker, progress, now)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def take(
    ctx: typer.Context,
    at: Optional[datetime] = typer.Option(
        None,
        "--at",
        help="When the dose was taken, if not just now",
        formats=_DATETIME_FORMATS
    ),
):
    """Log one dose taken."""
    now = _now(ctx)
    try:
        tracker = _build_tracker(ctx)
        result = tracker.take_dose(now, taken_at=at)
        progress = tracker.today(now)
    except _COMMAND_ERRORS as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Dose logged at {result.dose.timestamp:%Y-%m-%d %H:%M}")
    if not result.changed:
        console.print("[yellow]Inventory is already empty[/]")
    console.print(f"Pills remaining: [bold]{result.state.current_pill_count}[/]")
    _display_progress(progress)
    _display_report(result.report)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def undo(ctx: typer.Context):
    """Undo the last dose if it was logged in the last few minutes."""
    now = _now(ctx)
    try:
        tracker = _build_tracker(ctx)
        result = tracker.undo_last_dose(now)
        progress = tracker.today(now)
    except _COMMAND_ERRORS as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Removed dose logged at {result.dose.timestamp:%Y-%m-%d %H:%M}")
    console.print(f"Pills remaining: [bold]{result.state.current_pill_count}[/]")
    _display_progress(progress)
    _display_report(result.report)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def history(
    ctx: typer.Context,
    days: int = typer.Option(7, "--days", "-d", min=1, help="Number of days to show"),
):
    """Show doses per day against the daily target."""
    now = _now(ctx)
    try:
        tracker = _build_tracker(ctx)
        day_history = tracker.dose_history(since=start_of_day(now) - timedelta(days=days - 1))
    except _COMMAND_ERRORS as e:
        _fail(str(e))

    if not day_history:
        console.print("[dim]No doses logged[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Dose History")
    table.add_column("Date", no_wrap=True)
    table.add_column("Doses", justify="right")
    table.add_column("Times")
    table.add_column("Target")
    for day in day_history:
        times = ", ".join(f"{dose.timestamp:%H:%M}" for dose in day.doses)
        met = "[green]met[/]" if day.on_target else "[yellow]missed[/]"
        table.add_row(f"{day.day:%Y-%m-%d}", f"{day.count}/{day.target}", times, met)
    console.print(table)

    summary = adherence(day_history)
    console.print(
        f"Days on target: {summary.days_on_target}/{summary.total_days} ({summary.percentage}%)"
    )
    sys.exit(EXIT_CODE_PASS)


@app.command()
def request(ctx: typer.Context):
    """Log that a refill was requested."""
    try:
        tracker = _build_tracker(ctx)
        result = tracker.request_refill(_now(ctx))
    except _COMMAND_ERRORS as e:
        _fail(str(e))
    if result.changed:
        console.print("[green]✓[/] Refill request logged")
    else:
        console.print(
            f"[yellow]Refill already requested on {result.state.refill_request_date:%Y-%m-%d}[/]"
        )
    _display_report(result.report)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def receive(
    ctx: typer.Context,
    count: int = typer.Argument(..., help="Total number of pills on hand after the refill"),
):
    """Log a received refill with the resulting pill count."""
    try:
        tracker = _build_tracker(ctx)
        result = tracker.receive_refill(count, _now(ctx))
    except InvalidPillCountError as e:
        _fail(f"{e}. Enter the number of pills you received.")
    except _COMMAND_ERRORS as e:
        _fail(str(e))
    console.print(f"[green]✓[/] Refill logged: {result.state.current_pill_count} pills")
    _display_report(result.report)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def check(ctx: typer.Context):
    """Re-evaluate reminders and update the notification outbox."""
    try:
        tracker = _build_tracker(ctx)
        result = tracker.evaluate(_now(ctx))
    except _COMMAND_ERRORS as e:
        _fail(str(e))
    _display_report(result.report)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def pending(ctx: typer.Context):
    """List notifications waiting in the outbox."""
    try:
        specs = OutboxNotifier(ctx.obj["db"]).pending()
    except NotifyError as e:
        _fail(str(e))
    if not specs:
        console.print("[dim]No pending reminders[/]")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Pending Reminders")
    table.add_column("Key", no_wrap=True)
    table.add_column("Fires at", no_wrap=True)
    table.add_column("Title")
    table.add_column("Message")
    for spec in specs:
        table.add_row(spec.key, f"{spec.fire_at:%Y-%m-%d %H:%M}", spec.title, spec.body)
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Reset the inventory and refill history to the zero state."""
    if not yes and not typer.confirm("Delete all inventory data and refill history?"):
        console.print("Aborted")
        sys.exit(EXIT_CODE_PASS)
    try:
        _build_tracker(ctx).reset()
    except _COMMAND_ERRORS as e:
        _fail(str(e))
    console.print("[green]✓[/] Inventory reset")
    sys.exit(EXIT_CODE_PASS)


def _display_progress(progress: DailyProgress) -> None:
    line = f"Pills taken today: [bold]{progress.taken}/{progress.target}[/]"
    if progress.extra:
        line += f" [yellow](extra: {progress.extra})[/]"
    elif progress.on_target:
        line += " [green](all taken)[/]"
    console.print(line)


def _display_status(tracker: MedicationTracker, progress: DailyProgress, now: datetime) -> None:
    """Display today's doses, inventory and forecast in a compact summary."""
    state = tracker.state
    forecast = tracker.forecast(now)
    style = _LEVEL_STYLES[forecast.supply_level]

    console.print("\n[bold]Medication Inventory[/bold]")
    console.print("-" * 40)
    _display_progress(progress)
    console.print(f"Pills on hand: [bold]{state.current_pill_count}[/]")
    console.print(f"Daily usage: {state.daily_usage_rate:g} pills/day")
    console.print(f"Days remaining: [{style}]{forecast.days_remaining}[/] ({forecast.supply_level.value})")
    console.print(f"Estimated depletion: {forecast.depletion_date:%Y-%m-%d}")
    console.print(f"Supply left since last refill: {forecast.supply_progress:.0%}")

    last_received = state.last_received_event
    if last_received is not None:
        console.print(f"Last refill: {last_received.timestamp:%Y-%m-%d}")
    else:
        console.print("Last refill: [dim]none recorded[/]")

    if state.is_waiting_for_refill:
        console.print(f"[yellow]Refill requested on {state.refill_request_date:%Y-%m-%d}[/]")

    events = state.events_by_time()[:5]
    if events:
        table = Table(title="Recent Refill History")
        table.add_column("Date")
        table.add_column("Event")
        table.add_column("Pills", justify="right")
        for event in events:
            pills = str(event.pill_count) if event.pill_count is not None else "-"
            table.add_row(f"{event.timestamp:%Y-%m-%d %H:%M}", event.kind.value, pills)
        console.print(table)


def _display_report(report: SchedulingReport) -> None:
    for spec in report.scheduled:
        console.print(
            f"[bold]Reminder:[/bold] {spec.key} at {spec.fire_at:%Y-%m-%d %H:%M} - {spec.body}",
            soft_wrap=True
        )
    for key, message in report.failures.items():
        console.print(f"[yellow]Could not update {key}:[/] {message}", soft_wrap=True)


if __name__ == "__main__":
    app()
