"""calbridge CLI: inspect sources, list events and search for free time."""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from calbridge.logging_config import setup_logging
from calbridge.modules.calendar.errors import CalendarError
from calbridge.modules.calendar.models import FindSlotsRequest, PreferredLocation, SourceId

app = typer.Typer(help="Multi-source calendar reconciliation CLI", no_args_is_help=True)
console = Console()

DATE_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"]


def _async_run(coro):
    """Run an async coroutine, reporting calendar errors instead of tracebacks."""
    try:
        return asyncio.run(coro)
    except CalendarError as exc:
        console.print(f"[red]✗ {exc}[/red]")
        raise typer.Exit(code=1) from exc


def _coordinator():
    from calbridge.modules.calendar.service import CalendarSourceCoordinator

    return CalendarSourceCoordinator()


def _mark(flag: bool) -> str:
    return "[green]✓[/green]" if flag else "[red]✗[/red]"


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override CALBRIDGE_LOG_LEVEL"),
    json_logs: Optional[bool] = typer.Option(None, "--json-logs/--console-logs", help="Log format on stderr"),
) -> None:
    """Configure logging before any command runs."""
    setup_logging(level=log_level, json_output=json_logs)


@app.command()
def health() -> None:
    """Check whether each calendar source is reachable."""

    async def _health():
        status = await _coordinator().health_check()
        console.print("\n[bold cyan]Calendar source health[/bold cyan]\n")
        console.print(f"  {_mark(status.os)} OS calendar")
        console.print(f"  {_mark(status.cloud)} Cloud calendar")
        console.print()

    _async_run(_health())


@app.command()
def sources() -> None:
    """Show which sources are enabled and which are available."""

    async def _sources():
        coordinator = _coordinator()
        detected = await coordinator.detect_available_sources()
        enabled = coordinator.get_enabled_sources()

        table = Table(title="Calendar Sources")
        table.add_column("Source", style="cyan")
        table.add_column("Enabled", style="white")
        table.add_column("Available", style="white")
        for source_id in SourceId:
            table.add_row(
                source_id.value,
                _mark(source_id in enabled),
                _mark(getattr(detected, source_id.value)),
            )
        console.print(table)

    _async_run(_sources())


@app.command()
def events(
    start: dt.datetime = typer.Argument(..., formats=DATE_FORMATS, help="Window start"),
    end: dt.datetime = typer.Argument(..., formats=DATE_FORMATS, help="Window end"),
    calendar: Optional[str] = typer.Option(None, "--calendar", "-c", help="Calendar id or name"),
) -> None:
    """List deduplicated events from every enabled source."""

    async def _events():
        found = await _coordinator().get_events(start, end, calendar)
        if not found:
            console.print("[yellow]No events in this window.[/yellow]")
            return

        table = Table(title=f"Events {start:%Y-%m-%d %H:%M} to {end:%Y-%m-%d %H:%M}")
        table.add_column("Start", style="cyan", no_wrap=True)
        table.add_column("End", style="cyan", no_wrap=True)
        table.add_column("Title", style="green")
        table.add_column("Type", style="yellow")
        table.add_column("Source", style="magenta")
        for event in sorted(found, key=lambda e: e.start.timestamp()):
            table.add_row(
                "all day" if event.is_all_day else f"{event.start:%Y-%m-%d %H:%M}",
                "" if event.is_all_day else f"{event.end:%Y-%m-%d %H:%M}",
                event.title,
                event.event_type.value,
                event.source.value,
            )
        console.print(table)
        console.print(f"\nTotal: {len(found)} events")

    _async_run(_events())


@app.command()
def slots(
    start: dt.datetime = typer.Argument(..., formats=DATE_FORMATS, help="Window start"),
    end: dt.datetime = typer.Argument(..., formats=DATE_FORMATS, help="Window end"),
    min_minutes: int = typer.Option(25, "--min", help="Minimum slot length in minutes"),
    max_minutes: int = typer.Option(480, "--max", help="Maximum slot length in minutes"),
    location: PreferredLocation = typer.Option(PreferredLocation.ANY, "--location", "-l", help="Preferred working location"),
) -> None:
    """Find free slots within working hours, best first."""

    async def _slots():
        request = FindSlotsRequest(
            start=start,
            end=end,
            min_duration_minutes=min_minutes,
            max_duration_minutes=max_minutes,
            preferred_working_location=location,
        )
        found = await _coordinator().find_available_slots(request)
        if not found:
            console.print("[yellow]No free slots found.[/yellow]")
            return

        table = Table(title="Available Slots")
        table.add_column("Start", style="cyan", no_wrap=True)
        table.add_column("End", style="cyan", no_wrap=True)
        table.add_column("Minutes", style="white", justify="right")
        table.add_column("Suitability", style="green")
        table.add_column("Location", style="yellow")
        table.add_column("Reason", style="dim")
        for slot in found:
            where = slot.working_location.type.value if slot.working_location else ""
            table.add_row(
                f"{slot.start:%a %Y-%m-%d %H:%M}",
                f"{slot.end:%H:%M}",
                str(slot.duration_minutes),
                slot.suitability.value,
                where,
                slot.reason,
            )
        console.print(table)

    _async_run(_slots())


@app.command()
def common(
    identities: list[str] = typer.Argument(..., help="Email addresses or calendar ids"),
    start: dt.datetime = typer.Option(..., "--start", formats=DATE_FORMATS, help="Window start"),
    end: dt.datetime = typer.Option(..., "--end", formats=DATE_FORMATS, help="Window end"),
    min_minutes: int = typer.Option(30, "--min", help="Minimum slot length in minutes"),
) -> None:
    """Find time when all the given people are free."""

    async def _common():
        result = await _coordinator().find_common_availability(identities, start, end, min_minutes)
        for participant in result.participants:
            if participant.error:
                console.print(f"[yellow]⚠ {participant.identity} excluded: {participant.error}[/yellow]")
        if not result.common_slots:
            console.print("[yellow]No common free time found.[/yellow]")
            return

        table = Table(title="Common Free Slots")
        table.add_column("Start", style="cyan", no_wrap=True)
        table.add_column("End", style="cyan", no_wrap=True)
        table.add_column("Minutes", style="white", justify="right")
        for slot in result.common_slots:
            table.add_row(f"{slot.start:%a %Y-%m-%d %H:%M}", f"{slot.end:%Y-%m-%d %H:%M}", str(slot.duration_minutes))
        console.print(table)

    _async_run(_common())


@app.command()
def version() -> None:
    """Show calbridge version."""
    from calbridge import __version__

    console.print(f"[bold cyan]calbridge[/bold cyan] version [green]{__version__}[/green]")


if __name__ == "__main__":
    app()
