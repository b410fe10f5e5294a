"""Terminal rendering of run outcomes on the shared rich console."""

from typing import Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from shardsweep.errors import InconsistencyError
from shardsweep.logging import console as default_console
from shardsweep.models import InconsistencyReport


def print_inconsistencies(error: InconsistencyError, console: Optional[Console] = None) -> None:
    """Print the FAIL report: one line per node (or node pair) that still disagrees."""
    console = console or default_console
    body = "\n".join(report.format() for report in error.reports) or "(no reports)"
    console.print(Panel(
        body,
        title=f"[bold red]FAIL: INCONSISTENCIES AFTER {error.attempts} ATTEMPTS[/bold red]",
        border_style="red",
    ))


def print_fatal(error: BaseException, console: Optional[Console] = None) -> None:
    console = console or default_console
    console.print(Panel(
        f"{type(error).__name__}: {error}",
        title="[bold red]ABORTED[/bold red]",
        border_style="red",
    ))


def print_reports(reports: Sequence[InconsistencyReport], console: Optional[Console] = None) -> None:
    """Print audit findings, or a green all-clear."""
    console = console or default_console
    if not reports:
        console.print("[green]All nodes consistent[/green]")
        return
    for report in reports:
        console.print(f"[red]{report.format()}[/red]")


def print_summary(summary, console: Optional[Console] = None) -> None:
    """Print the run summary table (a ``RunSummary``)."""
    console = console or default_console
    table = Table(title="Run summary", show_header=False)
    table.add_column("metric")
    table.add_column("value", justify="right")
    table.add_row("Rounds completed", str(summary.rounds_completed))
    table.add_row("Transfers completed", str(summary.transfers_completed))
    table.add_row("Transfers rejected", str(summary.transfers_rejected))
    table.add_row("Optimizer cancels", str(summary.optimizer_cancels))
    console.print(table)
