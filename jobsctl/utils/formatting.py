"""Rich Formatting Utilities for CLI Output"""

from typing import Any

from rich import box
from rich.console import Console
from rich.table import Table

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "cyan",
    "completed": "green",
    "failed": "red",
    "retry": "magenta",
    "cancelled": "dim",
}


def print_success(message: str):
    """Print success message with green styling"""
    console.print(f"[green]✓ {message}[/green]")


def print_error(message: str):
    """Print error message with red styling"""
    console.print(f"[red]✗ {message}[/red]")


def print_warning(message: str):
    """Print warning message with yellow styling"""
    console.print(f"[yellow]⚠ {message}[/yellow]")


def print_info(message: str):
    """Print info message with blue styling"""
    console.print(f"[blue]ℹ {message}[/blue]")


def create_stats_table(stats: dict[str, Any]) -> Table:
    """Create a table of job counts per status"""
    table = Table(title="Job Statistics", box=box.ROUNDED)

    table.add_column("Status", justify="left", style="bold")
    table.add_column("Count", justify="right")

    for status, style in STATUS_STYLES.items():
        table.add_row(f"[{style}]{status}[/{style}]", str(stats.get(status, 0)))
    table.add_row("[bold]total[/bold]", f"[bold]{stats.get('total', 0)}[/bold]")

    return table


def create_jobs_table(jobs: list[dict[str, Any]]) -> Table:
    """Create a table of recent jobs"""
    table = Table(title="Recent Jobs", box=box.ROUNDED)

    table.add_column("ID", justify="left", style="cyan", no_wrap=True)
    table.add_column("Type", justify="left", style="magenta")
    table.add_column("Status", justify="center")
    table.add_column("Attempts", justify="center")
    table.add_column("Created", justify="left")
    table.add_column("Error", justify="left", style="red")

    for job in jobs:
        status = job.get("status", "")
        style = STATUS_STYLES.get(status, "white")
        table.add_row(
            str(job.get("id", ""))[:8],
            job.get("job_type", ""),
            f"[{style}]{status}[/{style}]",
            f"{job.get('attempt_count', 0)}/{job.get('max_attempts', 0)}",
            _short_time(job.get("created_at")),
            _truncate(job.get("error_message") or "—", 60),
        )

    return table


def _short_time(value: str | None) -> str:
    if not value:
        return "—"
    return value.replace("T", " ")[:19]


def _truncate(text: str, length: int) -> str:
    return text if len(text) <= length else text[: length - 1] + "…"
