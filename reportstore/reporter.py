from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from reportstore.domain.models import GraphType, ReportingPoint


def _format_ts(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def print_points(
    points: Sequence[ReportingPoint],
    graph_type: GraphType,
    console: Optional[Console] = None,
) -> None:
    """
    Render reporting points (newest first) as a rich table.
    """
    console = console or Console()

    if not points:
        console.print("[yellow]No reporting points to display.[/yellow]")
        return

    table = Table(
        title=f"Reporting averages ({graph_type.name})",
        box=box.ROUNDED,
        caption="Newest first",
    )
    table.add_column("Timestamp (UTC)", style="cyan", no_wrap=True)
    table.add_column("ts (ms)", justify="right", style="magenta")
    table.add_column("Average", justify="right", style="bold green")

    for point in points:
        table.add_row(_format_ts(point.ts), str(point.ts), f"{point.value:,.4f}")

    console.print(table)


def print_result(result: Mapping[str, Any], console: Optional[Console] = None) -> None:
    """
    Render one batch operation summary.

    Purge results also list rows removed per table.
    """
    console = console or Console()

    table = Table(title=str(result.get("operation", "operation")), box=box.ROUNDED)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", justify="right")

    if result.get("skipped"):
        status = "[yellow]skipped (storage disabled or nothing to do)[/yellow]"
    elif result.get("error"):
        status = f"[red]failed: {result['error']}[/red]"
    else:
        status = "[green]ok[/green]"
    table.add_row("Status", status)
    table.add_row("Rows", f"{result.get('rows', 0):,}")
    table.add_row("Duration (s)", f"{result.get('duration_seconds', 0.0):.3f}")

    for name, count in (result.get("removed") or {}).items():
        table.add_row(f"Removed from {name}", f"{count:,}")

    console.print(table)


__all__ = ["print_points", "print_result"]
