"""A Rich-powered overview of stored recordings."""

from __future__ import annotations

from typing import Optional

from rich import box
from rich.columns import Columns
from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from ..services.storage import StorageBackend
from .overview import STAGE_LABELS, OverviewSnapshot, collect_overview, format_duration, format_size


STATUS_STYLES = {
    "pending": "yellow",
    "processing": "cyan",
    "completed": "green",
    "failed": "red",
}


class ModernUI:
    """Render the recordings overview using Rich widgets."""

    def __init__(self, storage: StorageBackend, *, console: Optional[Console] = None) -> None:
        self._storage = storage
        self._console = console or Console()

    def run(self) -> None:
        snapshot = collect_overview(self._storage)
        console = self._console

        console.rule("[bold magenta]Lecture Notes Overview")

        if snapshot.recording_count == 0:
            console.print(
                Panel(
                    "No recordings have been uploaded yet.\n"
                    "Start the server with [bold]python run.py serve[/bold] and upload audio.",
                    border_style="yellow",
                    box=box.ROUNDED,
                )
            )
            return

        console.print(Columns([self._build_table(snapshot), self._build_stats_panel(snapshot)], expand=True))
        console.print(
            Text("Tip: pass --style console for a plain-text listing.", style="dim"),
            justify="center",
        )

    def _build_table(self, snapshot: OverviewSnapshot) -> Table:
        table = Table(title="Recordings", box=box.ROUNDED, header_style="bold cyan")
        table.add_column("ID", justify="right", style="dim")
        table.add_column("Title", style="bold")
        table.add_column("Format")
        table.add_column("Duration", justify="right")
        table.add_column("Size", justify="right")
        table.add_column("Status")
        table.add_column("Outputs")
        for overview in snapshot.recordings:
            record = overview.record
            table.add_row(
                str(record.id),
                record.title,
                record.file_format or "?",
                format_duration(record.duration),
                format_size(record.file_size),
                Text(record.status, style=STATUS_STYLES.get(record.status, "white")),
                Text(" · ".join(overview.stages) or "none yet", style="green" if overview.stages else "dim"),
            )
        return table

    @staticmethod
    def _build_stats_panel(snapshot: OverviewSnapshot) -> Panel:
        metrics = Table.grid(expand=True, padding=(0, 1))
        metrics.add_column(style="dim")
        metrics.add_column(justify="right", style="bold")
        metrics.add_row("Recordings", str(snapshot.recording_count))
        metrics.add_row("Audio", format_size(snapshot.total_bytes))
        metrics.add_row("Length", format_duration(snapshot.total_seconds))

        statuses = Table.grid(expand=True, padding=(0, 1))
        statuses.add_column()
        statuses.add_column(justify="right", style="bold")
        for status, count in snapshot.status_totals.items():
            statuses.add_row(Text(status.capitalize(), style=STATUS_STYLES.get(status, "white")), str(count))

        stages = Table.grid(expand=True, padding=(0, 1))
        stages.add_column(style="dim")
        stages.add_column(justify="right", style="bold")
        for key, label in STAGE_LABELS.items():
            stages.add_row(label, str(snapshot.stage_totals.get(key, 0)))

        body = Group(metrics, Rule(style="magenta"), statuses, Rule(style="magenta"), stages)
        return Panel(body, title="At a glance", border_style="magenta", box=box.ROUNDED)


__all__ = ["ModernUI"]
