"""Plain-text overview of stored recordings."""

from __future__ import annotations

from typing import Iterable

from ..services.storage import StorageBackend
from .overview import RecordingOverview, collect_overview, format_duration, format_size


class ConsoleUI:
    """Minimal console UI that prints stored recordings."""

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage

    def run(self) -> None:
        snapshot = collect_overview(self._storage)

        print("Lecture Notes – Console Overview")
        print("=" * 40)
        if not snapshot.recordings:
            print("(no recordings)")
            return

        for line in self._format_recordings(snapshot.recordings):
            print(line)
        print()
        statuses = ", ".join(
            f"{status}={count}" for status, count in snapshot.status_totals.items() if count
        )
        print(
            f"{snapshot.recording_count} recording(s), {format_size(snapshot.total_bytes)}, "
            f"{format_duration(snapshot.total_seconds)} total ({statuses})"
        )

    @staticmethod
    def _format_recordings(recordings: Iterable[RecordingOverview]) -> Iterable[str]:
        for overview in recordings:
            record = overview.record
            line = (
                f"#{record.id:<4} {record.title} [{record.status}] "
                f"{record.file_format or '?'} {format_duration(record.duration)}"
            )
            if overview.stages:
                line += " (" + ", ".join(stage.split(" ", 1)[-1].lower() for stage in overview.stages) + ")"
            yield line


__all__ = ["ConsoleUI"]
