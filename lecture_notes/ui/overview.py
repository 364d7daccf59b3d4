"""Shared helpers for building overview snapshots of stored recordings."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

from ..services.storage import RECORDING_STATUSES, RecordingRecord, StorageBackend


STAGE_LABELS: Dict[str, str] = {
    "transcribed": "📝 Transcript",
    "notes": "📄 Notes",
}


@dataclass
class RecordingOverview:
    record: RecordingRecord
    stages: List[str]


@dataclass
class OverviewSnapshot:
    recordings: List[RecordingOverview]
    recording_count: int
    total_bytes: int
    total_seconds: int
    status_totals: Dict[str, int]
    stage_totals: Dict[str, int]


def format_duration(seconds: int | None) -> str:
    """Return ``M:SS`` (or ``H:MM:SS``) for *seconds*."""

    if not seconds:
        return "–"
    minutes, secs = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KB", "MB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def collect_overview(storage: StorageBackend) -> OverviewSnapshot:
    """Aggregate stored recordings into a snapshot for the console UIs."""

    recordings: List[RecordingOverview] = []
    status_totals = {status: 0 for status in RECORDING_STATUSES}
    stage_totals = {key: 0 for key in STAGE_LABELS}
    total_bytes = 0
    total_seconds = 0

    for record in storage.get_all_recordings():
        stages: List[str] = []
        if record.transcribed:
            stages.append(STAGE_LABELS["transcribed"])
            stage_totals["transcribed"] += 1
        if record.notes_generated:
            stages.append(STAGE_LABELS["notes"])
            stage_totals["notes"] += 1
        status_totals[record.status] = status_totals.get(record.status, 0) + 1
        total_bytes += record.file_size
        total_seconds += record.duration or 0
        recordings.append(RecordingOverview(record=record, stages=stages))

    return OverviewSnapshot(
        recordings=recordings,
        recording_count=len(recordings),
        total_bytes=total_bytes,
        total_seconds=total_seconds,
        status_totals=status_totals,
        stage_totals=stage_totals,
    )


__all__ = [
    "OverviewSnapshot",
    "RecordingOverview",
    "STAGE_LABELS",
    "collect_overview",
    "format_duration",
    "format_size",
]
