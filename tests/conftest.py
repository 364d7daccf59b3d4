from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from lecture_notes.bootstrap import Bootstrapper
from lecture_notes.config import AppConfig
from lecture_notes.services.ingestion import TranscriptResult


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)

    config = AppConfig.from_mapping(
        {
            "storage_root": "storage",
            "database_file": "storage/lecture_notes.db",
            "data_file": "storage/data.json",
            "uploads_dir": "uploads",
            "storage_backends": ["sqlite", "file", "memory"],
            "format_transcripts": False,
        },
        base_path=tmp_path,
        environ={},
    )

    Bootstrapper(config).initialize()
    return config


class FakeTranscriptionEngine:
    def __init__(self, text: str = "Today we discuss entropy.", duration: float = 61.6) -> None:
        self.text = text
        self.duration = duration
        self.calls: List[Path] = []
        self.error: Optional[Exception] = None

    def transcribe(self, audio_path: Path) -> TranscriptResult:
        self.calls.append(Path(audio_path))
        if self.error is not None:
            raise self.error
        return TranscriptResult(text=self.text, duration=self.duration)


class FakeNoteWriter:
    def __init__(self, content: str = "# Thermodynamics\n\n## Core concepts\n- Entropy") -> None:
        self.content = content
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None

    def generate(self, transcript: str, title: str) -> str:
        self.calls.append((transcript, title))
        if self.error is not None:
            raise self.error
        return self.content


class FakeFormatter:
    def __init__(self, prefix: str = "[00:00] Speaker: ") -> None:
        self.prefix = prefix

    def format(self, transcript: str) -> str:
        return f"{self.prefix}{transcript}"


@pytest.fixture()
def fake_engine() -> FakeTranscriptionEngine:
    return FakeTranscriptionEngine()


@pytest.fixture()
def fake_writer() -> FakeNoteWriter:
    return FakeNoteWriter()


@pytest.fixture()
def fake_formatter() -> FakeFormatter:
    return FakeFormatter()
