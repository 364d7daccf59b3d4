from __future__ import annotations

from io import BytesIO
from pathlib import Path

import pytest

from lecture_notes.services.ingestion import (
    AudioFileMissingError,
    RecordingNotFoundError,
    RecordingProcessor,
    TranscriptNotFoundError,
    UnsupportedAudioError,
    UploadTooLargeError,
    copy_upload,
    describe_size_limit,
    is_supported_audio,
)
from lecture_notes.services.naming import build_download_name, build_upload_filename
from lecture_notes.services.storage import MemoryStorage


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def processor(temp_config, storage, fake_engine, fake_writer) -> RecordingProcessor:
    return RecordingProcessor(
        temp_config,
        storage,
        transcription_engine=fake_engine,
        note_writer=fake_writer,
    )


def _upload(processor: RecordingProcessor, name: str = "Thermodynamics.mp3", **kwargs):
    return processor.store_upload(
        BytesIO(b"ID3" + b"\x00" * 64),
        original_name=name,
        content_type=kwargs.pop("content_type", "audio/mpeg"),
        **kwargs,
    )


@pytest.mark.parametrize(
    "filename, content_type, expected",
    [
        ("lecture.mp3", "audio/mpeg", True),
        ("lecture.bin", "audio/webm;codecs=opus", True),
        ("voice.M4A", "application/octet-stream", True),
        ("notes.pdf", "application/pdf", False),
        (None, None, False),
    ],
)
def test_is_supported_audio(filename, content_type, expected) -> None:
    assert is_supported_audio(filename, content_type) is expected


def test_copy_upload_removes_partial_file_when_too_large(tmp_path: Path) -> None:
    destination = tmp_path / "uploads" / "big.mp3"

    with pytest.raises(UploadTooLargeError, match="Maximum size is 1MB"):
        copy_upload(BytesIO(b"x" * (1024 * 1024 + 1)), destination, max_bytes=1024 * 1024)

    assert not destination.exists()


@pytest.mark.parametrize(
    "max_bytes, expected",
    [
        (100 * 1024 * 1024, "100MB"),
        (1536 * 1024, "1536KB"),
        (2048, "2KB"),
        (64, "64 bytes"),
    ],
)
def test_describe_size_limit_never_rounds_down_to_zero(max_bytes, expected) -> None:
    assert describe_size_limit(max_bytes) == expected


def test_copy_upload_reports_small_limits_in_bytes(tmp_path: Path) -> None:
    with pytest.raises(UploadTooLargeError, match="Maximum size is 64 bytes$"):
        copy_upload(BytesIO(b"x" * 65), tmp_path / "small.mp3", max_bytes=64)


def test_upload_filenames_keep_the_extension() -> None:
    assert build_upload_filename("Week 1.M4A", now_ms=1700000000000, token=42) == "1700000000000-42.m4a"
    assert build_download_name("Organic Chemistry", "notes", "md") == "organic-chemistry-notes.md"


def test_store_upload_registers_pending_recording(processor, storage, temp_config) -> None:
    recording = _upload(processor)

    assert recording.title == "Thermodynamics"
    assert recording.file_format == "MP3"
    assert recording.file_size == 67
    assert recording.status == "pending"
    assert (temp_config.uploads_root / recording.filename).read_bytes().startswith(b"ID3")
    assert storage.get_recording(recording.id) == recording


def test_store_upload_prefers_explicit_title(processor) -> None:
    assert _upload(processor, title="  Week 3  ").title == "Week 3"


def test_store_upload_rejects_unsupported_files(processor, temp_config) -> None:
    with pytest.raises(UnsupportedAudioError):
        _upload(processor, "slides.pdf", content_type="application/pdf")

    assert list(temp_config.uploads_root.iterdir()) == []


def test_transcribe_stores_transcript_and_duration(processor, storage, fake_engine) -> None:
    recording = _upload(processor)

    transcript, duration = processor.transcribe(recording.id)

    updated = storage.get_recording(recording.id)
    assert transcript.content == fake_engine.text
    assert duration == pytest.approx(61.6)
    assert updated.duration == 62
    assert updated.transcribed is True
    assert updated.status == "completed"
    assert fake_engine.calls[0].name == recording.filename


def test_transcribe_marks_failed_when_engine_raises(processor, storage, fake_engine) -> None:
    recording = _upload(processor)
    fake_engine.error = RuntimeError("provider down")

    with pytest.raises(RuntimeError):
        processor.transcribe(recording.id)

    updated = storage.get_recording(recording.id)
    assert updated.status == "failed"
    assert updated.transcribed is False
    assert storage.get_transcript_by_recording_id(recording.id) is None


def test_transcribe_missing_audio_file(processor, storage, temp_config) -> None:
    recording = _upload(processor)
    (temp_config.uploads_root / recording.filename).unlink()

    with pytest.raises(AudioFileMissingError):
        processor.transcribe(recording.id)

    assert storage.get_recording(recording.id).status == "failed"


def test_unknown_recording_is_reported(processor) -> None:
    with pytest.raises(RecordingNotFoundError):
        processor.transcribe(404)


def test_generate_notes_requires_transcript(processor, storage, fake_writer) -> None:
    recording = _upload(processor)

    with pytest.raises(TranscriptNotFoundError, match="transcribe the recording first"):
        processor.generate_notes(recording.id)

    assert fake_writer.calls == []
    assert storage.get_recording(recording.id).status == "pending"


def test_generate_notes_updates_existing_note(processor, storage, fake_writer) -> None:
    recording = _upload(processor)
    processor.transcribe(recording.id)

    first = processor.generate_notes(recording.id)
    fake_writer.content = "# Revised"
    second = processor.generate_notes(recording.id)

    assert second.id == first.id
    assert storage.get_note_by_recording_id(recording.id).content == "# Revised"
    assert fake_writer.calls[0] == ("Today we discuss entropy.", "Thermodynamics")
    updated = storage.get_recording(recording.id)
    assert updated.notes_generated is True
    assert updated.status == "completed"


def test_generate_notes_failure_marks_recording_failed(processor, storage, fake_writer) -> None:
    recording = _upload(processor)
    processor.transcribe(recording.id)
    fake_writer.error = RuntimeError("quota")

    with pytest.raises(RuntimeError):
        processor.generate_notes(recording.id)

    assert storage.get_recording(recording.id).status == "failed"
    assert storage.get_note_by_recording_id(recording.id) is None


def test_delete_removes_file_and_records(processor, storage, temp_config) -> None:
    recording = _upload(processor)
    processor.transcribe(recording.id)
    audio = temp_config.uploads_root / recording.filename

    assert processor.delete(recording.id) is True

    assert not audio.exists()
    assert storage.get_recording(recording.id) is None
    assert storage.get_transcript_by_recording_id(recording.id) is None


def test_audio_path_rejects_traversal(processor) -> None:
    with pytest.raises(AudioFileMissingError):
        processor.audio_path("../storage/data.json")
