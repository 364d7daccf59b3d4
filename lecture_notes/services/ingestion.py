"""Recording pipeline: uploads, transcription and note generation."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import BinaryIO, Optional, Protocol, Tuple

from .. import config as config_module
from ..config import AppConfig
from .events import emit_file_event
from .naming import build_upload_filename, default_title, file_format_for
from .storage import NoteRecord, RecordingRecord, StorageBackend, TranscriptRecord


LOGGER = logging.getLogger(__name__)


ALLOWED_AUDIO_EXTENSIONS = frozenset(
    {".mp3", ".m4a", ".wav", ".webm", ".aac", ".ogg", ".flac", ".amr", ".3gp"}
)
ALLOWED_AUDIO_MIME_TYPES = frozenset(
    {
        "audio/mpeg",
        "audio/mp3",
        "audio/mp4",
        "audio/m4a",
        "audio/x-m4a",
        "audio/aac",
        "audio/wav",
        "audio/x-wav",
        "audio/webm",
        "audio/ogg",
        "audio/oga",
        "audio/flac",
        "audio/x-aac",
        "audio/x-caf",
        "audio/3gpp",
        "audio/3gpp2",
        "audio/amr",
    }
)

_COPY_CHUNK_SIZE = 1024 * 1024


class IngestionError(RuntimeError):
    """Raised when a recording cannot be processed."""


class RecordingNotFoundError(IngestionError):
    """Raised when a recording id is unknown."""


class AudioFileMissingError(IngestionError):
    """Raised when a recording's audio file is gone from disk."""


class TranscriptNotFoundError(IngestionError):
    """Raised when notes are requested before transcription."""


class UnsupportedAudioError(IngestionError):
    """Raised for uploads whose type and extension are both unsupported."""


class UploadTooLargeError(IngestionError):
    """Raised when an upload exceeds the configured size limit."""


@dataclass
class TranscriptResult:
    """Text and duration (seconds, 0 when unknown) returned by an engine."""

    text: str
    duration: float = 0.0


class TranscriptionEngine(Protocol):
    """Protocol describing a speech-to-text backend."""

    def transcribe(self, audio_path: Path) -> TranscriptResult:
        """Return the transcript of *audio_path*."""


class NoteWriter(Protocol):
    """Protocol describing a study-note generator."""

    def generate(self, transcript: str, title: str) -> str:
        """Return Markdown notes for *transcript*."""


def is_supported_audio(filename: Optional[str], content_type: Optional[str]) -> bool:
    """Accept a file when either its MIME type or its extension is known."""

    mime = (content_type or "").split(";", 1)[0].strip().lower()
    extension = PurePath(filename or "").suffix.lower()
    return mime in ALLOWED_AUDIO_MIME_TYPES or extension in ALLOWED_AUDIO_EXTENSIONS


def describe_size_limit(max_bytes: int) -> str:
    """Render an upload limit in the largest unit that divides it, e.g. ``100MB`` or ``64 bytes``."""

    for unit, size in (("MB", 1024 * 1024), ("KB", 1024)):
        if max_bytes >= size and max_bytes % size == 0:
            return f"{max_bytes // size}{unit}"
    return f"{max_bytes} bytes"


def copy_upload(source: BinaryIO, destination: Path, *, max_bytes: int) -> int:
    """Copy *source* into *destination*, enforcing *max_bytes*; return the size."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    try:
        with destination.open("wb") as target:
            while True:
                chunk = source.read(_COPY_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise UploadTooLargeError(
                        f"File too large. Maximum size is {describe_size_limit(max_bytes)}"
                    )
                target.write(chunk)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise
    return written


class RecordingProcessor:
    """Coordinates uploads and the AI stages for stored recordings."""

    def __init__(
        self,
        config: AppConfig,
        storage: StorageBackend,
        *,
        transcription_engine: Optional[TranscriptionEngine] = None,
        note_writer: Optional[NoteWriter] = None,
    ) -> None:
        self._config = config
        self._storage = storage
        self._transcription_engine = transcription_engine
        self._note_writer = note_writer

    @property
    def uploads_root(self) -> Path:
        return self._config.uploads_root

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------
    def audio_path(self, filename: str) -> Path:
        """Return the on-disk path for *filename*, rejecting path traversal."""

        candidate = (self.uploads_root / filename).resolve()
        root = self.uploads_root.resolve()
        if candidate.parent != root:
            raise AudioFileMissingError("Audio file not found")
        return candidate

    def store_upload(
        self,
        source: BinaryIO,
        *,
        original_name: Optional[str],
        content_type: Optional[str],
        title: Optional[str] = None,
    ) -> RecordingRecord:
        """Validate and persist an upload, then register a pending recording."""

        if not is_supported_audio(original_name, content_type):
            raise UnsupportedAudioError(
                f"Unsupported file format: {content_type or PurePath(original_name or '').suffix}"
            )
        if not config_module._ensure_writable_directory(self.uploads_root):
            raise IngestionError(f"Uploads directory '{self.uploads_root}' is not writable")

        filename = build_upload_filename(original_name)
        destination = self.uploads_root / filename
        start = time.perf_counter()
        size = copy_upload(source, destination, max_bytes=self._config.max_upload_bytes)
        emit_file_event(
            "store_upload",
            payload={"path": destination, "bytes": size, "content_type": content_type},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )

        try:
            recording = self._storage.create_recording(
                title=(title or "").strip() or default_title(original_name),
                filename=filename,
                file_size=size,
                file_format=file_format_for(original_name),
                duration=0,
                status="pending",
            )
        except Exception:
            destination.unlink(missing_ok=True)
            raise
        LOGGER.info("Stored upload %s as recording id=%s", filename, recording.id)
        return recording

    def delete(self, recording_id: int) -> bool:
        """Remove the audio file and the recording with its transcript and notes."""

        recording = self.require_recording(recording_id)
        try:
            path = self.audio_path(recording.filename)
        except AudioFileMissingError:
            path = None
        if path is not None and path.exists():
            path.unlink()
            emit_file_event("delete_audio", payload={"path": path})
        else:
            LOGGER.warning("Audio file for recording id=%s already missing", recording_id)
        return self._storage.delete_recording(recording_id)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def require_recording(self, recording_id: int) -> RecordingRecord:
        recording = self._storage.get_recording(recording_id)
        if recording is None:
            raise RecordingNotFoundError("Recording not found")
        return recording

    def transcribe(self, recording_id: int) -> Tuple[TranscriptRecord, float]:
        if self._transcription_engine is None:
            raise IngestionError("No transcription engine configured")
        recording = self.require_recording(recording_id)
        self._storage.update_recording_status(recording_id, "processing")

        try:
            path = self.audio_path(recording.filename)
        except AudioFileMissingError:
            path = None
        if path is None or not path.exists():
            self._storage.update_recording_status(recording_id, "failed")
            raise AudioFileMissingError("Audio file not found")

        try:
            result = self._transcription_engine.transcribe(path)
            transcript = self._storage.create_transcript(recording_id, result.text)
            if result.duration:
                self._storage.update_recording_duration(recording_id, round(result.duration))
            self._storage.update_recording_transcribed(recording_id, True)
            self._storage.update_recording_status(recording_id, "completed")
        except Exception:
            LOGGER.exception("Transcription failed for recording id=%s", recording_id)
            self._storage.update_recording_status(recording_id, "failed")
            raise
        LOGGER.info(
            "Transcribed recording id=%s (%s characters, %.1fs)",
            recording_id,
            len(result.text),
            result.duration,
        )
        return transcript, result.duration

    def generate_notes(self, recording_id: int) -> NoteRecord:
        if self._note_writer is None:
            raise IngestionError("No note generator configured")
        recording = self.require_recording(recording_id)
        transcript = self._storage.get_transcript_by_recording_id(recording_id)
        if transcript is None:
            raise TranscriptNotFoundError(
                "Transcript not found. Please transcribe the recording first."
            )

        self._storage.update_recording_status(recording_id, "processing")
        try:
            content = self._note_writer.generate(transcript.content, recording.title)
            existing = self._storage.get_note_by_recording_id(recording_id)
            note = None
            if existing is not None:
                note = self._storage.update_note(existing.id, content)
            if note is None:
                note = self._storage.create_note(recording_id, content)
            self._storage.update_recording_notes_generated(recording_id, True)
            self._storage.update_recording_status(recording_id, "completed")
        except Exception:
            LOGGER.exception("Note generation failed for recording id=%s", recording_id)
            self._storage.update_recording_status(recording_id, "failed")
            raise
        LOGGER.info("Generated notes for recording id=%s", recording_id)
        return note


__all__ = [
    "ALLOWED_AUDIO_EXTENSIONS",
    "ALLOWED_AUDIO_MIME_TYPES",
    "AudioFileMissingError",
    "IngestionError",
    "NoteWriter",
    "RecordingNotFoundError",
    "RecordingProcessor",
    "TranscriptNotFoundError",
    "TranscriptResult",
    "TranscriptionEngine",
    "UnsupportedAudioError",
    "UploadTooLargeError",
    "copy_upload",
    "describe_size_limit",
    "is_supported_audio",
]
