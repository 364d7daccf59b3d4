"""Hosted AI backends for transcription and note generation."""

from .notes import (
    EMPTY_NOTES,
    NoteGenerationError,
    NoteGenerator,
    TranscriptFormatter,
    build_note_generator,
    build_transcript_formatter,
)
from .transcription import (
    AssemblyAITranscription,
    OpenAIWhisperTranscription,
    TranscriptionError,
    TranscriptionUnavailableError,
    build_transcription_engine,
)

__all__ = [
    "AssemblyAITranscription",
    "EMPTY_NOTES",
    "NoteGenerationError",
    "NoteGenerator",
    "OpenAIWhisperTranscription",
    "TranscriptFormatter",
    "TranscriptionError",
    "TranscriptionUnavailableError",
    "build_note_generator",
    "build_transcript_formatter",
    "build_transcription_engine",
]
