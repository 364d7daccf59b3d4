"""Speech-to-text engines backed by hosted APIs."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import assemblyai as aai
import openai
from openai import OpenAI

from ..config import AppConfig
from ..services.events import emit_ai_event
from ..services.ingestion import TranscriptResult, TranscriptionEngine


LOGGER = logging.getLogger(__name__)


class TranscriptionError(RuntimeError):
    """Raised when the speech-to-text provider rejects or fails a request."""


class TranscriptionUnavailableError(TranscriptionError):
    """Raised when the configured provider has no API key."""


class OpenAIWhisperTranscription(TranscriptionEngine):
    """Transcription through the OpenAI audio API."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "whisper-1",
        client_factory: Callable[..., Any] = OpenAI,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._client_factory = client_factory
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise TranscriptionUnavailableError("OPENAI_API_KEY is not configured")
            self._client = self._client_factory(api_key=self._api_key)
        return self._client

    def transcribe(self, audio_path: Path) -> TranscriptResult:
        client = self._get_client()
        LOGGER.debug("Sending %s to OpenAI (%s)", audio_path, self._model)
        start = time.perf_counter()
        try:
            with Path(audio_path).open("rb") as audio_file:
                response = client.audio.transcriptions.create(
                    model=self._model,
                    file=audio_file,
                    response_format="verbose_json",
                )
        except openai.OpenAIError as error:
            emit_ai_event(
                "openai.transcription_failed",
                payload={"model": self._model, "error": str(error)},
                duration_ms=(time.perf_counter() - start) * 1000.0,
                level=logging.ERROR,
            )
            raise TranscriptionError(f"OpenAI transcription failed: {error}") from error

        text = getattr(response, "text", "") or ""
        duration = float(getattr(response, "duration", 0) or 0)
        emit_ai_event(
            "openai.transcription",
            payload={"model": self._model, "characters": len(text), "audio_seconds": duration},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return TranscriptResult(text=text, duration=duration)


class AssemblyAITranscription(TranscriptionEngine):
    """Transcription through the AssemblyAI SDK."""

    def __init__(
        self,
        api_key: Optional[str],
        *,
        transcriber_factory: Callable[[], Any] = aai.Transcriber,
    ) -> None:
        self._api_key = api_key
        self._transcriber_factory = transcriber_factory

    def transcribe(self, audio_path: Path) -> TranscriptResult:
        if not self._api_key:
            raise TranscriptionUnavailableError("ASSEMBLYAI_API_KEY is not configured")
        aai.settings.api_key = self._api_key

        start = time.perf_counter()
        transcript = self._transcriber_factory().transcribe(str(audio_path))
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if transcript.status == aai.TranscriptStatus.error:
            emit_ai_event(
                "assemblyai.transcription_failed",
                payload={"error": transcript.error},
                duration_ms=elapsed_ms,
                level=logging.ERROR,
            )
            raise TranscriptionError(f"AssemblyAI transcription failed: {transcript.error}")

        text = transcript.text or ""
        duration = float(transcript.audio_duration or 0)
        emit_ai_event(
            "assemblyai.transcription",
            payload={"characters": len(text), "audio_seconds": duration},
            duration_ms=elapsed_ms,
        )
        return TranscriptResult(text=text, duration=duration)


def build_transcription_engine(config: AppConfig) -> TranscriptionEngine:
    """Return the engine named by ``config.transcription_provider``."""

    provider = config.transcription_provider
    if provider == "assemblyai":
        engine: TranscriptionEngine = AssemblyAITranscription(config.credentials.assemblyai_api_key)
        configured = bool(config.credentials.assemblyai_api_key)
    else:
        engine = OpenAIWhisperTranscription(
            config.credentials.openai_api_key, model=config.whisper_model
        )
        configured = bool(config.credentials.openai_api_key)
    if not configured:
        LOGGER.warning("Transcription provider '%s' has no API key; transcription will fail", provider)
    return engine


__all__ = [
    "AssemblyAITranscription",
    "OpenAIWhisperTranscription",
    "TranscriptionError",
    "TranscriptionUnavailableError",
    "build_transcription_engine",
]
