"""Study-note generation and transcript formatting with chat completions."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Optional

import openai
from openai import OpenAI

from ..config import AppConfig
from ..services.events import emit_ai_event


LOGGER = logging.getLogger(__name__)

EMPTY_NOTES = "No content generated"

NOTES_SYSTEM_PROMPT = """You are a study assistant who turns lecture transcripts into structured
study notes and revision material. Use this Markdown layout:

# [Course name] - [Chapter / topic]

## Core concepts and principles
- [Concept 1]: [clear explanation]
- [Concept 2]: [clear explanation]

## Examples and case analysis

### [Example title]
- Summary: [short description of the example]
- Why it matters: [how the example illustrates the core concept]

## Extended material
- [Additional point]

## Classroom Q&A (omit when there were no questions)
- Common questions raised in class and their answers

## Study suggestions

### Key points
- **Point 1:** [short summary of a core concept]

### Terminology
- **[Term]:** [definition]

### Exam focus
- [Likely exam topic or question type]

Use clear headings and bullet points, keep explanations concise, tie every
example back to a concept and mark anything the lecturer emphasised."""

FORMAT_SYSTEM_PROMPT = """You are an expert at parsing raw transcripts into structured formats.
Add timestamps and identify speakers in a transcript. Start each segment with a
timestamp in MM:SS format and name the speaker when possible, using "Speaker"
when the speaker cannot be identified. Reply with a JSON object whose
'parsedTranscript' field holds the formatted transcript."""


class NoteGenerationError(RuntimeError):
    """Raised when the language model cannot produce notes."""


def _message_content(response: Any) -> str:
    try:
        return response.choices[0].message.content or ""
    except (AttributeError, IndexError):
        return ""


class _ChatClient:
    def __init__(
        self,
        api_key: Optional[str],
        *,
        model: str = "gpt-4o",
        client_factory: Callable[..., Any] = OpenAI,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._client_factory = client_factory
        self._client: Any = None

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._api_key:
                raise NoteGenerationError("OPENAI_API_KEY is not configured")
            self._client = self._client_factory(api_key=self._api_key)
        return self._client


class NoteGenerator(_ChatClient):
    """Generate Markdown study notes for a transcript."""

    def generate(self, transcript: str, title: str) -> str:
        client = self._get_client()
        start = time.perf_counter()
        try:
            response = client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": NOTES_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": (
                            f'This is the transcript of a lecture titled "{title}". '
                            "Turn it into structured study notes and revision material:\n\n"
                            f"{transcript}\n\n"
                            "Use a clear heading structure and bullet points."
                        ),
                    },
                ],
            )
        except openai.OpenAIError as error:
            raise NoteGenerationError(f"Note generation failed: {error}") from error

        content = _message_content(response)
        emit_ai_event(
            "openai.generate_notes",
            payload={"model": self._model, "characters": len(content)},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        return content or EMPTY_NOTES


class TranscriptFormatter(_ChatClient):
    """Add ``MM:SS`` timestamps and speaker labels to a raw transcript.

    Formatting is cosmetic: any failure returns the transcript unchanged.
    """

    def __init__(self, *args: Any, enabled: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._enabled = enabled

    def format(self, transcript: str) -> str:
        if not self._enabled or not transcript.strip():
            return transcript
        start = time.perf_counter()
        try:
            response = self._get_client().chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": FORMAT_SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": (
                            "Please parse this raw transcript, adding timestamps approximately "
                            f"every 30 seconds and identifying speakers when possible:\n\n{transcript}"
                        ),
                    },
                ],
                response_format={"type": "json_object"},
            )
            parsed = json.loads(_message_content(response) or "{}")
        except (openai.OpenAIError, NoteGenerationError, ValueError) as error:
            LOGGER.warning("Transcript formatting failed; returning raw transcript: %s", error)
            return transcript

        emit_ai_event(
            "openai.format_transcript",
            payload={"model": self._model},
            duration_ms=(time.perf_counter() - start) * 1000.0,
        )
        formatted = parsed.get("parsedTranscript") if isinstance(parsed, dict) else None
        return formatted if isinstance(formatted, str) and formatted.strip() else transcript


def build_note_generator(config: AppConfig) -> NoteGenerator:
    return NoteGenerator(config.credentials.openai_api_key, model=config.notes_model)


def build_transcript_formatter(config: AppConfig) -> TranscriptFormatter:
    return TranscriptFormatter(
        config.credentials.openai_api_key,
        model=config.notes_model,
        enabled=config.format_transcripts and bool(config.credentials.openai_api_key),
    )


__all__ = [
    "EMPTY_NOTES",
    "NoteGenerationError",
    "NoteGenerator",
    "TranscriptFormatter",
    "build_note_generator",
    "build_transcript_formatter",
]
