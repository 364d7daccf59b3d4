"""Lecture recording, transcription and study-note generation service."""

__version__ = "0.3.0"
