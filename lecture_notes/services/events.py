"""Structured event helpers shared across the application.

Events are ordinary log records whose message reads
``[TYPE] message (key=value, ...)``. The same metadata is attached to the
record as ``event_*`` attributes so handlers can use it without parsing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePath
from typing import Any, Dict, Mapping, Optional


DEFAULT_EVENT_LOGGER = logging.getLogger("lecture_notes.events")

_MAX_VALUE_LENGTH = 200
_REDACTED = "***"
_SECRET_KEYS = ("password", "token", "secret", "api_key", "private_key", "authorization")


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_KEYS)


def _truncate(text: str) -> Optional[str]:
    text = text.strip()
    if not text:
        return None
    if len(text) <= _MAX_VALUE_LENGTH:
        return text
    return text[:_MAX_VALUE_LENGTH] + "…"


def sanitize_context_value(value: Any) -> Any:
    """Return a log-friendly representation of *value* (``None`` when empty)."""

    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, PurePath):
        return str(value)
    if isinstance(value, Mapping):
        return normalize_context(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return _truncate(", ".join(str(item) for item in value))
    return _truncate(str(value))


def normalize_context(values: Optional[Mapping[Any, Any]]) -> Dict[str, Any]:
    """Drop empty entries, mask secrets and sanitise the rest."""

    normalised: Dict[str, Any] = {}
    for key, raw_value in (values or {}).items():
        if not key:
            continue
        name = str(key)
        if _is_secret(name):
            normalised[name] = _REDACTED
            continue
        value = sanitize_context_value(raw_value)
        if value is None or value == "" or value == {}:
            continue
        normalised[name] = value
    return normalised


@dataclass
class Event:
    event_type: str
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)
    correlation: Dict[str, Any] = field(default_factory=dict)
    duration_ms: Optional[float] = None

    @property
    def details(self) -> Dict[str, Any]:
        merged = {**self.correlation, **self.context, **self.payload}
        if self.duration_ms is not None:
            merged["duration_ms"] = round(self.duration_ms, 2)
        return merged

    def render(self) -> str:
        text = f"[{self.event_type}] {self.message}" if self.event_type else self.message
        details = ", ".join(f"{key}={value}" for key, value in self.details.items())
        return f"{text} ({details})" if details else text

    def extra(self) -> Dict[str, Any]:
        extra: Dict[str, Any] = {"event_message": self.message, "event_type": self.event_type}
        for name in ("context", "payload", "correlation"):
            value = getattr(self, name)
            if value:
                extra[f"event_{name}"] = value
        if self.duration_ms is not None:
            extra["event_duration_ms"] = self.duration_ms
        return extra


def emit_structured_event(
    event_type: str,
    message: str,
    *,
    payload: Optional[Dict[str, Any]] = None,
    context: Optional[Dict[str, Any]] = None,
    correlation: Optional[Dict[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = DEFAULT_EVENT_LOGGER,
) -> Event:
    event = Event(
        event_type=event_type or "",
        message=str(message).strip(),
        context=normalize_context(context),
        payload=normalize_context(payload),
        correlation=normalize_context(correlation),
        duration_ms=None if duration_ms is None else float(duration_ms),
    )
    logger.log(level, event.render(), extra=event.extra())
    return event


def emit_db_event(action: str, **kwargs: Any) -> Event:
    """Storage backend call."""

    return emit_structured_event("DB_QUERY", action, **kwargs)


def emit_file_event(operation: str, **kwargs: Any) -> Event:
    """Upload written or audio file removed."""

    return emit_structured_event("FILE_OP", operation, **kwargs)


def emit_ai_event(operation: str, **kwargs: Any) -> Event:
    """Call to a speech-to-text or language model API."""

    return emit_structured_event("AI_CALL", operation, **kwargs)


__all__ = [
    "DEFAULT_EVENT_LOGGER",
    "Event",
    "emit_ai_event",
    "emit_db_event",
    "emit_file_event",
    "emit_structured_event",
    "normalize_context",
    "sanitize_context_value",
]
