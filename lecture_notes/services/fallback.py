"""Chain of storage backends tried in order on every call."""

from __future__ import annotations

import functools
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from ..config import AppConfig
from .database import SQLiteStorage
from .events import emit_db_event
from .sheets import GoogleSheetsStorage
from .storage import (
    JsonFileStorage,
    MemoryStorage,
    NoteRecord,
    RecordingRecord,
    StorageBackend,
    StorageError,
    StorageUnavailableError,
    TranscriptRecord,
    UserRecord,
)


LOGGER = logging.getLogger(__name__)

# Raised for caller mistakes (duplicate email, unknown field); every backend would agree.
_DOMAIN_ERRORS = (ValueError,)


class FallbackStorage(StorageBackend):
    """Expose the storage interface over an ordered list of backends.

    Each call starts at the first backend. Any exception other than a domain
    error moves on to the next one; the first backend that returns wins, even
    when it returns ``None``.
    """

    name = "chain"

    def __init__(self, backends: Sequence[StorageBackend]) -> None:
        if not backends:
            raise ValueError("FallbackStorage needs at least one backend")
        names = [backend.name for backend in backends]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            # status() reports failures per backend name.
            raise ValueError(f"Duplicate storage backend names: {', '.join(duplicates)}")
        self._backends: List[StorageBackend] = list(backends)
        self._lock = threading.Lock()
        self._failures: Dict[str, int] = {backend.name: 0 for backend in self._backends}
        self._last_errors: Dict[str, str] = {}
        self._last_served: Optional[str] = None

    @property
    def backends(self) -> List[StorageBackend]:
        return list(self._backends)

    def configure_event_emitter(self, emitter) -> None:
        super().configure_event_emitter(emitter)
        for backend in self._backends:
            backend.configure_event_emitter(emitter)

    def status(self) -> Dict[str, Any]:
        """Return a snapshot of the chain for diagnostics."""

        with self._lock:
            return {
                "backends": [backend.name for backend in self._backends],
                "lastServed": self._last_served,
                "failures": dict(self._failures),
                "lastErrors": dict(self._last_errors),
            }

    def _dispatch(self, operation: str, *args: Any, **kwargs: Any) -> Any:
        errors: List[str] = []
        for backend in self._backends:
            method = getattr(backend, operation)
            try:
                result = method(*args, **kwargs)
            except _DOMAIN_ERRORS:
                raise
            except Exception as error:
                message = f"{error.__class__.__name__}: {error}"
                LOGGER.warning(
                    "Storage backend '%s' failed during %s; trying next backend (%s)",
                    backend.name,
                    operation,
                    message,
                )
                with self._lock:
                    self._failures[backend.name] = self._failures.get(backend.name, 0) + 1
                    self._last_errors[backend.name] = message
                errors.append(f"{backend.name}: {message}")
                continue
            with self._lock:
                self._last_served = backend.name
            return result

        raise StorageUnavailableError(
            f"All storage backends failed during {operation}: " + "; ".join(errors)
        )

    # Users -------------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        return self._dispatch("get_user", user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        return self._dispatch("get_user_by_email", email)

    def create_user(self, name: str, email: str, password: str) -> UserRecord:
        return self._dispatch("create_user", name, email, password)

    # Recordings --------------------------------------------------------
    def create_recording(self, **fields: Any) -> RecordingRecord:
        return self._dispatch("create_recording", **fields)

    def get_recording(self, recording_id: int) -> Optional[RecordingRecord]:
        return self._dispatch("get_recording", recording_id)

    def get_all_recordings(self) -> List[RecordingRecord]:
        return self._dispatch("get_all_recordings")

    def update_recording(self, recording_id: int, **changes: Any) -> Optional[RecordingRecord]:
        return self._dispatch("update_recording", recording_id, **changes)

    def delete_recording(self, recording_id: int) -> bool:
        return self._dispatch("delete_recording", recording_id)

    # Transcripts -------------------------------------------------------
    def create_transcript(self, recording_id: int, content: str) -> TranscriptRecord:
        return self._dispatch("create_transcript", recording_id, content)

    def get_transcript_by_recording_id(self, recording_id: int) -> Optional[TranscriptRecord]:
        return self._dispatch("get_transcript_by_recording_id", recording_id)

    # Notes -------------------------------------------------------------
    def create_note(self, recording_id: int, content: str) -> NoteRecord:
        return self._dispatch("create_note", recording_id, content)

    def get_note_by_recording_id(self, recording_id: int) -> Optional[NoteRecord]:
        return self._dispatch("get_note_by_recording_id", recording_id)

    def update_note(self, note_id: int, content: str) -> Optional[NoteRecord]:
        return self._dispatch("update_note", note_id, content)


def _create_backend(name: str, config: AppConfig) -> Optional[StorageBackend]:
    if name == "memory":
        return MemoryStorage()
    if name == "file":
        try:
            return JsonFileStorage(config.data_file)
        except StorageError as error:
            LOGGER.warning("File storage disabled: %s", error)
            return None
    if name == "sqlite":
        return SQLiteStorage(config.database_file)
    if name == "sheets":
        if not config.credentials.sheets_configured:
            LOGGER.warning("Google Sheets storage requested but credentials are missing; skipping")
            return None
        return GoogleSheetsStorage.from_credentials(config.credentials)
    raise ValueError(f"Unknown storage backend '{name}'")


def build_storage(config: AppConfig) -> FallbackStorage:
    """Build the fallback chain in the configured order, ending with memory."""

    backends: List[StorageBackend] = []
    for name in dict.fromkeys(config.storage_backends):
        backend = _create_backend(name, config)
        if backend is not None:
            backends.append(backend)
    if not any(backend.name == "memory" for backend in backends):
        backends.append(MemoryStorage())

    chain = FallbackStorage(backends)
    chain.configure_event_emitter(functools.partial(emit_db_event, level=logging.DEBUG))
    LOGGER.info("Storage chain ready: %s", " -> ".join(backend.name for backend in backends))
    return chain


__all__ = ["FallbackStorage", "build_storage"]
