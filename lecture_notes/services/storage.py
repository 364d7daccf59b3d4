"""Record types, the storage interface and the local (memory / JSON file) backends."""

from __future__ import annotations

import abc
import contextlib
import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


RECORDING_STATUSES: Tuple[str, ...] = ("pending", "processing", "completed", "failed")


class StorageError(RuntimeError):
    """Raised when a storage backend cannot complete an operation."""


class StorageUnavailableError(StorageError):
    """Raised when a backend (or every backend of a chain) cannot be reached."""


class StorageWriteError(StorageError):
    """Raised when a mutation could not be persisted."""


class DuplicateUserError(ValueError):
    """Raised when registering an email address that already exists."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Return an aware :class:`datetime` for ISO strings, epoch numbers or datetimes."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    text = str(value or "").strip()
    if not text:
        return utcnow()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)


def _as_optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(float(value))


@dataclass(frozen=True)
class UserRecord:
    id: int
    name: str
    email: str
    password: str
    created_at: datetime

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "password": self.password,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_storage(cls, data: Mapping[str, Any]) -> "UserRecord":
        return cls(
            id=int(data["id"]),
            name=str(data.get("name") or ""),
            email=str(data.get("email") or ""),
            password=str(data.get("password") or ""),
            created_at=parse_timestamp(data.get("created_at")),
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialise for API responses; the password hash is never included."""

        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "username": self.email,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class RecordingRecord:
    id: int
    title: str
    filename: str
    file_size: int
    file_format: str
    duration: Optional[int]
    created_at: datetime
    status: str
    transcribed: bool = False
    notes_generated: bool = False

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "filename": self.filename,
            "file_size": self.file_size,
            "file_format": self.file_format,
            "duration": self.duration,
            "created_at": self.created_at.isoformat(),
            "status": self.status,
            "transcribed": self.transcribed,
            "notes_generated": self.notes_generated,
        }

    @classmethod
    def from_storage(cls, data: Mapping[str, Any]) -> "RecordingRecord":
        return cls(
            id=int(data["id"]),
            title=str(data.get("title") or ""),
            filename=str(data.get("filename") or ""),
            file_size=int(float(data.get("file_size") or 0)),
            file_format=str(data.get("file_format") or ""),
            duration=_as_optional_int(data.get("duration")),
            created_at=parse_timestamp(data.get("created_at")),
            status=str(data.get("status") or "pending"),
            transcribed=_as_bool(data.get("transcribed")),
            notes_generated=_as_bool(data.get("notes_generated")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "filename": self.filename,
            "fileSize": self.file_size,
            "fileFormat": self.file_format,
            "duration": self.duration,
            "createdAt": self.created_at.isoformat(),
            "status": self.status,
            "transcribed": self.transcribed,
            "notesGenerated": self.notes_generated,
        }


@dataclass(frozen=True)
class TranscriptRecord:
    id: int
    recording_id: int
    content: str
    created_at: datetime

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recording_id": self.recording_id,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_storage(cls, data: Mapping[str, Any]) -> "TranscriptRecord":
        return cls(
            id=int(data["id"]),
            recording_id=int(data["recording_id"]),
            content=str(data.get("content") or ""),
            created_at=parse_timestamp(data.get("created_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "recordingId": self.recording_id, "content": self.content}


@dataclass(frozen=True)
class NoteRecord:
    id: int
    recording_id: int
    content: str
    created_at: datetime

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recording_id": self.recording_id,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_storage(cls, data: Mapping[str, Any]) -> "NoteRecord":
        return cls(
            id=int(data["id"]),
            recording_id=int(data["recording_id"]),
            content=str(data.get("content") or ""),
            created_at=parse_timestamp(data.get("created_at")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "recordingId": self.recording_id, "content": self.content}


def validate_status(status: str) -> str:
    normalized = str(status).strip().lower()
    if normalized not in RECORDING_STATUSES:
        raise ValueError(f"Unknown recording status '{status}'")
    return normalized


def sort_newest_first(recordings: List[RecordingRecord]) -> List[RecordingRecord]:
    return sorted(recordings, key=lambda item: (item.created_at, item.id), reverse=True)


class StorageBackend(abc.ABC):
    """CRUD interface implemented by every storage backend."""

    name: str = "backend"

    _event_emitter: Optional[Callable[..., None]] = None

    def configure_event_emitter(self, emitter: Optional[Callable[..., None]]) -> None:
        """Register the callable responsible for emitting storage events."""

        self._event_emitter = emitter

    @contextlib.contextmanager
    def _track_event(self, action: str, **payload: Any) -> Iterator[Dict[str, Any]]:
        """Report *action* and the duration of the wrapped block to the emitter."""

        event_payload: Dict[str, Any] = {"backend": self.name, **payload}
        if self._event_emitter is None:
            yield event_payload
            return

        start = time.perf_counter()
        try:
            yield event_payload
        except Exception as exc:
            event_payload.setdefault("status", "error")
            event_payload.setdefault("error", f"{exc.__class__.__name__}: {exc}")
            raise
        finally:
            event_payload.setdefault("status", "ok")
            duration_ms = (time.perf_counter() - start) * 1000.0
            filtered = {key: value for key, value in event_payload.items() if value is not None}
            self._event_emitter(action, payload=filtered, duration_ms=duration_ms)

    # Users -------------------------------------------------------------
    @abc.abstractmethod
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        ...

    @abc.abstractmethod
    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        """Usernames are email addresses."""

        return self.get_user_by_email(username)

    @abc.abstractmethod
    def create_user(self, name: str, email: str, password: str) -> UserRecord:
        ...

    # Recordings --------------------------------------------------------
    @abc.abstractmethod
    def create_recording(
        self,
        *,
        title: str,
        filename: str,
        file_size: int,
        file_format: str,
        duration: Optional[int] = 0,
        status: str = "pending",
        transcribed: bool = False,
        notes_generated: bool = False,
    ) -> RecordingRecord:
        ...

    @abc.abstractmethod
    def get_recording(self, recording_id: int) -> Optional[RecordingRecord]:
        ...

    @abc.abstractmethod
    def get_all_recordings(self) -> List[RecordingRecord]:
        ...

    @abc.abstractmethod
    def update_recording(self, recording_id: int, **changes: Any) -> Optional[RecordingRecord]:
        """Apply *changes* to a recording and return it, or ``None`` when unknown."""

    def update_recording_status(self, recording_id: int, status: str) -> Optional[RecordingRecord]:
        return self.update_recording(recording_id, status=validate_status(status))

    def update_recording_transcribed(
        self, recording_id: int, transcribed: bool
    ) -> Optional[RecordingRecord]:
        return self.update_recording(recording_id, transcribed=bool(transcribed))

    def update_recording_notes_generated(
        self, recording_id: int, notes_generated: bool
    ) -> Optional[RecordingRecord]:
        return self.update_recording(recording_id, notes_generated=bool(notes_generated))

    def update_recording_title(self, recording_id: int, title: str) -> Optional[RecordingRecord]:
        return self.update_recording(recording_id, title=title)

    def update_recording_duration(
        self, recording_id: int, duration: Optional[int]
    ) -> Optional[RecordingRecord]:
        return self.update_recording(
            recording_id, duration=None if duration is None else int(duration)
        )

    @abc.abstractmethod
    def delete_recording(self, recording_id: int) -> bool:
        """Delete a recording with its transcript and note."""

    # Transcripts -------------------------------------------------------
    @abc.abstractmethod
    def create_transcript(self, recording_id: int, content: str) -> TranscriptRecord:
        ...

    @abc.abstractmethod
    def get_transcript_by_recording_id(self, recording_id: int) -> Optional[TranscriptRecord]:
        ...

    # Notes -------------------------------------------------------------
    @abc.abstractmethod
    def create_note(self, recording_id: int, content: str) -> NoteRecord:
        ...

    @abc.abstractmethod
    def get_note_by_recording_id(self, recording_id: int) -> Optional[NoteRecord]:
        ...

    @abc.abstractmethod
    def update_note(self, note_id: int, content: str) -> Optional[NoteRecord]:
        ...


_RECORDING_MUTABLE_FIELDS = frozenset(
    {"title", "status", "transcribed", "notes_generated", "duration"}
)

_ENTITIES: Tuple[str, ...] = ("users", "recordings", "transcripts", "notes")


class MemoryStorage(StorageBackend):
    """Dictionary-backed storage; the last link of every fallback chain."""

    name = "memory"

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: Dict[int, UserRecord] = {}
        self._recordings: Dict[int, RecordingRecord] = {}
        self._transcripts: Dict[int, TranscriptRecord] = {}
        self._notes: Dict[int, NoteRecord] = {}
        self._next_ids: Dict[str, int] = {entity: 1 for entity in _ENTITIES}

    # Hooks for persistent subclasses -----------------------------------
    def _commit(self) -> None:
        """Persist the current state; in-memory storage has nothing to do."""

    def _snapshot(self) -> Tuple[Any, ...]:
        return (
            dict(self._users),
            dict(self._recordings),
            dict(self._transcripts),
            dict(self._notes),
            dict(self._next_ids),
        )

    def _restore(self, snapshot: Tuple[Any, ...]) -> None:
        (
            self._users,
            self._recordings,
            self._transcripts,
            self._notes,
            self._next_ids,
        ) = snapshot

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = self._snapshot()
            try:
                yield
                self._commit()
            except BaseException:
                self._restore(snapshot)
                raise

    def _allocate_id(self, entity: str) -> int:
        value = self._next_ids[entity]
        self._next_ids[entity] = value + 1
        return value

    # Users -------------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._lock:
            return self._users.get(int(user_id))

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        needle = (email or "").strip().lower()
        with self._lock:
            return next(
                (user for user in self._users.values() if user.email.lower() == needle),
                None,
            )

    def create_user(self, name: str, email: str, password: str) -> UserRecord:
        with self._transaction():
            if self.get_user_by_email(email) is not None:
                raise DuplicateUserError(f"Email '{email}' is already registered")
            user = UserRecord(
                id=self._allocate_id("users"),
                name=name,
                email=email.strip(),
                password=password,
                created_at=utcnow(),
            )
            self._users[user.id] = user
        LOGGER.debug("[%s] created user id=%s", self.name, user.id)
        return user

    # Recordings --------------------------------------------------------
    def create_recording(
        self,
        *,
        title: str,
        filename: str,
        file_size: int,
        file_format: str,
        duration: Optional[int] = 0,
        status: str = "pending",
        transcribed: bool = False,
        notes_generated: bool = False,
    ) -> RecordingRecord:
        with self._transaction():
            recording = RecordingRecord(
                id=self._allocate_id("recordings"),
                title=title,
                filename=filename,
                file_size=int(file_size),
                file_format=file_format,
                duration=duration,
                created_at=utcnow(),
                status=validate_status(status),
                transcribed=bool(transcribed),
                notes_generated=bool(notes_generated),
            )
            self._recordings[recording.id] = recording
        LOGGER.debug("[%s] created recording id=%s", self.name, recording.id)
        return recording

    def get_recording(self, recording_id: int) -> Optional[RecordingRecord]:
        with self._lock:
            return self._recordings.get(int(recording_id))

    def get_all_recordings(self) -> List[RecordingRecord]:
        with self._lock:
            return sort_newest_first(list(self._recordings.values()))

    def update_recording(self, recording_id: int, **changes: Any) -> Optional[RecordingRecord]:
        unknown = set(changes) - _RECORDING_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported recording fields: {', '.join(sorted(unknown))}")
        with self._transaction():
            current = self._recordings.get(int(recording_id))
            if current is None:
                return None
            updated = replace(current, **changes)
            self._recordings[updated.id] = updated
        return updated

    def delete_recording(self, recording_id: int) -> bool:
        recording_id = int(recording_id)
        with self._transaction():
            if recording_id not in self._recordings:
                return False
            for transcript_id in [
                item.id for item in self._transcripts.values() if item.recording_id == recording_id
            ]:
                del self._transcripts[transcript_id]
            for note_id in [
                item.id for item in self._notes.values() if item.recording_id == recording_id
            ]:
                del self._notes[note_id]
            del self._recordings[recording_id]
        LOGGER.debug("[%s] deleted recording id=%s with dependants", self.name, recording_id)
        return True

    # Transcripts -------------------------------------------------------
    def create_transcript(self, recording_id: int, content: str) -> TranscriptRecord:
        with self._transaction():
            transcript = TranscriptRecord(
                id=self._allocate_id("transcripts"),
                recording_id=int(recording_id),
                content=content,
                created_at=utcnow(),
            )
            self._transcripts[transcript.id] = transcript
        return transcript

    def get_transcript_by_recording_id(self, recording_id: int) -> Optional[TranscriptRecord]:
        with self._lock:
            matches = [
                item for item in self._transcripts.values() if item.recording_id == int(recording_id)
            ]
        return max(matches, key=lambda item: item.id) if matches else None

    # Notes -------------------------------------------------------------
    def create_note(self, recording_id: int, content: str) -> NoteRecord:
        with self._transaction():
            note = NoteRecord(
                id=self._allocate_id("notes"),
                recording_id=int(recording_id),
                content=content,
                created_at=utcnow(),
            )
            self._notes[note.id] = note
        return note

    def get_note_by_recording_id(self, recording_id: int) -> Optional[NoteRecord]:
        with self._lock:
            matches = [item for item in self._notes.values() if item.recording_id == int(recording_id)]
        return max(matches, key=lambda item: item.id) if matches else None

    def update_note(self, note_id: int, content: str) -> Optional[NoteRecord]:
        with self._transaction():
            current = self._notes.get(int(note_id))
            if current is None:
                return None
            updated = replace(current, content=content)
            self._notes[updated.id] = updated
        return updated


class JsonFileStorage(MemoryStorage):
    """Memory storage mirrored to a single JSON document after every mutation."""

    name = "file"

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = Path(path)
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            LOGGER.info("Creating empty data file at %s", self._path)
            with self._lock:
                self._commit()
            return

        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            users = {int(item["id"]): UserRecord.from_storage(item) for item in payload.get("users", [])}
            recordings = {
                int(item["id"]): RecordingRecord.from_storage(item)
                for item in payload.get("recordings", [])
            }
            transcripts = {
                int(item["id"]): TranscriptRecord.from_storage(item)
                for item in payload.get("transcripts", [])
            }
            notes = {int(item["id"]): NoteRecord.from_storage(item) for item in payload.get("notes", [])}
            stored_ids = payload.get("next_ids") or {}
        except (OSError, ValueError, KeyError, TypeError) as error:
            LOGGER.error("Could not read data file %s; starting empty: %s", self._path, error)
            return

        next_ids: Dict[str, int] = {}
        for entity, records in (
            ("users", users),
            ("recordings", recordings),
            ("transcripts", transcripts),
            ("notes", notes),
        ):
            highest = max(records, default=0) + 1
            next_ids[entity] = max(int(stored_ids.get(entity, 1)), highest)

        with self._lock:
            self._restore((users, recordings, transcripts, notes, next_ids))
        LOGGER.info(
            "Loaded %s users and %s recordings from %s",
            len(users),
            len(recordings),
            self._path,
        )

    def _commit(self) -> None:
        document = {
            "users": [item.to_storage() for item in self._users.values()],
            "recordings": [item.to_storage() for item in self._recordings.values()],
            "transcripts": [item.to_storage() for item in self._transcripts.values()],
            "notes": [item.to_storage() for item in self._notes.values()],
            "next_ids": dict(self._next_ids),
        }
        with self._track_event("file.save", path=str(self._path)) as event:
            temp_name: Optional[str] = None
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                handle, temp_name = tempfile.mkstemp(
                    prefix=f".{self._path.name}.", dir=str(self._path.parent)
                )
                with os.fdopen(handle, "w", encoding="utf-8") as stream:
                    json.dump(document, stream, indent=2, ensure_ascii=False)
                os.replace(temp_name, self._path)
            except OSError as error:
                if temp_name is not None:
                    with contextlib.suppress(OSError):
                        os.unlink(temp_name)
                raise StorageWriteError(f"Unable to write {self._path}: {error}") from error
            event["records"] = sum(len(document[entity]) for entity in _ENTITIES)


__all__ = [
    "DuplicateUserError",
    "JsonFileStorage",
    "MemoryStorage",
    "NoteRecord",
    "RECORDING_STATUSES",
    "RecordingRecord",
    "StorageBackend",
    "StorageError",
    "StorageUnavailableError",
    "StorageWriteError",
    "TranscriptRecord",
    "UserRecord",
    "parse_timestamp",
    "sort_newest_first",
    "utcnow",
    "validate_status",
]
