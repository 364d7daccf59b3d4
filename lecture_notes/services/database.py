"""SQLite storage backend."""

from __future__ import annotations

import contextlib
import logging
import sqlite3
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from ..bootstrap import SCHEMA
from .storage import (
    DuplicateUserError,
    NoteRecord,
    RecordingRecord,
    StorageBackend,
    StorageError,
    StorageUnavailableError,
    TranscriptRecord,
    UserRecord,
    utcnow,
    validate_status,
)


LOGGER = logging.getLogger(__name__)

_RECORDING_COLUMNS = (
    "id, title, filename, file_size, file_format, duration, created_at, status, "
    "transcribed, notes_generated"
)
_UPDATABLE_COLUMNS = frozenset({"title", "status", "transcribed", "notes_generated", "duration"})


def _recording_from_row(row: sqlite3.Row) -> RecordingRecord:
    return RecordingRecord.from_storage(dict(row))


class SQLiteStorage(StorageBackend):
    """Relational storage in a local SQLite file."""

    name = "sqlite"

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._schema_ready = False

    @staticmethod
    def _summarize_sql(statement: str) -> str:
        collapsed = " ".join(statement.strip().split())
        return collapsed[:180] + ("…" if len(collapsed) > 180 else "")

    def _execute(
        self,
        connection: sqlite3.Connection,
        statement: str,
        parameters: Sequence[Any] | None = None,
        *,
        action: str,
        table: Optional[str] = None,
    ) -> sqlite3.Cursor:
        params: Tuple[Any, ...] = tuple(parameters or ())
        with self._track_event(
            action,
            table=table,
            sql=self._summarize_sql(statement),
            parameter_count=len(params),
        ) as event:
            cursor = connection.execute(statement, params)
            if cursor.rowcount is not None and cursor.rowcount >= 0:
                event.setdefault("rowcount", int(cursor.rowcount))
            return cursor

    def _connect(self) -> sqlite3.Connection:
        LOGGER.debug("Opening SQLite connection to %s", self._db_path)
        try:
            connection = sqlite3.connect(self._db_path)
        except sqlite3.Error as error:
            raise StorageUnavailableError(
                f"Unable to open database '{self._db_path}': {error}"
            ) from error
        connection.row_factory = sqlite3.Row
        if not self._schema_ready:
            connection.executescript(SCHEMA)
            self._schema_ready = True
        self._execute(connection, "PRAGMA foreign_keys = ON", action="pragma_foreign_keys")
        return connection

    @contextlib.contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes."""

        try:
            with contextlib.closing(self._connect()) as connection:
                with connection:
                    yield connection
        except sqlite3.IntegrityError as error:
            if "users.email" in str(error):
                raise DuplicateUserError(str(error)) from error
            raise StorageError(f"SQLite integrity error: {error}") from error
        except sqlite3.Error as error:
            raise StorageError(f"SQLite error: {error}") from error

    # Users -------------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self._session() as connection:
            row = self._execute(
                connection,
                "SELECT id, name, email, password, created_at FROM users WHERE id = ?",
                (int(user_id),),
                action="users.get",
                table="users",
            ).fetchone()
        return UserRecord.from_storage(dict(row)) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._session() as connection:
            row = self._execute(
                connection,
                "SELECT id, name, email, password, created_at FROM users WHERE email = ? COLLATE NOCASE",
                ((email or "").strip(),),
                action="users.lookup_by_email",
                table="users",
            ).fetchone()
        return UserRecord.from_storage(dict(row)) if row else None

    def create_user(self, name: str, email: str, password: str) -> UserRecord:
        created_at = utcnow()
        with self._track_event("create_user", table="users") as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO users(name, email, password, created_at) VALUES (?, ?, ?, ?)",
                    (name, email.strip(), password, created_at.isoformat()),
                    action="users.insert",
                    table="users",
                )
                user_id = int(cursor.lastrowid)
            event["user_id"] = user_id
        return UserRecord(
            id=user_id, name=name, email=email.strip(), password=password, created_at=created_at
        )

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
        created_at = utcnow()
        status = validate_status(status)
        with self._track_event("create_recording", table="recordings", filename=filename) as event:
            with self._session() as connection:
                cursor = self._execute(
                    connection,
                    "INSERT INTO recordings(title, filename, file_size, file_format, duration, "
                    "created_at, status, transcribed, notes_generated) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        title,
                        filename,
                        int(file_size),
                        file_format,
                        duration,
                        created_at.isoformat(),
                        status,
                        int(bool(transcribed)),
                        int(bool(notes_generated)),
                    ),
                    action="recordings.insert",
                    table="recordings",
                )
                recording_id = int(cursor.lastrowid)
            event["recording_id"] = recording_id
        return RecordingRecord(
            id=recording_id,
            title=title,
            filename=filename,
            file_size=int(file_size),
            file_format=file_format,
            duration=duration,
            created_at=created_at,
            status=status,
            transcribed=bool(transcribed),
            notes_generated=bool(notes_generated),
        )

    def get_recording(self, recording_id: int) -> Optional[RecordingRecord]:
        with self._session() as connection:
            row = self._execute(
                connection,
                f"SELECT {_RECORDING_COLUMNS} FROM recordings WHERE id = ?",
                (int(recording_id),),
                action="recordings.get",
                table="recordings",
            ).fetchone()
        return _recording_from_row(row) if row else None

    def get_all_recordings(self) -> List[RecordingRecord]:
        with self._session() as connection:
            rows = self._execute(
                connection,
                f"SELECT {_RECORDING_COLUMNS} FROM recordings ORDER BY created_at DESC, id DESC",
                action="recordings.list",
                table="recordings",
            ).fetchall()
        return [_recording_from_row(row) for row in rows]

    def update_recording(self, recording_id: int, **changes: Any) -> Optional[RecordingRecord]:
        unknown = set(changes) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported recording fields: {', '.join(sorted(unknown))}")
        if not changes:
            return self.get_recording(recording_id)

        columns = sorted(changes)
        values: List[Any] = []
        for column in columns:
            value = changes[column]
            if column in {"transcribed", "notes_generated"}:
                value = int(bool(value))
            values.append(value)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        with self._session() as connection:
            cursor = self._execute(
                connection,
                f"UPDATE recordings SET {assignments} WHERE id = ?",
                (*values, int(recording_id)),
                action="recordings.update",
                table="recordings",
            )
            if cursor.rowcount == 0:
                return None
            row = self._execute(
                connection,
                f"SELECT {_RECORDING_COLUMNS} FROM recordings WHERE id = ?",
                (int(recording_id),),
                action="recordings.get",
                table="recordings",
            ).fetchone()
        return _recording_from_row(row) if row else None

    def delete_recording(self, recording_id: int) -> bool:
        recording_id = int(recording_id)
        with self._track_event("delete_recording", table="recordings", recording_id=recording_id) as event:
            with self._session() as connection:
                for table in ("transcripts", "notes"):
                    self._execute(
                        connection,
                        f"DELETE FROM {table} WHERE recording_id = ?",
                        (recording_id,),
                        action=f"{table}.delete_for_recording",
                        table=table,
                    )
                cursor = self._execute(
                    connection,
                    "DELETE FROM recordings WHERE id = ?",
                    (recording_id,),
                    action="recordings.delete",
                    table="recordings",
                )
                deleted = cursor.rowcount > 0
            event["deleted"] = deleted
        return deleted

    # Transcripts -------------------------------------------------------
    def create_transcript(self, recording_id: int, content: str) -> TranscriptRecord:
        created_at = utcnow()
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "INSERT INTO transcripts(recording_id, content, created_at) VALUES (?, ?, ?)",
                (int(recording_id), content, created_at.isoformat()),
                action="transcripts.insert",
                table="transcripts",
            )
            transcript_id = int(cursor.lastrowid)
        return TranscriptRecord(
            id=transcript_id, recording_id=int(recording_id), content=content, created_at=created_at
        )

    def get_transcript_by_recording_id(self, recording_id: int) -> Optional[TranscriptRecord]:
        with self._session() as connection:
            row = self._execute(
                connection,
                "SELECT id, recording_id, content, created_at FROM transcripts "
                "WHERE recording_id = ? ORDER BY id DESC LIMIT 1",
                (int(recording_id),),
                action="transcripts.lookup_by_recording",
                table="transcripts",
            ).fetchone()
        return TranscriptRecord.from_storage(dict(row)) if row else None

    # Notes -------------------------------------------------------------
    def create_note(self, recording_id: int, content: str) -> NoteRecord:
        created_at = utcnow()
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "INSERT INTO notes(recording_id, content, created_at) VALUES (?, ?, ?)",
                (int(recording_id), content, created_at.isoformat()),
                action="notes.insert",
                table="notes",
            )
            note_id = int(cursor.lastrowid)
        return NoteRecord(id=note_id, recording_id=int(recording_id), content=content, created_at=created_at)

    def get_note_by_recording_id(self, recording_id: int) -> Optional[NoteRecord]:
        with self._session() as connection:
            row = self._execute(
                connection,
                "SELECT id, recording_id, content, created_at FROM notes "
                "WHERE recording_id = ? ORDER BY id DESC LIMIT 1",
                (int(recording_id),),
                action="notes.lookup_by_recording",
                table="notes",
            ).fetchone()
        return NoteRecord.from_storage(dict(row)) if row else None

    def update_note(self, note_id: int, content: str) -> Optional[NoteRecord]:
        with self._session() as connection:
            cursor = self._execute(
                connection,
                "UPDATE notes SET content = ? WHERE id = ?",
                (content, int(note_id)),
                action="notes.update",
                table="notes",
            )
            if cursor.rowcount == 0:
                return None
            row = self._execute(
                connection,
                "SELECT id, recording_id, content, created_at FROM notes WHERE id = ?",
                (int(note_id),),
                action="notes.get",
                table="notes",
            ).fetchone()
        return NoteRecord.from_storage(dict(row)) if row else None


__all__ = ["SQLiteStorage"]
