"""Google Sheets storage backend.

Each entity lives in its own worksheet tab with a header row. The sheet is
treated as a flat table: reads fetch the whole tab, ids are ``max(id) + 1`` and
deletes remove rows bottom-up so earlier row numbers stay valid.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..config import Credentials
from .storage import (
    DuplicateUserError,
    NoteRecord,
    RecordingRecord,
    StorageBackend,
    StorageUnavailableError,
    TranscriptRecord,
    UserRecord,
    sort_newest_first,
    utcnow,
    validate_status,
)


LOGGER = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


@dataclass(frozen=True)
class _Table:
    tab: str
    headers: Tuple[str, ...]
    fields: Tuple[str, ...]
    record_type: Any

    @property
    def last_column(self) -> str:
        return chr(ord("A") + len(self.headers) - 1)


_USERS = _Table(
    "Users",
    ("id", "name", "email", "password", "createdAt"),
    ("id", "name", "email", "password", "created_at"),
    UserRecord,
)
_RECORDINGS = _Table(
    "Recordings",
    (
        "id",
        "title",
        "filename",
        "fileSize",
        "fileFormat",
        "duration",
        "createdAt",
        "status",
        "transcribed",
        "notesGenerated",
    ),
    (
        "id",
        "title",
        "filename",
        "file_size",
        "file_format",
        "duration",
        "created_at",
        "status",
        "transcribed",
        "notes_generated",
    ),
    RecordingRecord,
)
_TRANSCRIPTS = _Table(
    "Transcripts",
    ("id", "recordingId", "content", "createdAt"),
    ("id", "recording_id", "content", "created_at"),
    TranscriptRecord,
)
_NOTES = _Table(
    "Notes",
    ("id", "recordingId", "content", "createdAt"),
    ("id", "recording_id", "content", "created_at"),
    NoteRecord,
)


def build_sheets_service(credentials: Credentials) -> Any:
    """Return an authorised Sheets v4 service for the configured service account."""

    if not credentials.sheets_configured:
        raise StorageUnavailableError(
            "Google Sheets credentials are not configured "
            "(GOOGLE_SHEETS_ID, GOOGLE_CLIENT_EMAIL, GOOGLE_PRIVATE_KEY)"
        )
    info = {
        "type": "service_account",
        "client_email": credentials.google_client_email,
        "private_key": credentials.google_private_key,
        "token_uri": "https://oauth2.googleapis.com/token",
    }
    try:
        account = service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)
    except (ValueError, GoogleAuthError) as error:
        raise StorageUnavailableError(f"Invalid Google service account: {error}") from error
    return build("sheets", "v4", credentials=account, cache_discovery=False)


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


class GoogleSheetsStorage(StorageBackend):
    """Storage backend writing one row per record into a Google spreadsheet."""

    name = "sheets"

    def __init__(
        self,
        spreadsheet_id: Optional[str],
        *,
        credentials: Optional[Credentials] = None,
        service: Any = None,
        service_factory: Callable[[Credentials], Any] = build_sheets_service,
    ) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._credentials = credentials or Credentials()
        self._service = service
        self._service_factory = service_factory
        self._sheet_ids: Dict[str, int] = {}
        self._lock = threading.RLock()

    @classmethod
    def from_credentials(cls, credentials: Credentials) -> "GoogleSheetsStorage":
        return cls(credentials.google_sheets_id, credentials=credentials)

    # Plumbing ----------------------------------------------------------
    def _api(self) -> Any:
        if not self._spreadsheet_id:
            raise StorageUnavailableError("GOOGLE_SHEETS_ID is not configured")
        if self._service is None:
            self._service = self._service_factory(self._credentials)
            LOGGER.info("Connected to Google Sheets spreadsheet %s", self._spreadsheet_id)
        return self._service

    def _call(self, action: str, request: Any, **payload: Any) -> Dict[str, Any]:
        with self._track_event(action, **payload):
            try:
                return request.execute() or {}
            except (HttpError, GoogleAuthError, OSError) as error:
                raise StorageUnavailableError(f"Google Sheets {action} failed: {error}") from error

    def _ensure_tab(self, table: _Table) -> int:
        if table.tab in self._sheet_ids:
            return self._sheet_ids[table.tab]

        api = self._api()
        metadata = self._call(
            "spreadsheet.get",
            api.spreadsheets().get(spreadsheetId=self._spreadsheet_id, fields="sheets.properties"),
        )
        for sheet in metadata.get("sheets", []):
            properties = sheet.get("properties", {})
            self._sheet_ids[properties.get("title")] = int(properties.get("sheetId", 0))

        if table.tab not in self._sheet_ids:
            LOGGER.info("Creating worksheet '%s' with headers", table.tab)
            reply = self._call(
                "spreadsheet.add_sheet",
                api.spreadsheets().batchUpdate(
                    spreadsheetId=self._spreadsheet_id,
                    body={"requests": [{"addSheet": {"properties": {"title": table.tab}}}]},
                ),
                tab=table.tab,
            )
            replies = reply.get("replies") or [{}]
            sheet_id = replies[0].get("addSheet", {}).get("properties", {}).get("sheetId", 0)
            self._call(
                "values.update_headers",
                api.spreadsheets().values().update(
                    spreadsheetId=self._spreadsheet_id,
                    range=f"{table.tab}!A1:{table.last_column}1",
                    valueInputOption="RAW",
                    body={"values": [list(table.headers)]},
                ),
                tab=table.tab,
            )
            self._sheet_ids[table.tab] = int(sheet_id)
        return self._sheet_ids[table.tab]

    def _read(self, table: _Table) -> List[Tuple[int, Any]]:
        """Return ``(row_number, record)`` pairs for every parseable row of *table*."""

        self._ensure_tab(table)
        response = self._call(
            "values.get",
            self._api().spreadsheets().values().get(
                spreadsheetId=self._spreadsheet_id,
                range=f"{table.tab}!A2:{table.last_column}",
            ),
            tab=table.tab,
        )
        rows: List[Tuple[int, Any]] = []
        for offset, values in enumerate(response.get("values", [])):
            padded = list(values) + [""] * (len(table.fields) - len(values))
            mapping = dict(zip(table.fields, padded))
            if not str(mapping.get("id", "")).strip():
                continue
            try:
                rows.append((offset + 2, table.record_type.from_storage(mapping)))
            except (KeyError, TypeError, ValueError) as error:
                LOGGER.warning("Skipping malformed row %s in '%s': %s", offset + 2, table.tab, error)
        return rows

    def _row_values(self, table: _Table, record: Any) -> List[Any]:
        data = record.to_storage()
        return [_cell(data[field]) for field in table.fields]

    def _append(self, table: _Table, record: Any) -> None:
        self._call(
            "values.append",
            self._api().spreadsheets().values().append(
                spreadsheetId=self._spreadsheet_id,
                range=f"{table.tab}!A:{table.last_column}",
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [self._row_values(table, record)]},
            ),
            tab=table.tab,
            record_id=record.id,
        )

    def _rewrite(self, table: _Table, row_number: int, record: Any) -> None:
        self._call(
            "values.update",
            self._api().spreadsheets().values().update(
                spreadsheetId=self._spreadsheet_id,
                range=f"{table.tab}!A{row_number}:{table.last_column}{row_number}",
                valueInputOption="RAW",
                body={"values": [self._row_values(table, record)]},
            ),
            tab=table.tab,
            row=row_number,
        )

    def _delete_rows(self, table: _Table, row_numbers: Sequence[int]) -> None:
        if not row_numbers:
            return
        sheet_id = self._ensure_tab(table)
        requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "ROWS",
                        "startIndex": row - 1,
                        "endIndex": row,
                    }
                }
            }
            for row in sorted(set(row_numbers), reverse=True)
        ]
        self._call(
            "spreadsheet.delete_rows",
            self._api().spreadsheets().batchUpdate(
                spreadsheetId=self._spreadsheet_id, body={"requests": requests}
            ),
            tab=table.tab,
            rows=len(requests),
        )

    @staticmethod
    def _next_id(rows: List[Tuple[int, Any]]) -> int:
        return max((record.id for _, record in rows), default=0) + 1

    def _find(self, table: _Table, record_id: int) -> Optional[Tuple[int, Any]]:
        return next(
            ((row, record) for row, record in self._read(table) if record.id == int(record_id)),
            None,
        )

    def _latest_for_recording(self, table: _Table, recording_id: int) -> Optional[Any]:
        matches = [record for _, record in self._read(table) if record.recording_id == int(recording_id)]
        return max(matches, key=lambda item: item.id) if matches else None

    # Users -------------------------------------------------------------
    def get_user(self, user_id: int) -> Optional[UserRecord]:
        found = self._find(_USERS, user_id)
        return found[1] if found else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        needle = (email or "").strip().lower()
        return next(
            (user for _, user in self._read(_USERS) if user.email.strip().lower() == needle),
            None,
        )

    def create_user(self, name: str, email: str, password: str) -> UserRecord:
        with self._lock:
            rows = self._read(_USERS)
            needle = email.strip().lower()
            if any(user.email.strip().lower() == needle for _, user in rows):
                raise DuplicateUserError(f"Email '{email}' is already registered")
            user = UserRecord(
                id=self._next_id(rows),
                name=name,
                email=email.strip(),
                password=password,
                created_at=utcnow(),
            )
            self._append(_USERS, user)
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
        with self._lock:
            recording = RecordingRecord(
                id=self._next_id(self._read(_RECORDINGS)),
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
            self._append(_RECORDINGS, recording)
        return recording

    def get_recording(self, recording_id: int) -> Optional[RecordingRecord]:
        found = self._find(_RECORDINGS, recording_id)
        return found[1] if found else None

    def get_all_recordings(self) -> List[RecordingRecord]:
        return sort_newest_first([record for _, record in self._read(_RECORDINGS)])

    def update_recording(self, recording_id: int, **changes: Any) -> Optional[RecordingRecord]:
        with self._lock:
            found = self._find(_RECORDINGS, recording_id)
            if found is None:
                return None
            row, current = found
            data = current.to_storage()
            for key, value in changes.items():
                if key not in data or key in {"id", "created_at"}:
                    raise ValueError(f"Unsupported recording field: {key}")
                data[key] = value
            updated = RecordingRecord.from_storage(data)
            self._rewrite(_RECORDINGS, row, updated)
        return updated

    def delete_recording(self, recording_id: int) -> bool:
        recording_id = int(recording_id)
        with self._lock:
            found = self._find(_RECORDINGS, recording_id)
            if found is None:
                return False
            for table in (_TRANSCRIPTS, _NOTES):
                rows = [row for row, record in self._read(table) if record.recording_id == recording_id]
                self._delete_rows(table, rows)
            self._delete_rows(_RECORDINGS, [found[0]])
        return True

    # Transcripts -------------------------------------------------------
    def create_transcript(self, recording_id: int, content: str) -> TranscriptRecord:
        with self._lock:
            transcript = TranscriptRecord(
                id=self._next_id(self._read(_TRANSCRIPTS)),
                recording_id=int(recording_id),
                content=content,
                created_at=utcnow(),
            )
            self._append(_TRANSCRIPTS, transcript)
        return transcript

    def get_transcript_by_recording_id(self, recording_id: int) -> Optional[TranscriptRecord]:
        return self._latest_for_recording(_TRANSCRIPTS, recording_id)

    # Notes -------------------------------------------------------------
    def create_note(self, recording_id: int, content: str) -> NoteRecord:
        with self._lock:
            note = NoteRecord(
                id=self._next_id(self._read(_NOTES)),
                recording_id=int(recording_id),
                content=content,
                created_at=utcnow(),
            )
            self._append(_NOTES, note)
        return note

    def get_note_by_recording_id(self, recording_id: int) -> Optional[NoteRecord]:
        return self._latest_for_recording(_NOTES, recording_id)

    def update_note(self, note_id: int, content: str) -> Optional[NoteRecord]:
        with self._lock:
            found = self._find(_NOTES, note_id)
            if found is None:
                return None
            row, current = found
            updated = NoteRecord(
                id=current.id,
                recording_id=current.recording_id,
                content=content,
                created_at=current.created_at,
            )
            self._rewrite(_NOTES, row, updated)
        return updated


__all__ = ["GoogleSheetsStorage", "SHEETS_SCOPES", "build_sheets_service"]
