from __future__ import annotations

import re
from typing import Any, Dict, List

import pytest

from lecture_notes.config import Credentials
from lecture_notes.services.sheets import GoogleSheetsStorage
from lecture_notes.services.storage import DuplicateUserError, StorageUnavailableError


class _Request:
    def __init__(self, handler, **kwargs: Any) -> None:
        self._handler = handler
        self._kwargs = kwargs

    def execute(self) -> Dict[str, Any]:
        return self._handler(**self._kwargs)


class FakeSheetsService:
    """In-memory stand-in for the Sheets v4 discovery client."""

    def __init__(self) -> None:
        self.tabs: Dict[str, List[List[Any]]] = {}
        self.sheet_ids: Dict[str, int] = {}
        self.requests: List[Dict[str, Any]] = []

    # spreadsheets() -------------------------------------------------------
    def spreadsheets(self) -> "FakeSheetsService":
        return self

    def get(self, **kwargs: Any) -> _Request:
        return _Request(self._metadata, **kwargs)

    def batchUpdate(self, **kwargs: Any) -> _Request:
        return _Request(self._batch_update, **kwargs)

    # spreadsheets().values() ---------------------------------------------
    def values(self) -> "_Values":
        return _Values(self)

    def _metadata(self, **_kwargs: Any) -> Dict[str, Any]:
        return {
            "sheets": [
                {"properties": {"title": title, "sheetId": sheet_id}}
                for title, sheet_id in self.sheet_ids.items()
            ]
        }

    def _batch_update(self, spreadsheetId: str, body: Dict[str, Any]) -> Dict[str, Any]:
        replies = []
        for request in body["requests"]:
            self.requests.append(request)
            if "addSheet" in request:
                title = request["addSheet"]["properties"]["title"]
                sheet_id = len(self.sheet_ids) + 100
                self.sheet_ids[title] = sheet_id
                self.tabs[title] = []
                replies.append({"addSheet": {"properties": {"title": title, "sheetId": sheet_id}}})
            elif "deleteDimension" in request:
                window = request["deleteDimension"]["range"]
                title = next(name for name, sid in self.sheet_ids.items() if sid == window["sheetId"])
                del self.tabs[title][window["startIndex"] : window["endIndex"]]
                replies.append({})
        return {"replies": replies}

    @staticmethod
    def parse_range(value: str):
        tab, _, cells = value.partition("!")
        match = re.match(r"A(\d*)", cells)
        start_row = int(match.group(1)) if match and match.group(1) else 1
        return tab, start_row


class _Values:
    def __init__(self, service: FakeSheetsService) -> None:
        self._service = service

    def get(self, **kwargs: Any) -> _Request:
        return _Request(self._get, **kwargs)

    def update(self, **kwargs: Any) -> _Request:
        return _Request(self._update, **kwargs)

    def append(self, **kwargs: Any) -> _Request:
        return _Request(self._append, **kwargs)

    def _get(self, spreadsheetId: str, range: str) -> Dict[str, Any]:
        tab, start_row = FakeSheetsService.parse_range(range)
        rows = self._service.tabs[tab][start_row - 1 :]
        # The API returns every cell as a string.
        return {"values": [["" if cell is None else str(cell) for cell in row] for row in rows]}

    def _update(self, spreadsheetId: str, range: str, valueInputOption: str, body) -> Dict[str, Any]:
        tab, start_row = FakeSheetsService.parse_range(range)
        rows = self._service.tabs[tab]
        while len(rows) < start_row:
            rows.append([])
        rows[start_row - 1] = list(body["values"][0])
        return {}

    def _append(self, spreadsheetId: str, range: str, valueInputOption: str, insertDataOption: str, body):
        assert valueInputOption == "RAW"
        tab, _ = FakeSheetsService.parse_range(range)
        self._service.tabs[tab].extend(list(row) for row in body["values"])
        return {}


@pytest.fixture()
def service() -> FakeSheetsService:
    return FakeSheetsService()


@pytest.fixture()
def sheets(service) -> GoogleSheetsStorage:
    return GoogleSheetsStorage("spreadsheet-id", service=service)


def test_tabs_are_created_with_headers(sheets, service) -> None:
    sheets.get_all_recordings()
    sheets.get_user_by_email("ada@example.com")

    assert service.tabs["Recordings"][0][:3] == ["id", "title", "filename"]
    assert service.tabs["Users"][0] == ["id", "name", "email", "password", "createdAt"]


def test_rows_round_trip_through_string_cells(sheets) -> None:
    recording = sheets.create_recording(
        title="Optics", filename="optics.mp3", file_size=512, file_format="MP3"
    )
    sheets.update_recording_transcribed(recording.id, True)

    loaded = sheets.get_recording(recording.id)

    assert loaded.file_size == 512
    assert loaded.transcribed is True
    assert loaded.notes_generated is False
    assert loaded.created_at == recording.created_at


def test_ids_are_max_plus_one(sheets) -> None:
    first = sheets.create_recording(title="A", filename="a.mp3", file_size=1, file_format="MP3")
    second = sheets.create_recording(title="B", filename="b.mp3", file_size=1, file_format="MP3")

    assert (first.id, second.id) == (1, 2)
    assert [item.id for item in sheets.get_all_recordings()] == [2, 1]


def test_duplicate_emails_are_rejected(sheets) -> None:
    sheets.create_user("Ada", "ada@example.com", "hash")

    with pytest.raises(DuplicateUserError):
        sheets.create_user("Ada", "ADA@example.com", "hash")
    assert sheets.get_user_by_email("Ada@Example.com").name == "Ada"


def test_delete_removes_dependent_rows_bottom_up(sheets, service) -> None:
    recording = sheets.create_recording(title="A", filename="a.mp3", file_size=1, file_format="MP3")
    other = sheets.create_recording(title="B", filename="b.mp3", file_size=1, file_format="MP3")
    sheets.create_transcript(recording.id, "one")
    sheets.create_transcript(other.id, "keep")
    sheets.create_transcript(recording.id, "two")

    assert sheets.delete_recording(recording.id) is True

    delete_requests = [item["deleteDimension"]["range"] for item in service.requests if "deleteDimension" in item]
    transcript_rows = [item["startIndex"] for item in delete_requests[:2]]
    assert transcript_rows == sorted(transcript_rows, reverse=True)
    assert sheets.get_transcript_by_recording_id(recording.id) is None
    assert sheets.get_transcript_by_recording_id(other.id).content == "keep"
    assert sheets.get_recording(recording.id) is None
    assert sheets.get_recording(other.id) is not None


def test_note_update_rewrites_the_row(sheets) -> None:
    note = sheets.create_note(3, "draft")

    updated = sheets.update_note(note.id, "final")

    assert updated.content == "final"
    assert sheets.get_note_by_recording_id(3).content == "final"


def test_missing_credentials_make_the_backend_unavailable() -> None:
    storage = GoogleSheetsStorage.from_credentials(Credentials(google_sheets_id="sheet"))

    with pytest.raises(StorageUnavailableError):
        storage.get_all_recordings()


def test_missing_spreadsheet_id_is_unavailable(service) -> None:
    storage = GoogleSheetsStorage(None, service=service)

    with pytest.raises(StorageUnavailableError):
        storage.get_recording(1)
