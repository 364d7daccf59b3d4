from pathlib import Path

import pytest

import lecture_notes.config as config_module
from lecture_notes.config import AppConfig, Credentials, parse_backend_list


_MAPPING = {
    "storage_root": "storage",
    "database_file": "storage/lecture_notes.db",
    "data_file": "storage/data.json",
    "uploads_dir": "uploads",
}


def test_defaults_resolve_relative_to_base_path(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(dict(_MAPPING), base_path=tmp_path, environ={})

    assert config.storage_root == (tmp_path / "storage").resolve()
    assert config.database_file == (tmp_path / "storage" / "lecture_notes.db").resolve()
    assert config.uploads_root == (tmp_path / "uploads").resolve()
    assert config.storage_backends == ("sqlite", "file", "memory")
    assert config.transcription_provider == "openai"
    assert config.max_upload_bytes == 100 * 1024 * 1024
    assert config.credentials == Credentials()


def test_storage_root_falls_back_when_preferred_is_unusable(
    tmp_path: Path, monkeypatch
) -> None:
    home_dir = tmp_path / "home"
    monkeypatch.setattr(config_module.Path, "home", lambda: home_dir)

    preferred_storage = tmp_path / "storage"
    preferred_storage.write_text("not a directory", encoding="utf-8")

    config = AppConfig.from_mapping(dict(_MAPPING), base_path=tmp_path, environ={})

    expected_storage = (home_dir / ".lecture_notes" / "storage").resolve()
    assert config.storage_root == expected_storage
    assert config.database_file == expected_storage / "lecture_notes.db"
    assert config.data_file == expected_storage / "data.json"
    assert expected_storage.is_dir()


def test_environment_overrides_service_options(tmp_path: Path) -> None:
    environ = {
        "LECTURE_NOTES_STORAGE_BACKENDS": "sheets, json",
        "LECTURE_NOTES_TRANSCRIPTION_PROVIDER": "AssemblyAI",
        "LECTURE_NOTES_MAX_UPLOAD_BYTES": "2048",
        "OPENAI_API_KEY": "sk-test",
        "GOOGLE_SHEETS_ID": "sheet-id",
        "GOOGLE_CLIENT_EMAIL": "robot@example.iam.gserviceaccount.com",
        "GOOGLE_PRIVATE_KEY": "-----BEGIN KEY-----\\nabc\\n-----END KEY-----",
    }

    config = AppConfig.from_mapping(dict(_MAPPING), base_path=tmp_path, environ=environ)

    assert config.storage_backends == ("sheets", "file")
    assert config.transcription_provider == "assemblyai"
    assert config.max_upload_bytes == 2048
    assert config.credentials.openai_api_key == "sk-test"
    assert config.credentials.google_private_key == "-----BEGIN KEY-----\nabc\n-----END KEY-----"
    assert config.credentials.sheets_configured


def test_invalid_upload_limit_is_ignored(tmp_path: Path) -> None:
    config = AppConfig.from_mapping(
        dict(_MAPPING, max_upload_bytes=4096),
        base_path=tmp_path,
        environ={"LECTURE_NOTES_MAX_UPLOAD_BYTES": "lots"},
    )

    assert config.max_upload_bytes == 4096


def test_unknown_transcription_provider_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        AppConfig.from_mapping(
            dict(_MAPPING, transcription_provider="carrier-pigeon"),
            base_path=tmp_path,
            environ={},
        )


def test_parse_backend_list_normalises_and_deduplicates() -> None:
    assert parse_backend_list(None) == ("sqlite", "file", "memory")
    assert parse_backend_list("SQLite,local,sqlite") == ("sqlite", "file")
    assert parse_backend_list([]) == ("sqlite", "file", "memory")
    with pytest.raises(ValueError):
        parse_backend_list("postgres")


def test_sheets_requires_all_three_credentials() -> None:
    partial = Credentials.from_environ({"GOOGLE_SHEETS_ID": "sheet", "GOOGLE_CLIENT_EMAIL": "x@y"})

    assert partial.google_sheets_id == "sheet"
    assert not partial.sheets_configured
