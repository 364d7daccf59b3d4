import sqlite3
from pathlib import Path

import pytest

import lecture_notes.config as config_module
from lecture_notes.bootstrap import BootstrapError, Bootstrapper
from lecture_notes.config import AppConfig


def _config(tmp_path: Path, backends=("sqlite", "file", "memory")) -> AppConfig:
    storage_root = tmp_path / "storage"
    return AppConfig(
        storage_root=storage_root,
        database_file=storage_root / "lecture_notes.db",
        data_file=storage_root / "data.json",
        uploads_root=tmp_path / "uploads",
        storage_backends=tuple(backends),
    )


def test_bootstrapper_raises_when_storage_directory_unwritable(
    tmp_path: Path, monkeypatch
) -> None:
    config = _config(tmp_path)
    original_ensure = config_module._ensure_writable_directory

    def fake_ensure(path: Path) -> bool:
        if path.resolve() == config.storage_root.resolve():
            return False
        return original_ensure(path)

    monkeypatch.setattr(config_module, "_ensure_writable_directory", fake_ensure)

    with pytest.raises(BootstrapError) as excinfo:
        Bootstrapper(config).initialize()

    assert "storage" in str(excinfo.value).lower()


def test_bootstrapper_creates_schema_idempotently(tmp_path: Path) -> None:
    config = _config(tmp_path)

    Bootstrapper(config).initialize()
    Bootstrapper(config).initialize()

    with sqlite3.connect(config.database_file) as connection:
        tables = {
            row[0]
            for row in connection.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }
    assert {"users", "recordings", "transcripts", "notes"} <= tables
    assert config.uploads_root.is_dir()


def test_bootstrapper_skips_database_without_sqlite_backend(tmp_path: Path) -> None:
    config = _config(tmp_path, backends=("file", "memory"))

    Bootstrapper(config).initialize()

    assert not config.database_file.exists()
