"""Bootstrap logic that prepares runtime directories and the SQLite schema."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from . import config as config_module
from .config import AppConfig, load_config

LOGGER = logging.getLogger(__name__)


SCHEMA = """
PRAGMA foreign_keys = ON;
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE COLLATE NOCASE,
    password TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS recordings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    filename TEXT NOT NULL,
    file_size INTEGER NOT NULL,
    file_format TEXT NOT NULL,
    duration INTEGER,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL,
    transcribed INTEGER NOT NULL DEFAULT 0,
    notes_generated INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS transcripts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    recording_id INTEGER NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(recording_id) REFERENCES recordings(id)
);

CREATE TABLE IF NOT EXISTS notes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    recording_id INTEGER NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    FOREIGN KEY(recording_id) REFERENCES recordings(id)
);

CREATE INDEX IF NOT EXISTS idx_transcripts_recording ON transcripts(recording_id);
CREATE INDEX IF NOT EXISTS idx_notes_recording ON notes(recording_id);
"""


class BootstrapError(RuntimeError):
    """Raised when initialization cannot be completed."""


class Bootstrapper:
    """High level object orchestrating initialization steps."""

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def initialize(self) -> None:
        """Run all bootstrap tasks."""

        LOGGER.debug("Starting bootstrap sequence")
        self._ensure_directories()
        if "sqlite" in self._config.storage_backends:
            self._ensure_database()
        LOGGER.info(
            "Bootstrap completed (storage chain: %s)",
            " -> ".join(self._config.storage_backends),
        )

    def _ensure_directories(self) -> None:
        targets = (
            ("storage", self._config.storage_root),
            ("uploads", self._config.uploads_root),
            ("data", self._config.data_file.parent),
            ("database", self._config.database_file.parent),
        )
        for label, path in targets:
            if not config_module._ensure_writable_directory(path):
                raise BootstrapError(
                    f"The {label} directory '{path}' is not writable. "
                    "Update config/default.json or adjust permissions."
                )
            LOGGER.debug("Ensured %s directory exists: %s", label, path)

    def _ensure_database(self) -> None:
        LOGGER.debug("Ensuring database schema at %s", self._config.database_file)
        try:
            connection = sqlite3.connect(self._config.database_file)
        except sqlite3.Error as error:
            raise BootstrapError(
                f"Unable to open database '{self._config.database_file}': {error}"
            ) from error
        try:
            connection.executescript(SCHEMA)
            connection.commit()
        except sqlite3.Error as error:
            raise BootstrapError(f"Unable to prepare database schema: {error}") from error
        finally:
            connection.close()


def initialize_app(config_path: Path | None = None) -> AppConfig:
    """Convenience helper that loads configuration and runs initialization."""

    config = load_config(config_path=config_path)
    bootstrapper = Bootstrapper(config)
    bootstrapper.initialize()
    return config


__all__ = ["BootstrapError", "Bootstrapper", "SCHEMA", "initialize_app"]
