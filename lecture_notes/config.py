"""Configuration loading utilities for the Lecture Notes application."""

from __future__ import annotations

import contextlib
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


LOGGER = logging.getLogger(__name__)


_PERMISSION_SENTINEL = ".lecture_notes_write_check"

STORAGE_BACKEND_CHOICES: Tuple[str, ...] = ("sheets", "sqlite", "file", "memory")
TRANSCRIPTION_PROVIDERS: Tuple[str, ...] = ("openai", "assemblyai")

_DEFAULT_STORAGE_BACKENDS: Tuple[str, ...] = ("sqlite", "file", "memory")
_DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024


def _ensure_writable_directory(path: Path) -> bool:
    """Return ``True`` if *path* can be created and written to."""

    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False

    test_file = path / _PERMISSION_SENTINEL
    try:
        with test_file.open("w", encoding="utf-8") as handle:
            handle.write("ok")
    except OSError:
        return False
    finally:
        with contextlib.suppress(OSError):
            test_file.unlink()

    return True


def _select_writable_directory(
    preferred: Path,
    *,
    label: str,
    fallbacks: Iterable[Path] = (),
) -> Tuple[Path, bool]:
    """Return a usable directory based on ``preferred`` and ``fallbacks``.

    The first writable candidate wins. A flag reports whether a fallback was
    used. When nothing can be prepared the original ``preferred`` path is
    returned and the bootstrap step reports the problem.
    """

    preferred = preferred.resolve()
    if _ensure_writable_directory(preferred):
        return preferred, False

    for fallback in fallbacks:
        candidate = fallback.resolve()
        if candidate == preferred:
            continue
        if _ensure_writable_directory(candidate):
            LOGGER.warning(
                "Preferred %s directory '%s' is not writable; using fallback '%s'.",
                label,
                preferred,
                candidate,
            )
            return candidate, True

    LOGGER.warning(
        "%s directory '%s' is not writable and no fallback is available.",
        label.capitalize(),
        preferred,
    )
    return preferred, False


def _relocate(path: Path, preferred_root: Path, actual_root: Path) -> Path:
    """Move *path* under *actual_root* when it lived under *preferred_root*."""

    try:
        relative = path.relative_to(preferred_root)
    except ValueError:
        return path
    return (actual_root / relative).resolve()


def parse_backend_list(value: Any) -> Tuple[str, ...]:
    """Normalise a configured backend order into a tuple of known names."""

    if value is None:
        return _DEFAULT_STORAGE_BACKENDS
    if isinstance(value, str):
        items = [item.strip().lower() for item in value.split(",")]
    else:
        items = [str(item).strip().lower() for item in value]

    backends = []
    for item in items:
        if not item:
            continue
        if item in {"json", "local"}:
            item = "file"
        if item not in STORAGE_BACKEND_CHOICES:
            raise ValueError(f"Unknown storage backend '{item}'")
        if item not in backends:
            backends.append(item)
    return tuple(backends) or _DEFAULT_STORAGE_BACKENDS


@dataclass(frozen=True)
class Credentials:
    """Secrets for the third-party services, read from the environment only."""

    openai_api_key: Optional[str] = None
    assemblyai_api_key: Optional[str] = None
    google_sheets_id: Optional[str] = None
    google_client_email: Optional[str] = None
    google_private_key: Optional[str] = None
    secret_key: Optional[str] = None

    @property
    def sheets_configured(self) -> bool:
        return bool(self.google_sheets_id and self.google_client_email and self.google_private_key)

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "Credentials":
        env = os.environ if environ is None else environ

        def _read(name: str) -> Optional[str]:
            value = (env.get(name) or "").strip()
            return value or None

        private_key = _read("GOOGLE_PRIVATE_KEY")
        if private_key is not None:
            private_key = private_key.replace("\\n", "\n")

        return cls(
            openai_api_key=_read("OPENAI_API_KEY"),
            assemblyai_api_key=_read("ASSEMBLYAI_API_KEY"),
            google_sheets_id=_read("GOOGLE_SHEETS_ID"),
            google_client_email=_read("GOOGLE_CLIENT_EMAIL"),
            google_private_key=private_key,
            secret_key=_read("LECTURE_NOTES_SECRET_KEY"),
        )


@dataclass(frozen=True)
class AppConfig:
    """Runtime paths and service options for the application."""

    storage_root: Path
    database_file: Path
    data_file: Path
    uploads_root: Path
    storage_backends: Tuple[str, ...] = _DEFAULT_STORAGE_BACKENDS
    transcription_provider: str = "openai"
    whisper_model: str = "whisper-1"
    notes_model: str = "gpt-4o"
    format_transcripts: bool = True
    max_upload_bytes: int = _DEFAULT_MAX_UPLOAD_BYTES
    token_ttl_hours: int = 24
    credentials: Credentials = field(default_factory=Credentials)

    @property
    def log_file(self) -> Path:
        return self.storage_root / "lecture_notes.log"

    @classmethod
    def from_mapping(
        cls,
        mapping: Dict[str, Any],
        *,
        base_path: Path,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        env = os.environ if environ is None else environ

        preferred_storage = (base_path / mapping["storage_root"]).resolve()
        storage_fallback = Path.home() / ".lecture_notes" / "storage"
        storage_root, storage_fallback_used = _select_writable_directory(
            preferred_storage,
            label="storage",
            fallbacks=(storage_fallback,),
        )

        database_file = (base_path / mapping["database_file"]).resolve()
        data_file = (base_path / mapping.get("data_file", "storage/data.json")).resolve()
        if storage_fallback_used:
            database_file = _relocate(database_file, preferred_storage, storage_root)
            data_file = _relocate(data_file, preferred_storage, storage_root)
            LOGGER.warning(
                "Storage fallback active; database at '%s', data file at '%s'.",
                database_file,
                data_file,
            )

        preferred_uploads = (base_path / mapping.get("uploads_dir", "uploads")).resolve()
        uploads_root, _ = _select_writable_directory(
            preferred_uploads,
            label="uploads",
            fallbacks=(storage_root / "uploads",),
        )

        backends = parse_backend_list(
            env.get("LECTURE_NOTES_STORAGE_BACKENDS") or mapping.get("storage_backends")
        )

        provider = str(
            env.get("LECTURE_NOTES_TRANSCRIPTION_PROVIDER")
            or mapping.get("transcription_provider")
            or "openai"
        ).strip().lower()
        if provider not in TRANSCRIPTION_PROVIDERS:
            raise ValueError(f"Unknown transcription provider '{provider}'")

        max_upload_bytes = int(mapping.get("max_upload_bytes", _DEFAULT_MAX_UPLOAD_BYTES))
        raw_limit = (env.get("LECTURE_NOTES_MAX_UPLOAD_BYTES") or "").strip()
        if raw_limit:
            try:
                max_upload_bytes = int(raw_limit)
            except ValueError:
                LOGGER.warning("Ignoring invalid LECTURE_NOTES_MAX_UPLOAD_BYTES=%r", raw_limit)

        return cls(
            storage_root=storage_root,
            database_file=database_file,
            data_file=data_file,
            uploads_root=uploads_root,
            storage_backends=backends,
            transcription_provider=provider,
            whisper_model=str(mapping.get("whisper_model", "whisper-1")),
            notes_model=str(mapping.get("notes_model", "gpt-4o")),
            format_transcripts=bool(mapping.get("format_transcripts", True)),
            max_upload_bytes=max_upload_bytes,
            token_ttl_hours=int(mapping.get("token_ttl_hours", 24)),
            credentials=Credentials.from_environ(env),
        )


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load the application configuration from ``config/default.json`` by default."""

    base_path = Path(__file__).resolve().parent.parent
    if config_path is None:
        config_path = base_path / "config" / "default.json"

    with config_path.open("r", encoding="utf-8") as config_file:
        raw_config = json.load(config_file)

    return AppConfig.from_mapping(raw_config, base_path=base_path)


__all__ = [
    "AppConfig",
    "Credentials",
    "STORAGE_BACKEND_CHOICES",
    "TRANSCRIPTION_PROVIDERS",
    "load_config",
    "parse_backend_list",
]
