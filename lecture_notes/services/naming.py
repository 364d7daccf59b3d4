"""Utility helpers for consistent file naming."""

from __future__ import annotations

import random
import re
import time
from pathlib import PurePath
from typing import Optional

__all__ = [
    "slugify",
    "build_upload_filename",
    "build_download_name",
    "default_title",
    "file_format_for",
]


def slugify(value: str) -> str:
    """Return a filesystem-friendly representation of *value*."""

    value = value.strip().lower()
    value = re.sub(r"[^\w]+", "-", value)
    value = re.sub(r"-+", "-", value).strip("-_")
    return value or "item"


def _suffix(original_name: Optional[str]) -> str:
    return PurePath(original_name or "").suffix.lower()


def build_upload_filename(
    original_name: Optional[str],
    *,
    now_ms: Optional[int] = None,
    token: Optional[int] = None,
) -> str:
    """Return ``<epoch-ms>-<random><ext>`` for an uploaded file."""

    stamp = int(time.time() * 1000) if now_ms is None else int(now_ms)
    unique = random.randint(0, 10**9) if token is None else int(token)
    return f"{stamp}-{unique}{_suffix(original_name)}"


def default_title(original_name: Optional[str]) -> str:
    """Return the upload's base name without extension, used when no title is given."""

    stem = PurePath(original_name or "").stem.strip()
    return stem or "Untitled recording"


def file_format_for(original_name: Optional[str]) -> str:
    """Return the upper-case extension (``MP3``) of *original_name*."""

    return _suffix(original_name).lstrip(".").upper()


def build_download_name(title: str, kind: str, extension: str) -> str:
    """Return an attachment name such as ``organic-chemistry-notes.md``."""

    suffix = extension if extension.startswith(".") else f".{extension}"
    return f"{slugify(title)}-{slugify(kind)}{suffix.lower()}"
