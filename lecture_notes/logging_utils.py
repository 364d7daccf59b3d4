"""Logging setup shared by the CLI and the web server."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Client libraries that log every HTTP round trip at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "googleapiclient.discovery_cache")


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger and quieten chatty client libraries."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return logger


def build_handlers(log_file: Path) -> List[logging.Handler]:
    """Return a file handler for *log_file* plus a console handler."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    return [file_handler, stream_handler]


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "lecture_notes.log"


__all__ = ["build_handlers", "configure_logging", "get_log_file_path", "DEFAULT_LOG_FORMAT"]
