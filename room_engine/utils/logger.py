"""Structured logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from room_engine.utils.config import get_settings


_LOGGER_INITIALIZED = False

# Connection-pool chatter from the HTTP collaborators.
_QUIET_LOGGERS = ("urllib3",)


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Assignments run on request threads and on the queue thread, so the
    thread name is part of every line.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(
        level=resolved_level,
        format="%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, logging.getLevelName(resolved_level)))
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)
