#!/usr/bin/env python3
"""
logger.py - centralized logging for backupsync
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import TimedRotatingFileHandler, RotatingFileHandler
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from backupsync.config import Settings

_LOGGER: Optional[logging.Logger] = None
STATUS_LEVEL = 25
ROOT_NAME = "backupsync"


def _install_status_level() -> None:
    logging.addLevelName(STATUS_LEVEL, "STATUS")

    def status(self, message, *args, **kwargs):
        if self.isEnabledFor(STATUS_LEVEL):
            self._log(STATUS_LEVEL, message, args, **kwargs)

    logging.Logger.status = status  # type: ignore[attr-defined]


_install_status_level()


def setup_logger(settings: "Settings") -> logging.Logger:
    """Initialize global logger once."""
    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER

    log = logging.getLogger(ROOT_NAME)
    log.setLevel(settings.log_level)
    log.propagate = False

    for h in log.handlers[:]:
        log.removeHandler(h)

    settings.log_path.parent.mkdir(parents=True, exist_ok=True)
    if settings.rotate_by_time:
        file_handler = TimedRotatingFileHandler(
            settings.log_path, when="midnight", interval=1, backupCount=settings.max_log_files, encoding="utf-8"
        )
    else:
        file_handler = RotatingFileHandler(
            settings.log_path, maxBytes=settings.max_log_size, backupCount=settings.max_log_files, encoding="utf-8"
        )

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(threadName)s] %(name)s: %(message)s"
    ))
    log.addHandler(file_handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    log.addHandler(console_handler)

    _LOGGER = log
    return log


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Retrieve a logger. If setup_logger() hasn't been called yet,
    return a temporary stderr-based logger.
    """
    if name and name.startswith(ROOT_NAME + "."):
        name = name[len(ROOT_NAME) + 1:]
    if _LOGGER is not None:
        return _LOGGER.getChild(name) if name else _LOGGER

    temp = logging.getLogger(f"{ROOT_NAME}.temp")
    if not temp.handlers:
        h = logging.StreamHandler(sys.stderr)
        h.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        temp.addHandler(h)
        temp.setLevel(logging.INFO)
    return temp.getChild(name) if name else temp


def reset_logger() -> None:
    """Drop the configured logger and close its handlers (used between test runs)."""
    global _LOGGER
    if _LOGGER is None:
        return
    for h in _LOGGER.handlers[:]:
        h.close()
        _LOGGER.removeHandler(h)
    _LOGGER.propagate = True
    _LOGGER = None
