#!/usr/bin/env python3

"""
statistics.py

Thread-safe statistics tracking and status reporting for backupsync.

Counters are shared by the orchestrator, the retry queue drain and the
scheduler thread, and reported periodically in daemon mode.
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Dict, Optional

from backupsync.logger import get_logger


class StatKey(Enum):
    CREATED = "Created"
    UPLOADED = "Uploaded"
    QUEUED = "Queued"
    RETRIED = "Retried"
    ABANDONED = "Abandoned"
    FAILED = "Failed"
    PRUNED = "Pruned"
    RESTORED = "Restored"


def _normalize_key(key: StatKey | str) -> StatKey:
    """
    Normalize a key to StatKey enum.

    Accepts the enum itself, its name ("uploaded") or its label ("Uploaded").

    Raises:
        KeyError: If string key is not recognized
    """
    if isinstance(key, StatKey):
        return key
    if isinstance(key, str):
        normalized = key.strip().upper().replace("-", "_").replace(" ", "_")
        if normalized in StatKey.__members__:
            return StatKey[normalized]
        raise KeyError(f"Unknown statistic key: {key}")
    raise TypeError(f"Key must be StatKey or str, got {type(key)}")


class ThreadSafeStats:
    """
    Thread-safe statistics counter.

    Provides atomic increment operations and thread-safe access to counters.
    """

    def __init__(self):
        self._counters: Dict[StatKey, int] = {}
        self._lock = threading.Lock()

    def increment(self, key: StatKey | str, value: int = 1) -> None:
        key = _normalize_key(key)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def set(self, key: StatKey | str, value: int) -> None:
        key = _normalize_key(key)
        with self._lock:
            self._counters[key] = value

    def get(self, key: StatKey | str, default: int = 0) -> int:
        key = _normalize_key(key)
        with self._lock:
            return self._counters.get(key, default)

    def get_all(self) -> Dict[str, int]:
        """
        Get a snapshot of all counters.

        Returns:
            Dictionary of lowercase key names to values
        """
        with self._lock:
            return {key.name.lower(): value for key, value in self._counters.items()}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()

    def __getitem__(self, key: StatKey | str) -> int:
        return self.get(key, 0)

    def format_status(self) -> str:
        """
        Format current statistics as a status string.
        """
        with self._lock:
            snapshot = dict(self._counters)
        txt = " | "
        for key in StatKey:
            txt += f"{key.value}: {snapshot.get(key, 0)} | "
        return txt


class StatusThread:
    """
    Background thread for periodic status reporting.
    """

    def __init__(self, interval: int, counters: ThreadSafeStats, extra=None):
        """
        Initialize status reporter.

        Args:
            interval: Seconds between status reports
            counters: Statistics counters
            extra: Optional callable returning text appended to each report (e.g. queue depth)
        """
        self.logger = get_logger(__name__)
        self.interval = interval
        self.counters = counters
        self.extra = extra
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None:
            return

        def reporter():
            while not self._stop_event.wait(self.interval):
                self.logger.status(self.get_status_summary())

        t = threading.Thread(target=reporter, name="StatusReporter", daemon=True)
        t.start()
        self._thread = t

    def stop(self):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    def get_status_summary(self) -> str:
        summary = self.counters.format_status()
        if self.extra is not None:
            summary += self.extra()
        return summary


def log_status(stats: ThreadSafeStats, stage: str = ""):
    """
    Log current statistics at the STATUS level.

    Args:
        stats: Statistics counters
        stage: Optional stage name to include in log message
    """
    logger = get_logger(__name__)
    prefix = f"[{stage}] " if stage else ""
    logger.status(prefix + stats.format_status())


def create_stats() -> ThreadSafeStats:
    return ThreadSafeStats()
