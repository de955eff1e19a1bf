#!/usr/bin/env python3

"""
scheduler.py

Periodic backup scheduler.

A background thread ticks every `auto_interval_minutes`. Each tick refreshes
connectivity, triggers a backup when there are unsynced changes and the user
is signed in, then drains the retry queue. Coming back online drains the
queue right away.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from backupsync.logger import get_logger
from backupsync.network import ConnectivityMonitor
from backupsync.state import PersistedState


class Scheduler:
    def __init__(self, state: PersistedState, connectivity: ConnectivityMonitor,
                 is_authenticated: Callable[[], bool], create_backup: Callable[[], object],
                 drain_queue: Callable[[], object], interval_seconds: Optional[float] = None):
        self.logger = get_logger(__name__)
        self.state = state
        self.connectivity = connectivity
        self.is_authenticated = is_authenticated
        self.create_backup = create_backup
        self.drain_queue = drain_queue
        # overrides the configured interval (tests, CLI)
        self.interval_seconds = interval_seconds
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._drain_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            return self._thread is not None

    def current_interval(self) -> float:
        if self.interval_seconds is not None:
            return self.interval_seconds
        return self.state.get_config().auto_interval_minutes * 60.0

    def start(self) -> None:
        self.stop()
        interval = self.current_interval()
        stop_event = threading.Event()

        def loop():
            while not stop_event.wait(interval):
                self.run_once()

        with self._lock:
            self._stop_event = stop_event
            self._thread = threading.Thread(target=loop, name="BackupScheduler", daemon=True)
            self._thread.start()
        self.connectivity.add_listener(self._on_connectivity)
        self.logger.info(f"Backup scheduler started (every {interval / 60:.1f} min)")

    def stop(self) -> None:
        """Cancel future ticks. A tick already uploading is left to finish."""
        with self._lock:
            thread, stop_event = self._thread, self._stop_event
            self._thread = None
            self._stop_event = None
        self.connectivity.remove_listener(self._on_connectivity)
        if thread is None:
            return
        stop_event.set()
        self.logger.info("Backup scheduler stopped")

    def run_once(self) -> None:
        try:
            self.connectivity.check()
        except Exception as e:
            self.logger.warning(f"Connectivity check failed: {e}")

        try:
            if self.state.is_dirty() and self.is_authenticated():
                self.logger.info("Scheduled backup: unsynced changes found")
                self.create_backup()
        except Exception as e:
            self.logger.error(f"Scheduled backup failed: {e}")

        self._safe_drain()

    def _safe_drain(self) -> None:
        try:
            self.drain_queue()
        except Exception as e:
            self.logger.error(f"Queue drain failed: {e}")

    def _on_connectivity(self, online: bool) -> None:
        if online:
            self.drain_in_background()

    def drain_in_background(self) -> threading.Thread:
        t = threading.Thread(target=self._safe_drain, name="QueueDrain", daemon=True)
        self._drain_thread = t
        t.start()
        return t

    def join_drain(self, timeout: Optional[float] = None) -> None:
        t = self._drain_thread
        if t is not None:
            t.join(timeout)
