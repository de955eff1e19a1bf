#!/usr/bin/env python3

"""
dirty.py

DirtyTracker: records that local data changed and coalesces bursts of
changes into a single debounced backup trigger.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from backupsync.logger import get_logger
from backupsync.state import PersistedState


class DirtyTracker:
    def __init__(self, state: PersistedState, is_authenticated: Callable[[], bool], trigger: Callable[[], object],
                 debounce_seconds: float = 30.0, timer_factory=threading.Timer):
        self.logger = get_logger(__name__)
        self.state = state
        self.is_authenticated = is_authenticated
        self.trigger = trigger
        self.debounce_seconds = debounce_seconds
        self.timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def mark_dirty(self) -> None:
        self.state.set_dirty(True)
        config = self.state.get_config()
        if not (config.enabled and config.backup_on_critical_actions):
            return
        if not self.is_authenticated():
            self.logger.debug("Change recorded; not signed in, no backup scheduled")
            return
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            timer = self.timer_factory(self.debounce_seconds, self._fire, args=(self._generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()
        self.logger.debug(f"Backup scheduled in {self.debounce_seconds:.0f}s")

    def _fire(self, generation: int) -> None:
        with self._lock:
            # a re-armed timer supersedes this one
            if generation != self._generation:
                return
            self._timer = None
        try:
            self.trigger()
        except Exception as e:
            self.logger.error(f"Debounced backup failed: {e}")

    def clear_dirty(self) -> None:
        self.state.set_dirty(False)

    def is_dirty(self) -> bool:
        return self.state.is_dirty()

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
