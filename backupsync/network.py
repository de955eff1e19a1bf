#!/usr/bin/env python3

"""
network.py

Connectivity monitor. A TCP connect to a well known host stands in for the
browser's online/offline events; listeners fire on transitions only.
"""

from __future__ import annotations

import socket
import threading
from typing import Callable, List

from backupsync.logger import get_logger

ConnectivityListener = Callable[[bool], None]


class ConnectivityMonitor:
    def __init__(self, host: str = "1.1.1.1", port: int = 53, timeout: float = 3.0, probe: bool = True,
                 initial: bool = True):
        self.logger = get_logger(__name__)
        self.host = host
        self.port = port
        self.timeout = timeout
        self.probe = probe
        self._online = initial
        self._lock = threading.Lock()
        self._listeners: List[ConnectivityListener] = []

    def is_online(self) -> bool:
        with self._lock:
            return self._online

    def check(self) -> bool:
        """Probe connectivity and update the flag. Without probing the last known value is kept."""
        if not self.probe:
            return self.is_online()
        try:
            with socket.create_connection((self.host, self.port), timeout=self.timeout):
                online = True
        except OSError as e:
            self.logger.debug(f"Connectivity probe to {self.host}:{self.port} failed: {e}")
            online = False
        self.set_online(online)
        return online

    def set_online(self, online: bool) -> None:
        with self._lock:
            changed = self._online != online
            self._online = online
            listeners = list(self._listeners)
        if not changed:
            return
        self.logger.info("Connectivity restored" if online else "Connectivity lost")
        for listener in listeners:
            try:
                listener(online)
            except Exception as e:
                self.logger.warning(f"Connectivity listener failed: {e}")

    def add_listener(self, listener: ConnectivityListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ConnectivityListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
