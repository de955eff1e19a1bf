#!/usr/bin/env python3

"""
state.py

PersistedState: the single writer of every durable backup field.

Values live in the kv table of the state database (see db.py), one JSON
document per key:

    config       BackupConfig
    dirty        bool
    last_backup  LastBackupStatus
    queue        list of QueueEntry
    folder_id    cached remote folder id
    device_id    stable id of this installation

Reads are served from a write-through in-memory cache. All access is
serialized behind a re-entrant lock, so callers on the scheduler, debounce
and drain threads never observe a half-applied update.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from backupsync import db
from backupsync.logger import get_logger
from backupsync.models import BackupConfig, BackupStatus, LastBackupStatus, QueueEntry
from backupsync.utils import utc_now_iso

KEY_CONFIG = "config"
KEY_DIRTY = "dirty"
KEY_LAST_BACKUP = "last_backup"
KEY_QUEUE = "queue"
KEY_FOLDER_ID = "folder_id"
KEY_DEVICE_ID = "device_id"

DirtyListener = Callable[[bool], None]
StateListener = Callable[[List[str]], None]

ALL_KEYS = [KEY_CONFIG, KEY_DIRTY, KEY_LAST_BACKUP, KEY_QUEUE, KEY_FOLDER_ID, KEY_DEVICE_ID]


class PersistedState:
    def __init__(self, db_path: Path, config_defaults: Optional[BackupConfig] = None):
        self.logger = get_logger(__name__)
        self.db_path = db_path
        self.config_defaults = config_defaults or BackupConfig()
        self._lock = threading.RLock()
        self._cache: Dict[str, Any] = {}
        self._dirty_listeners: List[DirtyListener] = []
        self._state_listeners: List[StateListener] = []
        self._pending: List[str] = []
        self._depth = 0
        db.ensure_schema(db_path)

    # ------------------------------------------------------------------
    # raw access
    # ------------------------------------------------------------------
    @contextmanager
    def _locked(self):
        """Hold the state lock; state listeners hear about changed keys once the outermost holder leaves."""
        changed: List[str] = []
        listeners: List[StateListener] = []
        with self._lock:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    changed, self._pending = self._pending, []
                    listeners = list(self._state_listeners)
        if changed:
            for listener in listeners:
                try:
                    listener(changed)
                except Exception as e:
                    self.logger.warning(f"State listener failed: {e}")

    def _changed(self, *keys: str) -> None:
        for key in keys:
            if key not in self._pending:
                self._pending.append(key)

    def _get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._cache:
                self._cache[key] = db.kv_get(self.db_path, key, default)
            return self._cache[key]

    def _set(self, key: str, value: Any) -> None:
        with self._locked():
            self._cache.pop(key, None)
            db.kv_set(self.db_path, key, value)
            self._cache[key] = value
            self._changed(key)

    # ------------------------------------------------------------------
    # config
    # ------------------------------------------------------------------
    def get_config(self) -> BackupConfig:
        raw = self._get(KEY_CONFIG)
        if raw is None:
            return BackupConfig.from_dict({}, self.config_defaults)
        return BackupConfig.from_dict(raw, self.config_defaults)

    def set_config(self, config: BackupConfig) -> None:
        config.validate()
        self._set(KEY_CONFIG, config.to_dict())

    # ------------------------------------------------------------------
    # dirty flag
    # ------------------------------------------------------------------
    def is_dirty(self) -> bool:
        return bool(self._get(KEY_DIRTY, False))

    def set_dirty(self, dirty: bool) -> None:
        with self._locked():
            previous = self.is_dirty()
            self._set(KEY_DIRTY, bool(dirty))
            listeners = list(self._dirty_listeners)
        if previous == bool(dirty):
            return
        self.logger.debug(f"Dirty flag changed: {previous} -> {bool(dirty)}")
        for listener in listeners:
            try:
                listener(bool(dirty))
            except Exception as e:
                self.logger.warning(f"Dirty listener failed: {e}")

    def add_dirty_listener(self, listener: DirtyListener) -> None:
        with self._locked():
            self._dirty_listeners.append(listener)

    def remove_dirty_listener(self, listener: DirtyListener) -> None:
        with self._locked():
            if listener in self._dirty_listeners:
                self._dirty_listeners.remove(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        """Call `listener` with the list of changed keys after every committed change."""
        with self._locked():
            self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        with self._locked():
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

    # ------------------------------------------------------------------
    # last backup status
    # ------------------------------------------------------------------
    def get_last_backup(self) -> LastBackupStatus:
        raw = self._get(KEY_LAST_BACKUP)
        if raw is None:
            return LastBackupStatus()
        return LastBackupStatus.from_dict(raw)

    def set_last_backup(self, status: LastBackupStatus) -> None:
        self._set(KEY_LAST_BACKUP, status.to_dict())

    def update_last_backup(self, status: BackupStatus, file_name: Optional[str] = None,
                           error: Optional[str] = None) -> LastBackupStatus:
        last = LastBackupStatus(status=status, timestamp=utc_now_iso(), file_name=file_name, error=error)
        self.set_last_backup(last)
        return last

    # ------------------------------------------------------------------
    # retry queue
    # ------------------------------------------------------------------
    def get_queue(self) -> List[QueueEntry]:
        """Return fresh QueueEntry objects; mutating them does not touch the store."""
        raw = self._get(KEY_QUEUE, []) or []
        return [QueueEntry.from_dict(item) for item in raw]

    def save_queue(self, entries: List[QueueEntry]) -> None:
        self._set(KEY_QUEUE, [e.to_dict() for e in entries])

    def append_queue_entry(self, entry: QueueEntry) -> None:
        with self._locked():
            entries = self.get_queue()
            entries.append(entry)
            self.save_queue(entries)

    def update_queue_entry(self, entry: QueueEntry) -> bool:
        with self._locked():
            entries = self.get_queue()
            for i, existing in enumerate(entries):
                if existing.id == entry.id:
                    entries[i] = entry
                    self.save_queue(entries)
                    return True
            return False

    def remove_queue_entry(self, entry_id: str) -> bool:
        with self._locked():
            entries = self.get_queue()
            kept = [e for e in entries if e.id != entry_id]
            if len(kept) == len(entries):
                return False
            self.save_queue(kept)
            return True

    def queue_length(self) -> int:
        return len(self._get(KEY_QUEUE, []) or [])

    # ------------------------------------------------------------------
    # remote folder / device identity
    # ------------------------------------------------------------------
    def get_folder_id(self) -> Optional[str]:
        return self._get(KEY_FOLDER_ID)

    def set_folder_id(self, folder_id: Optional[str]) -> None:
        if folder_id is None:
            with self._locked():
                self._cache.pop(KEY_FOLDER_ID, None)
                db.kv_delete(self.db_path, KEY_FOLDER_ID)
                self._changed(KEY_FOLDER_ID)
            return
        self._set(KEY_FOLDER_ID, folder_id)

    def get_device_id(self, factory: Callable[[], str]) -> str:
        """Return the persisted device id, creating it with `factory` on first use."""
        with self._locked():
            device_id = self._get(KEY_DEVICE_ID)
            if not device_id:
                device_id = factory()
                self._set(KEY_DEVICE_ID, device_id)
                self.logger.info(f"Generated device id {device_id}")
            return device_id

    # ------------------------------------------------------------------
    # housekeeping
    # ------------------------------------------------------------------
    def clear(self, keep_device_id: bool = True) -> None:
        """Wipe every persisted key (sign-out). The device id survives unless asked otherwise."""
        with self._locked():
            device_id = self._get(KEY_DEVICE_ID) if keep_device_id else None
            was_dirty = self.is_dirty()
            db.kv_clear(self.db_path)
            self._cache.clear()
            self._changed(*ALL_KEYS)
            if device_id:
                self._set(KEY_DEVICE_ID, device_id)
            listeners = list(self._dirty_listeners)
        if was_dirty:
            for listener in listeners:
                try:
                    listener(False)
                except Exception as e:
                    self.logger.warning(f"Dirty listener failed: {e}")
