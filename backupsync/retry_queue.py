#!/usr/bin/env python3

"""
retry_queue.py

Durable FIFO of snapshots waiting for upload.

Entries are written to the state store before enqueue() returns, so a crash
between enqueue and upload never loses a snapshot. process() drains the
queue in enqueue order with:

- a single drain at a time (non-blocking busy lock)
- at most `max_attempts` attempts per entry, after which it is abandoned
- exponential backoff after a failed attempt
- the shared UploadThrottle keeping successful uploads apart
"""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from backupsync.errors import BackupErrorCode, as_backup_error
from backupsync.logger import get_logger
from backupsync.models import BackupStatus, QueueEntry, QueueStatus, Snapshot
from backupsync.remote import RemoteStore
from backupsync.state import PersistedState
from backupsync.statistics import StatKey, ThreadSafeStats
from backupsync.utils import utc_now_iso


class UploadThrottle:
    """Time of the last successful upload, shared by direct and queued uploads."""

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self.clock = clock
        self._last: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def last_upload_at(self) -> Optional[float]:
        with self._lock:
            return self._last

    def remaining(self) -> float:
        with self._lock:
            if self._last is None:
                return 0.0
            return max(0.0, self.min_interval - (self.clock() - self._last))

    def record(self) -> None:
        with self._lock:
            self._last = self.clock()

    def reset(self) -> None:
        with self._lock:
            self._last = None


@dataclass
class DrainResult:
    uploaded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    abandoned: List[str] = field(default_factory=list)
    skipped: Optional[str] = None
    interrupted: bool = False

    @property
    def ran(self) -> bool:
        return self.skipped is None


def backoff_delay(attempts_before: int, code: BackupErrorCode, base: float = 2.0, cap: float = 32.0,
                  quota_cap: float = 300.0) -> float:
    limit = quota_cap if code == BackupErrorCode.QUOTA_EXCEEDED else cap
    return min(base * (2 ** attempts_before), limit)


class RetryQueue:
    def __init__(self, state: PersistedState, remote: RemoteStore, throttle: UploadThrottle,
                 is_online: Callable[[], bool], is_authenticated: Callable[[], bool],
                 max_attempts: int = 5, backoff_base: float = 2.0, backoff_cap: float = 32.0,
                 quota_backoff_cap: float = 300.0, sleep: Optional[Callable[[float], object]] = None,
                 stats: Optional[ThreadSafeStats] = None, on_drained: Optional[Callable[[], object]] = None):
        self.logger = get_logger(__name__)
        self.state = state
        self.remote = remote
        self.throttle = throttle
        self.is_online = is_online
        self.is_authenticated = is_authenticated
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.quota_backoff_cap = quota_backoff_cap
        self.stats = stats
        self.on_drained = on_drained
        self._stop = threading.Event()
        self._sleep = sleep or self._stop.wait
        self._busy = threading.Lock()

    def __len__(self) -> int:
        return self.state.queue_length()

    def entries(self) -> List[QueueEntry]:
        return self.state.get_queue()

    @property
    def processing(self) -> bool:
        return self._busy.locked()

    def _count(self, key: StatKey) -> None:
        if self.stats is not None:
            self.stats.increment(key)

    def enqueue(self, snapshot: Snapshot, file_name: str) -> QueueEntry:
        entry = QueueEntry(
            id=uuid.uuid4().hex,
            snapshot=snapshot,
            file_name=file_name,
            created_at=utc_now_iso(),
        )
        self.state.append_queue_entry(entry)
        self._count(StatKey.QUEUED)
        self.logger.info(f"Queued {file_name} for upload ({self.state.queue_length()} pending)")
        return entry

    def clear(self) -> None:
        self.state.save_queue([])

    def cancel(self) -> None:
        """Interrupt waits of a running drain. The upload in flight completes, no new one starts."""
        self._stop.set()

    def resume(self) -> None:
        self._stop.clear()

    def _abandon(self, entry: QueueEntry, reason: str, result: DrainResult) -> None:
        self.state.remove_queue_entry(entry.id)
        self._count(StatKey.ABANDONED)
        result.abandoned.append(entry.file_name)
        self.logger.error(f"Abandoned {entry.file_name} after {entry.attempts} attempts: {reason}")

    def process(self) -> DrainResult:
        if not self._busy.acquire(blocking=False):
            self.logger.debug("Queue drain already running")
            return DrainResult(skipped="busy")
        try:
            if not self.is_online():
                return DrainResult(skipped="offline")
            if not self.is_authenticated():
                return DrainResult(skipped="unauthenticated")
            pending = self.state.get_queue()
            if not pending:
                return DrainResult(skipped="empty")
            result = self._drain(pending)
        finally:
            self._busy.release()

        if self.on_drained is not None and not result.interrupted:
            try:
                self.on_drained()
            except Exception as e:
                self.logger.warning(f"Post-drain hook failed: {e}")
        return result

    def _drain(self, pending: List[QueueEntry]) -> DrainResult:
        result = DrainResult()
        self.logger.info(f"Draining upload queue ({len(pending)} entries)")

        for index, entry in enumerate(pending):
            if self._interrupted(result):
                break

            if entry.attempts >= self.max_attempts:
                self._abandon(entry, entry.last_error or "max attempts reached", result)
                continue

            wait = self.throttle.remaining()
            if wait > 0:
                self.logger.debug(f"Waiting {wait:.1f}s for upload interval")
                self._sleep(wait)
                # a cancelled wait returns early, so re-check before uploading
                if self._interrupted(result):
                    break

            attempts_before = entry.attempts
            entry.status = QueueStatus.UPLOADING
            entry.attempts += 1
            entry.last_attempt_at = utc_now_iso()
            self.state.update_queue_entry(entry)
            if attempts_before > 0:
                self._count(StatKey.RETRIED)

            try:
                self.remote.upload(entry.file_name, entry.snapshot.data, entry.snapshot.metadata)
            except Exception as e:
                err = as_backup_error(e)
                delay = backoff_delay(attempts_before, err.code, self.backoff_base, self.backoff_cap,
                                      self.quota_backoff_cap)
                self.logger.warning(
                    f"Upload of {entry.file_name} failed (attempt {entry.attempts}/{self.max_attempts}, "
                    f"{err.code.value}): {err.message}; backing off {delay:.0f}s"
                )
                entry.last_error = err.message
                if entry.attempts >= self.max_attempts:
                    self._sleep(delay)
                    self._abandon(entry, err.message, result)
                    continue
                entry.status = QueueStatus.ERROR
                self.state.update_queue_entry(entry)
                result.failed.append(entry.file_name)
                self._sleep(delay)
                continue

            self.state.remove_queue_entry(entry.id)
            self.throttle.record()
            self.state.update_last_backup(BackupStatus.SUCCESS, file_name=entry.file_name)
            self._count(StatKey.UPLOADED)
            result.uploaded.append(entry.file_name)
            self.logger.info(f"Uploaded queued snapshot {entry.file_name}")

            if index < len(pending) - 1:
                self._sleep(self.throttle.min_interval)

        if self._stop.is_set():
            result.interrupted = True
        self.logger.info(
            f"Queue drain finished: {len(result.uploaded)} uploaded, {len(result.failed)} failed, "
            f"{len(result.abandoned)} abandoned, {self.state.queue_length()} remaining"
        )
        return result

    def _interrupted(self, result: DrainResult) -> bool:
        if self._stop.is_set():
            self.logger.info("Queue drain interrupted")
        elif not self.is_online():
            self.logger.info("Went offline during queue drain, stopping")
        else:
            return False
        result.interrupted = True
        return True
