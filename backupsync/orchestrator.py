#!/usr/bin/env python3

"""
orchestrator.py

BackupOrchestrator: the façade the host application talks to.

It wires the collaborators together (state store, remote store, auth
provider, local snapshot source, connectivity monitor) and owns the
backup and restore flows:

    create_backup   rate limit -> auth -> offline -> direct upload,
                    retryable failures fall back to the retry queue
    restore_backup  safety snapshot -> download -> decode / validate -> import
    prune_old_snapshots

Collaborator exceptions (BackupError) are turned into BackupResult /
RestoreResult objects here; nothing below this layer reports to the user.
"""

from __future__ import annotations

import dataclasses
import datetime
import threading
from typing import Callable, List, Optional

from backupsync.auth import AuthProvider, RcloneAuthProvider
from backupsync.codec import (
    SnapshotCodec,
    generate_device_id,
    generate_file_name,
    is_schema_compatible,
)
from backupsync.dirty import DirtyTracker
from backupsync.errors import BackupError, BackupErrorCode, as_backup_error
from backupsync.logger import get_logger
from backupsync.models import (
    BackupConfig,
    BackupOutcome,
    BackupResult,
    BackupStatus,
    PruneSummary,
    QueueEntry,
    RemoteFile,
    RestoreOptions,
    RestoreResult,
    RestoreStage,
    Snapshot,
    SnapshotMetadata,
    SystemState,
)
from backupsync.network import ConnectivityMonitor
from backupsync.remote import RcloneRemoteStore, RemoteStore
from backupsync.retention import prune_snapshots
from backupsync.retry_queue import RetryQueue, UploadThrottle
from backupsync.scheduler import Scheduler
from backupsync.source import ExportOptions, LocalSnapshotSource, SqliteSnapshotSource
from backupsync.state import PersistedState
from backupsync.statistics import StatKey, ThreadSafeStats, create_stats
from backupsync.utils import utc_now, utc_now_iso

Notifier = Callable[[str, str], None]
StateListener = Callable[[SystemState], None]

SAFETY_SNAPSHOT_DESCRIPTION = "pre-restore safety snapshot"
CLOSE_SNAPSHOT_DESCRIPTION = "backup on close"


class BackupOrchestrator:
    def __init__(
            self,
            state: PersistedState,
            remote: RemoteStore,
            auth: AuthProvider,
            source: LocalSnapshotSource,
            connectivity: ConnectivityMonitor,
            codec: SnapshotCodec,
            app_name: str = "LocalApp",
            min_upload_interval: float = 60.0,
            debounce_seconds: float = 30.0,
            max_attempts: int = 5,
            backoff_base: float = 2.0,
            backoff_cap: float = 32.0,
            quota_backoff_cap: float = 300.0,
            throttle: Optional[UploadThrottle] = None,
            stats: Optional[ThreadSafeStats] = None,
            notifier: Optional[Notifier] = None,
            sleep: Optional[Callable[[float], object]] = None,
            timer_factory=threading.Timer,
            clock: Callable[[], datetime.datetime] = utc_now,
            scheduler_interval: Optional[float] = None,
    ):
        self.logger = get_logger(__name__)
        self.state = state
        self.remote = remote
        self.auth = auth
        self.source = source
        self.connectivity = connectivity
        self.codec = codec
        self.app_name = app_name
        self.clock = clock
        self.stats = stats if stats is not None else create_stats()
        self.notifier = notifier or self._log_notification
        self.throttle = throttle or UploadThrottle(min_upload_interval)
        self._backup_lock = threading.Lock()
        self._state_listeners: List[StateListener] = []
        self._listeners_lock = threading.Lock()

        self.queue = RetryQueue(
            state,
            remote,
            self.throttle,
            is_online=connectivity.is_online,
            is_authenticated=auth.is_authenticated,
            max_attempts=max_attempts,
            backoff_base=backoff_base,
            backoff_cap=backoff_cap,
            quota_backoff_cap=quota_backoff_cap,
            sleep=sleep,
            stats=self.stats,
            on_drained=self._prune_quietly,
        )
        self.dirty = DirtyTracker(
            state,
            is_authenticated=auth.is_authenticated,
            trigger=self.create_backup,
            debounce_seconds=debounce_seconds,
            timer_factory=timer_factory,
        )
        self.scheduler = Scheduler(
            state,
            connectivity,
            is_authenticated=auth.is_authenticated,
            create_backup=self.create_backup,
            drain_queue=self.queue.process,
            interval_seconds=scheduler_interval,
        )
        auth.add_listener(self._on_auth_change)
        state.add_state_listener(self._on_state_change)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _log_notification(self, message: str, level: str) -> None:
        self.logger.status(f"[{level.upper()}] {message}")

    def _notify(self, message: str, level: str) -> None:
        try:
            self.notifier(message, level)
        except Exception as e:
            self.logger.warning(f"Notifier failed: {e}")

    def _folder_id(self) -> str:
        folder_id = self.state.get_folder_id()
        if folder_id:
            return folder_id
        folder_id = self.remote.ensure_folder()
        self.state.set_folder_id(folder_id)
        return folder_id

    def _encode(self, description: Optional[str]) -> tuple[Snapshot, str]:
        collections = self.source.export_all(ExportOptions())
        snapshot = self.codec.encode(collections, description)
        file_name = generate_file_name(self.app_name, self.codec.device_id, self.codec.environment, self.clock())
        self.stats.increment(StatKey.CREATED)
        return snapshot, file_name

    def _enqueue(self, snapshot: Snapshot, file_name: str, error: Optional[str] = None) -> QueueEntry:
        entry = self.queue.enqueue(snapshot, file_name)
        self.state.update_last_backup(BackupStatus.OFFLINE_QUEUED, file_name=file_name, error=error)
        return entry

    def _queued_result(self, file_name: str, snapshot: Snapshot, err: Optional[BackupError] = None) -> BackupResult:
        return BackupResult(
            success=True,
            outcome=BackupOutcome.QUEUED,
            timestamp=utc_now_iso(),
            file_name=file_name,
            size_bytes=snapshot.metadata.size_bytes,
            error=err.message if err else None,
            error_code=err.code if err else None,
        )

    def _fail(self, err: BackupError, file_name: Optional[str] = None) -> BackupResult:
        self.state.update_last_backup(BackupStatus.ERROR, file_name=file_name, error=err.message)
        self.stats.increment(StatKey.FAILED)
        self.logger.error(f"Backup failed ({err.code.value}): {err.message}")
        if self.state.get_config().notify_on_error:
            self._notify(f"Backup failed: {err.message}", "error")
        return BackupResult(
            success=False,
            outcome=BackupOutcome.FAILED,
            timestamp=utc_now_iso(),
            file_name=file_name,
            error=err.message,
            error_code=err.code,
        )

    def _prune_quietly(self) -> None:
        try:
            self.prune_old_snapshots()
        except Exception as e:
            self.logger.warning(f"Retention pruning failed: {e}")

    # ------------------------------------------------------------------
    # backup
    # ------------------------------------------------------------------
    def create_backup(self, description: Optional[str] = None) -> BackupResult:
        with self._backup_lock:
            return self._create_backup(description)

    def _create_backup(self, description: Optional[str], prune: bool = True) -> BackupResult:
        if self.throttle.remaining() > 0:
            try:
                snapshot, file_name = self._encode(description)
            except Exception as e:
                return self._fail(as_backup_error(e))
            self.logger.info("Backup requested too soon after the last upload, queueing instead")
            self._enqueue(snapshot, file_name)
            return self._queued_result(file_name, snapshot)

        if not self.auth.is_authenticated():
            return self._fail(BackupError(BackupErrorCode.AUTH_FAILED, "Not signed in to the backup remote"))

        if not self.connectivity.is_online():
            try:
                snapshot, file_name = self._encode(description)
            except Exception as e:
                return self._fail(as_backup_error(e))
            self.logger.info("Offline, queueing backup")
            self._enqueue(snapshot, file_name)
            return self._queued_result(file_name, snapshot)

        self.state.update_last_backup(BackupStatus.UPLOADING)
        file_name: Optional[str] = None
        try:
            snapshot, file_name = self._encode(description)
            receipt = self.remote.upload(file_name, snapshot.data, snapshot.metadata)
        except Exception as e:
            err = as_backup_error(e)
            if err.retryable and file_name is not None:
                self.logger.warning(f"Upload failed ({err.code.value}), queueing {file_name}: {err.message}")
                self._enqueue(snapshot, file_name, error=err.message)
                return self._queued_result(file_name, snapshot, err)
            return self._fail(err, file_name)

        self.throttle.record()
        self.state.update_last_backup(BackupStatus.SUCCESS, file_name=file_name)
        self.dirty.clear_dirty()
        self.stats.increment(StatKey.UPLOADED)
        self.logger.info(f"Backup uploaded: {file_name} ({receipt.size_bytes} bytes)")

        if prune:
            self._prune_quietly()
        if self.state.get_config().notify_on_success:
            self._notify(f"Backup succeeded: {file_name}", "success")

        return BackupResult(
            success=True,
            outcome=BackupOutcome.UPLOADED,
            timestamp=utc_now_iso(),
            file_name=file_name,
            remote_id=receipt.remote_id,
            size_bytes=receipt.size_bytes,
        )

    # ------------------------------------------------------------------
    # restore
    # ------------------------------------------------------------------
    def _listed_metadata(self, file_id: str) -> Optional[SnapshotMetadata]:
        try:
            for f in self.list_backups():
                if f.remote_id == file_id:
                    return f.metadata
        except Exception as e:
            self.logger.debug(f"Could not look up metadata for {file_id}: {e}")
        return None

    def _restore_failed(self, stage: RestoreStage, exc: BaseException) -> RestoreResult:
        err = as_backup_error(exc)
        self.stats.increment(StatKey.FAILED)
        self.logger.error(f"Restore failed at {stage.value} ({err.code.value}): {err.message}")
        if self.state.get_config().notify_on_error:
            self._notify(f"Restore failed: {err.message}", "error")
        return RestoreResult(success=False, error=err.message, error_code=err.code, stage=stage)

    def restore_backup(self, file_id: str, options: Optional[RestoreOptions] = None) -> RestoreResult:
        options = options or RestoreOptions()

        if options.create_backup_before_restore:
            try:
                # no pruning here, it could remove the snapshot being restored
                with self._backup_lock:
                    safety = self._create_backup(SAFETY_SNAPSHOT_DESCRIPTION, prune=False)
                self.logger.info(
                    f"Safety snapshot before restore: {safety.outcome.value}"
                    + (f" ({safety.error})" if safety.error else "")
                )
            except Exception as e:
                self.logger.warning(f"Safety snapshot before restore failed: {e}")

        if not self.auth.is_authenticated():
            return self._restore_failed(
                RestoreStage.DOWNLOAD, BackupError(BackupErrorCode.AUTH_FAILED, "Not signed in to the backup remote")
            )
        try:
            data = self.remote.download(file_id)
        except Exception as e:
            return self._restore_failed(RestoreStage.DOWNLOAD, e)

        listed = self._listed_metadata(file_id)
        try:
            decoded = self.codec.decode(data, expected_hash=listed.content_hash if listed else None)
            schema = decoded.schema_version or (listed.schema_version if listed else None)
            if options.validate_schema and not is_schema_compatible(schema):
                raise BackupError(
                    BackupErrorCode.SCHEMA_INCOMPATIBLE,
                    f"Snapshot schema {schema or 'unknown'} is not supported by this version",
                )
        except Exception as e:
            return self._restore_failed(RestoreStage.DECODE, e)

        try:
            counts = self.source.import_all(decoded.collections, options.mode)
        except Exception as e:
            return self._restore_failed(RestoreStage.IMPORT, e)

        self.dirty.clear_dirty()
        self.stats.increment(StatKey.RESTORED)
        self.logger.info(f"Restored {file_id} ({options.mode.value}): {counts}")
        return RestoreResult(success=True, records_imported=counts, metadata=decoded.summary())

    # ------------------------------------------------------------------
    # remote housekeeping
    # ------------------------------------------------------------------
    def list_backups(self) -> List[RemoteFile]:
        return self.remote.list(self._folder_id())

    def prune_old_snapshots(self, keep: Optional[int] = None) -> PruneSummary:
        keep = keep if keep is not None else self.state.get_config().max_snapshots_to_keep
        return prune_snapshots(self.remote, self._folder_id(), keep, self.stats)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    def mark_dirty(self) -> None:
        self.dirty.mark_dirty()

    def start(self) -> bool:
        config = self.state.get_config()
        if not config.enabled:
            self.logger.info("Automatic backups disabled")
            return False
        if not self.auth.is_authenticated():
            self.logger.info("Not signed in, automatic backups waiting for sign-in")
            return False
        self.queue.resume()
        self.scheduler.start()
        if self.connectivity.is_online():
            self.scheduler.drain_in_background()
        return True

    def stop(self) -> None:
        self.scheduler.stop()
        self.dirty.cancel()
        self.queue.cancel()

    def shutdown(self) -> Optional[QueueEntry]:
        """Queue a final snapshot when there are unsynced changes, then stop. No network access."""
        entry = None
        config = self.state.get_config()
        if config.enabled and config.backup_on_close and self.state.is_dirty() and self.auth.is_authenticated():
            try:
                snapshot, file_name = self._encode(CLOSE_SNAPSHOT_DESCRIPTION)
                entry = self._enqueue(snapshot, file_name)
            except Exception as e:
                self.logger.error(f"Backup on close failed: {e}")
        self.stop()
        return entry

    def update_config(self, **changes) -> BackupConfig:
        known = {f.name for f in dataclasses.fields(BackupConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(sorted(unknown))}")

        current = self.state.get_config()
        updated = dataclasses.replace(current, **changes)
        updated.validate()
        self.state.set_config(updated)
        self.logger.info(f"Backup config updated: {changes}")

        if (updated.enabled != current.enabled
                or updated.auto_interval_minutes != current.auto_interval_minutes):
            if updated.enabled and self.auth.is_authenticated():
                self.queue.resume()
                self.scheduler.start()
            else:
                self.scheduler.stop()
        if not updated.enabled:
            self.dirty.cancel()
        return updated

    def get_state(self) -> SystemState:
        return SystemState(
            config=self.state.get_config(),
            auth_state=self.auth.get_auth_state(),
            last_backup=self.state.get_last_backup(),
            dirty=self.state.is_dirty(),
            queue=self.state.get_queue(),
            online=self.connectivity.is_online(),
            remote_folder_id=self.state.get_folder_id(),
        )

    def add_state_listener(self, listener: StateListener) -> None:
        """Call `listener` with a fresh SystemState whenever persisted state or sign-in changes."""
        with self._listeners_lock:
            self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        with self._listeners_lock:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

    def _emit_state(self) -> None:
        with self._listeners_lock:
            listeners = list(self._state_listeners)
        if not listeners:
            return
        snapshot = self.get_state()
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception as e:
                self.logger.warning(f"State listener failed: {e}")

    def _on_state_change(self, keys: List[str]) -> None:
        self.logger.debug(f"Backup state changed: {', '.join(keys)}")
        self._emit_state()

    def reset(self) -> None:
        """Sign-out cleanup: stop timers, wipe persisted state and caches."""
        self.stop()
        self.state.clear()
        self.throttle.reset()
        self.remote.clear_cache()
        self.logger.info("Backup state reset")

    def _on_auth_change(self, auth_state) -> None:
        if auth_state.authenticated:
            self.queue.resume()
            if self.state.get_config().enabled and not self.scheduler.running:
                self.start()
        else:
            self.stop()
        self._emit_state()


def build_orchestrator(settings, auth: Optional[AuthProvider] = None, remote: Optional[RemoteStore] = None,
                       source: Optional[LocalSnapshotSource] = None,
                       connectivity: Optional[ConnectivityMonitor] = None,
                       notifier: Optional[Notifier] = None,
                       stats: Optional[ThreadSafeStats] = None) -> BackupOrchestrator:
    """Assemble an orchestrator from Settings, using the rclone / SQLite collaborators by default."""
    state = PersistedState(settings.state_db, settings.backup_defaults)
    device_id = state.get_device_id(generate_device_id)
    codec = SnapshotCodec(
        app_version=settings.app_version,
        device_id=device_id,
        environment=settings.environment,
        max_snapshot_bytes=settings.max_snapshot_bytes,
        compress_level=settings.compress_level,
    )
    return BackupOrchestrator(
        state=state,
        remote=remote or RcloneRemoteStore(settings.remote, settings.tmp_dir),
        auth=auth or RcloneAuthProvider(settings.remote, remote_is_local=settings.remote_is_local),
        source=source or SqliteSnapshotSource(settings.source_db),
        connectivity=connectivity or ConnectivityMonitor(
            settings.probe_host, settings.probe_port, settings.probe_timeout, probe=settings.probe_enabled
        ),
        codec=codec,
        app_name=settings.app_name,
        min_upload_interval=settings.min_upload_interval,
        debounce_seconds=settings.debounce_seconds,
        max_attempts=settings.max_attempts,
        backoff_base=settings.backoff_base,
        backoff_cap=settings.backoff_cap,
        quota_backoff_cap=settings.quota_backoff_cap,
        stats=stats,
        notifier=notifier,
    )
