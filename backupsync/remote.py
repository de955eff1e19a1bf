#!/usr/bin/env python3

"""
remote.py

RemoteStore contract and its rclone implementation.

The rclone store keeps every snapshot as a single file inside one remote
folder (any rclone remote, or a plain local directory). Uploads land under a
temporary name first and are moved into place, so a listing never shows a
half-written snapshot. Remote ids are full rclone paths.
"""

from __future__ import annotations

import datetime
import json
import subprocess
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from backupsync.codec import FILE_SUFFIX, parse_file_name
from backupsync.errors import BackupError, BackupErrorCode
from backupsync.logger import get_logger
from backupsync.models import Environment, RemoteFile, SnapshotMetadata, UploadReceipt
from backupsync.rclone import (
    rclone_cat,
    rclone_copyto,
    rclone_deletefile,
    rclone_lsjson,
    rclone_mkdir,
    rclone_moveto,
)
from backupsync.utils import ensure_dirs, parse_iso, write_bytes_atomic

# rclone exit codes
EXIT_DIR_NOT_FOUND = 3
EXIT_FILE_NOT_FOUND = 4
EXIT_TEMPORARY = 5
EXIT_FATAL = 7
EXIT_TRANSFER_LIMIT = 8

_NETWORK_MARKERS = (
    "connection refused",
    "connection reset",
    "no such host",
    "network is unreachable",
    "timeout",
    "dial tcp",
    "temporary failure in name resolution",
)


class RemoteStore(ABC):
    """Where snapshots are kept. Every method raises BackupError on failure."""

    @abstractmethod
    def ensure_folder(self) -> str:
        """Return the id of the backup folder, creating it if needed. Idempotent and cached."""

    @abstractmethod
    def upload(self, file_name: str, data: bytes, metadata: SnapshotMetadata) -> UploadReceipt:
        """Store `data` as `file_name`. Uploading the same name twice overwrites."""

    @abstractmethod
    def list(self, folder_id: str) -> List[RemoteFile]:
        """Snapshots in the folder, newest first."""

    @abstractmethod
    def download(self, remote_id: str) -> bytes:
        ...

    @abstractmethod
    def delete(self, remote_id: str) -> None:
        """Delete a snapshot. A file that is already gone counts as deleted."""

    def clear_cache(self) -> None:
        """Forget any cached folder id."""


def classify_rclone_error(returncode: int, stderr: str, action: str) -> BackupError:
    """Map an rclone exit code and its stderr onto the backup error taxonomy."""
    text = (stderr or "").lower()
    message = f"rclone {action} failed (exit {returncode}): {(stderr or '').strip()[:300]}"

    if "401" in text or ("token" in text and ("expired" in text or "invalid" in text)):
        return BackupError(BackupErrorCode.TOKEN_EXPIRED, message)
    if returncode == EXIT_TRANSFER_LIMIT or "quota" in text or "rate limit" in text:
        return BackupError(BackupErrorCode.QUOTA_EXCEEDED, message)
    if returncode == EXIT_FATAL or "permission" in text or "403" in text or "forbidden" in text:
        return BackupError(BackupErrorCode.PERMISSION_DENIED, message)
    if returncode == EXIT_TEMPORARY or any(m in text for m in _NETWORK_MARKERS):
        return BackupError(BackupErrorCode.NETWORK_ERROR, message)
    if returncode == EXIT_DIR_NOT_FOUND or "directory not found" in text:
        return BackupError(BackupErrorCode.FOLDER_NOT_FOUND, message)
    return BackupError(BackupErrorCode.UNKNOWN_ERROR, message)


class RcloneRemoteStore(RemoteStore):
    def __init__(self, remote: str, tmp_dir: Path):
        self.logger = get_logger(__name__)
        self.remote = remote.rstrip("/")
        self.tmp_dir = tmp_dir
        self._folder_id: Optional[str] = None

    def _call(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except subprocess.TimeoutExpired as e:
            raise BackupError(BackupErrorCode.NETWORK_ERROR, f"rclone {action} timed out", e)
        except FileNotFoundError as e:
            raise BackupError(BackupErrorCode.UNKNOWN_ERROR, "rclone executable not found", e)

    def ensure_folder(self) -> str:
        if self._folder_id is not None:
            return self._folder_id
        res = self._call("mkdir", rclone_mkdir, self.remote)
        if res.returncode != 0:
            raise classify_rclone_error(res.returncode, res.stderr, "mkdir")
        self._folder_id = self.remote
        self.logger.debug(f"Backup folder ready: {self.remote}")
        return self._folder_id

    def clear_cache(self) -> None:
        self._folder_id = None

    def _discard(self, remote_path: str) -> None:
        """Best-effort removal of a partial upload. The copy or move failure is what gets reported."""
        try:
            res = self._call("deletefile", rclone_deletefile, remote_path)
        except BackupError as e:
            self.logger.warning(f"Could not remove {remote_path}: {e.message}")
            return
        if res.returncode != 0:
            self.logger.debug(f"Could not remove {remote_path}: rclone exit {res.returncode}")

    def upload(self, file_name: str, data: bytes, metadata: SnapshotMetadata) -> UploadReceipt:
        folder = self.ensure_folder()
        remote_final = f"{folder}/{file_name}"
        remote_tmp = f"{remote_final}.tmp.{uuid.uuid4().hex}"

        ensure_dirs(self.tmp_dir)
        local_path = self.tmp_dir / file_name
        write_bytes_atomic(local_path, data)
        try:
            res = self._call("copyto", rclone_copyto, local_path, remote_tmp)
            if res.returncode != 0:
                self._discard(remote_tmp)
                raise classify_rclone_error(res.returncode, res.stderr, "copyto")
            res = self._call("moveto", rclone_moveto, remote_tmp, remote_final)
            if res.returncode != 0:
                self._discard(remote_tmp)
                raise classify_rclone_error(res.returncode, res.stderr, "moveto")
        finally:
            local_path.unlink(missing_ok=True)

        self.logger.info(f"Uploaded {file_name} ({len(data)} bytes) to {folder}")
        return UploadReceipt(remote_id=remote_final, size_bytes=len(data))

    def list(self, folder_id: str) -> List[RemoteFile]:
        res = self._call(
            "lsjson", rclone_lsjson, folder_id, "--files-only", "--hash", "--hash-type", "sha256",
        )
        if res.returncode != 0:
            raise classify_rclone_error(res.returncode, res.stderr, "lsjson")
        try:
            entries = json.loads(res.stdout or "[]")
        except json.JSONDecodeError as e:
            raise BackupError(BackupErrorCode.UNKNOWN_ERROR, f"Unreadable rclone listing: {e}", e)

        files: List[RemoteFile] = []
        for entry in entries:
            name = entry.get("Name") or entry.get("Path") or ""
            if not name.endswith(FILE_SUFFIX) or ".tmp." in name:
                continue
            files.append(self._to_remote_file(folder_id, name, entry))
        files.sort(key=lambda f: f.created_at, reverse=True)
        return files

    def _to_remote_file(self, folder_id: str, name: str, entry: dict) -> RemoteFile:
        size = int(entry.get("Size") or 0)
        hashes = entry.get("Hashes") or {}
        content_hash = str(hashes.get("sha256") or hashes.get("SHA-256") or "")
        mod_time = parse_iso(entry.get("ModTime")) or datetime.datetime.fromtimestamp(0, datetime.timezone.utc)

        parsed = parse_file_name(name)
        metadata: Optional[SnapshotMetadata] = None
        created_at = mod_time
        if parsed is not None:
            created_at = parsed.created_at
            try:
                environment = Environment(parsed.environment)
            except ValueError:
                environment = None
            if environment is not None:
                metadata = SnapshotMetadata(
                    schema_version=parsed.schema_version,
                    app_version="",
                    device_id=parsed.device_id,
                    environment=environment,
                    timestamp=parsed.created_at.isoformat().replace("+00:00", "Z"),
                    size_bytes=size,
                    content_hash=content_hash,
                )
        return RemoteFile(
            remote_id=f"{folder_id}/{name}",
            name=name,
            created_at=created_at,
            size_bytes=size,
            metadata=metadata,
        )

    def download(self, remote_id: str) -> bytes:
        res = self._call("cat", rclone_cat, remote_id)
        if res.returncode != 0:
            stderr = res.stderr.decode("utf-8", errors="replace") if isinstance(res.stderr, bytes) else res.stderr
            raise classify_rclone_error(res.returncode, stderr, "cat")
        return res.stdout or b""

    def delete(self, remote_id: str) -> None:
        res = self._call("deletefile", rclone_deletefile, remote_id)
        if res.returncode == 0:
            return
        stderr = (res.stderr or "").lower()
        if res.returncode == EXIT_FILE_NOT_FOUND or "not found" in stderr:
            self.logger.debug(f"{remote_id} already gone")
            return
        raise classify_rclone_error(res.returncode, res.stderr, "deletefile")
