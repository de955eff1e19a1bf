#!/usr/bin/env python3

"""
models.py

Dataclasses and enums shared across the backup modules: snapshot metadata,
queue entries, user configuration, operation results and the aggregated
system state.
"""

from __future__ import annotations

import base64
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from backupsync.errors import BackupErrorCode


class Environment(str, Enum):
    PRODUCTION = "production"
    DEVELOPMENT = "development"


class BackupStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"
    OFFLINE_QUEUED = "offline_queued"


class QueueStatus(str, Enum):
    QUEUED = "queued"
    UPLOADING = "uploading"
    ERROR = "error"


class BackupOutcome(str, Enum):
    UPLOADED = "uploaded"
    QUEUED = "queued"
    FAILED = "failed"


class RestoreMode(str, Enum):
    MERGE = "merge"
    REPLACE = "replace"


class RestoreStage(str, Enum):
    DOWNLOAD = "download"
    DECODE = "decode"
    IMPORT = "import"


# ----------------------------------------------------------------------
# Snapshots
# ----------------------------------------------------------------------
@dataclass
class SnapshotMetadata:
    schema_version: str
    app_version: str
    device_id: str
    environment: Environment
    timestamp: str
    size_bytes: int
    content_hash: str
    compressed: bool = True
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["environment"] = self.environment.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SnapshotMetadata":
        return cls(
            schema_version=str(data["schema_version"]),
            app_version=str(data.get("app_version") or ""),
            device_id=str(data.get("device_id") or ""),
            environment=Environment(data.get("environment") or Environment.PRODUCTION.value),
            timestamp=str(data.get("timestamp") or ""),
            size_bytes=int(data.get("size_bytes") or 0),
            content_hash=str(data.get("content_hash") or ""),
            compressed=bool(data.get("compressed", True)),
            description=data.get("description"),
        )


@dataclass
class Snapshot:
    """A compressed, checksummed artifact ready for upload."""

    data: bytes
    metadata: SnapshotMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": base64.b64encode(self.data).decode("ascii"),
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        return cls(
            data=base64.b64decode(data["data"]),
            metadata=SnapshotMetadata.from_dict(data["metadata"]),
        )


@dataclass
class QueueEntry:
    id: str
    snapshot: Snapshot
    file_name: str
    created_at: str
    attempts: int = 0
    status: QueueStatus = QueueStatus.QUEUED
    last_attempt_at: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "snapshot": self.snapshot.to_dict(),
            "file_name": self.file_name,
            "created_at": self.created_at,
            "attempts": self.attempts,
            "status": self.status.value,
            "last_attempt_at": self.last_attempt_at,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueEntry":
        return cls(
            id=str(data["id"]),
            snapshot=Snapshot.from_dict(data["snapshot"]),
            file_name=str(data["file_name"]),
            created_at=str(data.get("created_at") or ""),
            attempts=int(data.get("attempts") or 0),
            status=QueueStatus(data.get("status") or QueueStatus.QUEUED.value),
            last_attempt_at=data.get("last_attempt_at"),
            last_error=data.get("last_error"),
        )


# ----------------------------------------------------------------------
# Configuration and persisted status
# ----------------------------------------------------------------------
@dataclass
class BackupConfig:
    """User facing backup configuration, persisted in the state store."""

    enabled: bool = False
    auto_interval_minutes: int = 30
    max_snapshots_to_keep: int = 5
    backup_on_close: bool = True
    backup_on_critical_actions: bool = True
    notify_on_success: bool = False
    notify_on_error: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: Optional["BackupConfig"] = None) -> "BackupConfig":
        base = (defaults or cls()).to_dict()
        known = {f.name for f in fields(cls)}
        base.update({k: v for k, v in (data or {}).items() if k in known})
        return cls(**base)

    def validate(self) -> None:
        if int(self.auto_interval_minutes) <= 0:
            raise ValueError("auto_interval_minutes must be > 0")
        if int(self.max_snapshots_to_keep) <= 0:
            raise ValueError("max_snapshots_to_keep must be > 0")


@dataclass
class LastBackupStatus:
    status: BackupStatus = BackupStatus.IDLE
    timestamp: Optional[str] = None
    file_name: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "file_name": self.file_name,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastBackupStatus":
        return cls(
            status=BackupStatus(data.get("status") or BackupStatus.IDLE.value),
            timestamp=data.get("timestamp"),
            file_name=data.get("file_name"),
            error=data.get("error"),
        )


@dataclass
class AuthState:
    authenticated: bool = False
    user: Optional[str] = None
    expires_at: Optional[float] = None


# ----------------------------------------------------------------------
# Remote store
# ----------------------------------------------------------------------
@dataclass
class UploadReceipt:
    remote_id: str
    size_bytes: int


@dataclass
class RemoteFile:
    remote_id: str
    name: str
    created_at: datetime
    size_bytes: int
    metadata: Optional[SnapshotMetadata] = None


# ----------------------------------------------------------------------
# Operation options and results
# ----------------------------------------------------------------------
@dataclass
class RestoreOptions:
    mode: RestoreMode = RestoreMode.REPLACE
    validate_schema: bool = True
    create_backup_before_restore: bool = True


@dataclass
class BackupResult:
    success: bool
    outcome: BackupOutcome
    timestamp: str
    file_name: Optional[str] = None
    remote_id: Optional[str] = None
    size_bytes: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[BackupErrorCode] = None


@dataclass
class RestoreResult:
    success: bool
    records_imported: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[BackupErrorCode] = None
    stage: Optional[RestoreStage] = None
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class PruneSummary:
    deleted: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


@dataclass
class SystemState:
    config: BackupConfig
    auth_state: AuthState
    last_backup: LastBackupStatus
    dirty: bool
    queue: List[QueueEntry]
    online: bool
    remote_folder_id: Optional[str]


__all__ = [
    "AuthState",
    "BackupConfig",
    "BackupOutcome",
    "BackupResult",
    "BackupStatus",
    "Environment",
    "LastBackupStatus",
    "PruneSummary",
    "QueueEntry",
    "QueueStatus",
    "RemoteFile",
    "RestoreMode",
    "RestoreOptions",
    "RestoreResult",
    "RestoreStage",
    "Snapshot",
    "SnapshotMetadata",
    "SystemState",
    "UploadReceipt",
]
