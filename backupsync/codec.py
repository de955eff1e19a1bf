#!/usr/bin/env python3

"""
codec.py

SnapshotCodec: turns the exported collections into an uploadable artifact
and back.

Artifact layout: compact JSON envelope

    {"format": 1, "schema_version": ..., "app_version": ..., "device_id": ...,
     "environment": ..., "timestamp": ..., "description": ..., "data": {...}}

gzip-compressed. The SHA-256 in the metadata is computed over the gzip bytes,
i.e. exactly what is uploaded.
"""

from __future__ import annotations

import datetime
import gzip
import json
import random
import re
import string
import time
import zlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from backupsync.errors import BackupError, BackupErrorCode
from backupsync.logger import get_logger
from backupsync.models import Environment, Snapshot, SnapshotMetadata
from backupsync.utils import sha256_bytes, utc_now

SCHEMA_VERSION = "1.0.0"
ENVELOPE_FORMAT = 1
FILE_SUFFIX = ".json.gz"

Collections = Dict[str, List[Dict[str, Any]]]

_FILE_NAME_RE = re.compile(
    r"^(?P<app>[^_]+)_(?P<device>.+)_(?P<env>[a-z]+)_backup_v(?P<schema>\d+(?:_\d+)*)"
    r"_(?P<ts>\d{8}-\d{6})\.json\.gz$"
)


@dataclass
class DecodedSnapshot:
    collections: Collections
    schema_version: Optional[str]
    app_version: Optional[str]
    device_id: Optional[str]
    environment: Optional[str]
    timestamp: Optional[str]
    description: Optional[str]
    content_hash: str
    size_bytes: int

    def summary(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "app_version": self.app_version,
            "device_id": self.device_id,
            "environment": self.environment,
            "timestamp": self.timestamp,
            "description": self.description,
            "content_hash": self.content_hash,
            "size_bytes": self.size_bytes,
        }


@dataclass
class ParsedFileName:
    app_name: str
    device_id: str
    environment: str
    schema_version: str
    created_at: datetime.datetime


def generate_device_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=11))
    return f"device_{int(time.time() * 1000)}_{suffix}"


def _file_safe(value: str) -> str:
    # underscores separate the name fields
    return re.sub(r"[^A-Za-z0-9.-]+", "-", value).strip("-") or "app"


def generate_file_name(app_name: str, device_id: str, environment: Environment | str,
                       now: Optional[datetime.datetime] = None,
                       schema_version: str = SCHEMA_VERSION) -> str:
    now = (now or utc_now()).astimezone(datetime.timezone.utc)
    env = environment.value if isinstance(environment, Environment) else str(environment)
    stamp = now.strftime("%d%m%Y-%H%M%S")
    schema = schema_version.replace(".", "_")
    return f"{_file_safe(app_name)}_{device_id}_{env}_backup_v{schema}_{stamp}{FILE_SUFFIX}"


def parse_file_name(name: str) -> Optional[ParsedFileName]:
    """Reverse generate_file_name. Returns None for names that do not follow the convention."""
    m = _FILE_NAME_RE.match(name)
    if not m:
        return None
    try:
        created = datetime.datetime.strptime(m.group("ts"), "%d%m%Y-%H%M%S")
    except ValueError:
        return None
    return ParsedFileName(
        app_name=m.group("app"),
        device_id=m.group("device"),
        environment=m.group("env"),
        schema_version=m.group("schema").replace("_", "."),
        created_at=created.replace(tzinfo=datetime.timezone.utc),
    )


def _parse_version(version: str) -> Optional[List[int]]:
    parts = str(version).strip().split(".")
    if len(parts) < 2:
        return None
    try:
        return [int(p) for p in parts]
    except ValueError:
        return None


def is_schema_compatible(remote_version: Optional[str], local_version: str = SCHEMA_VERSION) -> bool:
    """Compatible iff same major and remote minor <= local minor."""
    if not remote_version:
        return False
    remote = _parse_version(remote_version)
    local = _parse_version(local_version)
    if remote is None or local is None:
        return False
    return remote[0] == local[0] and remote[1] <= local[1]


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 B"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{value:.2f}".rstrip("0").rstrip(".") + f" {unit}"
        value /= 1024
    return f"{size} B"


class SnapshotCodec:
    """Encode collections into gzip snapshots and decode them back."""

    def __init__(self, app_version: str, device_id: str, environment: Environment = Environment.PRODUCTION,
                 max_snapshot_bytes: int = 50 * 1024 * 1024, compress_level: int = 6,
                 clock: Callable[[], datetime.datetime] = utc_now):
        self.logger = get_logger(__name__)
        self.app_version = app_version
        self.device_id = device_id
        self.environment = environment
        self.max_snapshot_bytes = max_snapshot_bytes
        self.compress_level = compress_level
        self.clock = clock

    def encode(self, collections: Collections, description: Optional[str] = None) -> Snapshot:
        timestamp = self.clock().astimezone(datetime.timezone.utc).isoformat().replace("+00:00", "Z")
        envelope = {
            "format": ENVELOPE_FORMAT,
            "schema_version": SCHEMA_VERSION,
            "app_version": self.app_version,
            "device_id": self.device_id,
            "environment": self.environment.value,
            "timestamp": timestamp,
            "description": description,
            "data": collections,
        }
        try:
            raw = json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
            payload = gzip.compress(raw, compresslevel=self.compress_level)
        except (TypeError, ValueError) as e:
            raise BackupError(BackupErrorCode.COMPRESSION_FAILED, f"Snapshot could not be serialized: {e}", e)

        if len(payload) > self.max_snapshot_bytes:
            raise BackupError(
                BackupErrorCode.FILE_TOO_LARGE,
                f"Snapshot is {format_file_size(len(payload))}, limit is {format_file_size(self.max_snapshot_bytes)}",
            )

        metadata = SnapshotMetadata(
            schema_version=SCHEMA_VERSION,
            app_version=self.app_version,
            device_id=self.device_id,
            environment=self.environment,
            timestamp=timestamp,
            size_bytes=len(payload),
            content_hash=sha256_bytes(payload),
            compressed=True,
            description=description,
        )
        self.logger.debug(
            f"Encoded snapshot: {sum(len(v) for v in collections.values())} records, "
            f"{len(raw)} -> {len(payload)} bytes"
        )
        return Snapshot(data=payload, metadata=metadata)

    def decode(self, data: bytes, expected_hash: Optional[str] = None) -> DecodedSnapshot:
        digest = sha256_bytes(data)
        if expected_hash and expected_hash.lower() != digest:
            raise BackupError(
                BackupErrorCode.INVALID_BACKUP,
                f"Checksum mismatch: expected {expected_hash}, got {digest}",
            )
        try:
            raw = gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise BackupError(BackupErrorCode.INVALID_BACKUP, f"Snapshot is not valid gzip: {e}", e)
        try:
            envelope = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise BackupError(BackupErrorCode.INVALID_BACKUP, f"Snapshot is not valid JSON: {e}", e)

        if not isinstance(envelope, dict) or not isinstance(envelope.get("data"), dict):
            raise BackupError(BackupErrorCode.INVALID_BACKUP, "Snapshot has no 'data' object")

        collections: Collections = {}
        for name, rows in envelope["data"].items():
            if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
                raise BackupError(BackupErrorCode.INVALID_BACKUP, f"Collection '{name}' is not a list of records")
            collections[name] = rows

        return DecodedSnapshot(
            collections=collections,
            schema_version=envelope.get("schema_version"),
            app_version=envelope.get("app_version"),
            device_id=envelope.get("device_id"),
            environment=envelope.get("environment"),
            timestamp=envelope.get("timestamp"),
            description=envelope.get("description"),
            content_hash=digest,
            size_bytes=len(data),
        )
