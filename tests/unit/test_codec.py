#!/usr/bin/env python3
"""
Unit tests for codec.py module.
"""

import datetime
import gzip
import json
import re

import pytest

from backupsync.codec import (
    SCHEMA_VERSION,
    SnapshotCodec,
    format_file_size,
    generate_device_id,
    generate_file_name,
    is_schema_compatible,
    parse_file_name,
)
from backupsync.errors import BackupError, BackupErrorCode
from backupsync.models import Environment
from backupsync.utils import sha256_bytes

COLLECTIONS = {
    "players": [{"id": "p1", "name": "Alice"}, {"id": "p2", "name": "Bob"}],
    "games": [{"id": "g1", "title": "Tarot", "score": 12}],
}


def gz(obj) -> bytes:
    return gzip.compress(json.dumps(obj).encode("utf-8"))


class TestEncode:
    def test_metadata_describes_payload(self, codec):
        snap = codec.encode(COLLECTIONS, description="manual")
        meta = snap.metadata
        assert meta.schema_version == SCHEMA_VERSION
        assert meta.app_version == "1.2.3"
        assert meta.device_id == "device_1700000000000_abc123"
        assert meta.environment == Environment.DEVELOPMENT
        assert meta.description == "manual"
        assert meta.compressed is True
        assert meta.size_bytes == len(snap.data)
        assert meta.content_hash == sha256_bytes(snap.data)
        assert meta.timestamp.endswith("Z")

    def test_payload_is_gzip_json_envelope(self, codec):
        snap = codec.encode(COLLECTIONS)
        envelope = json.loads(gzip.decompress(snap.data))
        assert envelope["format"] == 1
        assert envelope["schema_version"] == SCHEMA_VERSION
        assert envelope["data"] == COLLECTIONS

    def test_unserializable_data(self, codec):
        with pytest.raises(BackupError) as exc:
            codec.encode({"players": [{"id": object()}]})
        assert exc.value.code == BackupErrorCode.COMPRESSION_FAILED

    def test_too_large(self, clock):
        small = SnapshotCodec("1.0.0", "device_x", max_snapshot_bytes=10, clock=clock.wall)
        with pytest.raises(BackupError) as exc:
            small.encode(COLLECTIONS)
        assert exc.value.code == BackupErrorCode.FILE_TOO_LARGE
        assert not exc.value.retryable


class TestDecode:
    def test_roundtrip_preserves_collections(self, codec):
        snap = codec.encode(COLLECTIONS, description="before restore")
        decoded = codec.decode(snap.data, snap.metadata.content_hash)
        assert decoded.collections == COLLECTIONS
        assert decoded.schema_version == SCHEMA_VERSION
        assert decoded.description == "before restore"
        assert decoded.summary()["content_hash"] == snap.metadata.content_hash

    def test_hash_mismatch(self, codec):
        snap = codec.encode(COLLECTIONS)
        with pytest.raises(BackupError) as exc:
            codec.decode(snap.data, "0" * 64)
        assert exc.value.code == BackupErrorCode.INVALID_BACKUP
        assert "Checksum mismatch" in exc.value.message

    def test_hash_comparison_ignores_case(self, codec):
        snap = codec.encode(COLLECTIONS)
        decoded = codec.decode(snap.data, snap.metadata.content_hash.upper())
        assert decoded.collections == COLLECTIONS

    @pytest.mark.parametrize(
        "data",
        [
            b"not gzip at all",
            gzip.compress(b"{broken json"),
            gz({"schema_version": "1.0.0"}),
            gz({"data": {"players": {"id": "p1"}}}),
            gz({"data": {"players": ["p1"]}}),
            gz(["data"]),
        ],
        ids=["bad-gzip", "bad-json", "no-data", "collection-not-list", "record-not-object", "not-object"],
    )
    def test_rejects_malformed(self, codec, data):
        with pytest.raises(BackupError) as exc:
            codec.decode(data)
        assert exc.value.code == BackupErrorCode.INVALID_BACKUP

    def test_empty_collections_allowed(self, codec):
        decoded = codec.decode(gz({"schema_version": "1.0.0", "data": {}}))
        assert decoded.collections == {}


class TestSchemaCompatibility:
    @pytest.mark.parametrize(
        "remote,local,expected",
        [
            ("1.0.0", "1.0.0", True),
            ("1.0.5", "1.0.0", True),
            ("1.0.0", "1.2.0", True),
            ("1.3.0", "1.2.0", False),
            ("2.0.0", "1.0.0", False),
            ("0.9.0", "1.0.0", False),
            (None, "1.0.0", False),
            ("", "1.0.0", False),
            ("one.two", "1.0.0", False),
            ("1", "1.0.0", False),
        ],
    )
    def test_rule(self, remote, local, expected):
        assert is_schema_compatible(remote, local) is expected


class TestFileNames:
    def test_generate_and_parse(self):
        now = datetime.datetime(2024, 3, 1, 14, 5, 9, tzinfo=datetime.timezone.utc)
        name = generate_file_name("ScoreKeeper", "device_1700000000000_abc123", Environment.PRODUCTION, now)
        assert name == "ScoreKeeper_device_1700000000000_abc123_production_backup_v1_0_0_01032024-140509.json.gz"

        parsed = parse_file_name(name)
        assert parsed.app_name == "ScoreKeeper"
        assert parsed.device_id == "device_1700000000000_abc123"
        assert parsed.environment == "production"
        assert parsed.schema_version == "1.0.0"
        assert parsed.created_at == now

    def test_timestamp_is_utc(self):
        local = datetime.datetime(2024, 3, 1, 16, 0, 0, tzinfo=datetime.timezone(datetime.timedelta(hours=2)))
        name = generate_file_name("App", "device_1", "development", local)
        assert name.endswith("_01032024-140000.json.gz")

    def test_app_name_sanitised(self):
        now = datetime.datetime(2024, 3, 1, tzinfo=datetime.timezone.utc)
        name = generate_file_name("My_App Pro", "device_1", Environment.DEVELOPMENT, now)
        assert name.startswith("My-App-Pro_device_1_")
        assert parse_file_name(name).app_name == "My-App-Pro"

    @pytest.mark.parametrize("name", ["notes.txt", "App_device_1_production_backup.json.gz", ""])
    def test_parse_rejects_foreign_names(self, name):
        assert parse_file_name(name) is None


class TestHelpers:
    def test_device_id_format(self):
        device_id = generate_device_id()
        assert re.match(r"^device_\d+_[a-z0-9]{11}$", device_id)
        assert generate_device_id() != device_id

    @pytest.mark.parametrize(
        "size,expected",
        [(0, "0 B"), (512, "512 B"), (1536, "1.5 KB"), (50 * 1024 * 1024, "50 MB")],
    )
    def test_format_file_size(self, size, expected):
        assert format_file_size(size) == expected
