#!/usr/bin/env python3
"""
Unit tests for config.py module.
"""

from pathlib import Path

import pytest

from backupsync import rclone
from backupsync.config import (
    Settings,
    _coerce_bool,
    _coerce_float,
    _coerce_int,
    load_settings,
)
from backupsync.models import Environment


class TestCoercion:
    """Tests for the value coercion helpers."""

    @pytest.mark.parametrize("value,expected", [
        ("yes", True), ("On", True), ("1", True), (True, True),
        ("no", False), ("off", False), ("0", False), (False, False),
    ])
    def test_coerce_bool(self, value, expected):
        assert _coerce_bool(value, not expected) is expected

    def test_coerce_bool_unknown_uses_default(self):
        assert _coerce_bool("maybe", True) is True
        assert _coerce_bool(None, False) is False

    def test_coerce_int_and_float(self):
        assert _coerce_int("42", 0) == 42
        assert _coerce_int("x", 7) == 7
        assert _coerce_float("2.5", 0.0) == 2.5
        assert _coerce_float(None, 1.0) == 1.0


class TestLoadSettings:
    """Tests for load_settings."""

    def test_missing_explicit_config_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "nope.toml")

    def test_toml_nested_sections(self, tmp_path):
        cfg = tmp_path / "backupsync.toml"
        cfg.write_text(
            """
[paths]
state_db = "/var/lib/backupsync/state.db"
remote = "gdrive:Backups/App/"

[app]
name = "ScoreKeeper"
environment = "development"

[sync]
min_upload_interval = 10
max_attempts = 3

[backup]
enabled = true
auto_interval_minutes = 15
max_snapshots_to_keep = 3

[rclone]
log_level = "INFO"
timeout = 30
""",
            encoding="utf-8",
        )
        settings = load_settings(cfg)

        assert settings.state_db == Path("/var/lib/backupsync/state.db")
        assert settings.remote == "gdrive:Backups/App"
        assert settings.app_name == "ScoreKeeper"
        assert settings.environment is Environment.DEVELOPMENT
        assert settings.min_upload_interval == 10.0
        assert settings.max_attempts == 3
        assert settings.backup_defaults.enabled is True
        assert settings.backup_defaults.auto_interval_minutes == 15
        assert settings.backup_defaults.max_snapshots_to_keep == 3
        assert "--log-level=INFO" in rclone.RCLONE_BASE
        assert rclone.RCLONE_TIMEOUT == 30

    def test_ini_flat_keys(self, tmp_path):
        cfg = tmp_path / "backupsync.ini"
        cfg.write_text(
            "[backupsync]\n"
            "remote = /srv/backups\n"
            "enabled = yes\n"
            "debounce_seconds = 5\n"
            "environment = staging\n",
            encoding="utf-8",
        )
        settings = load_settings(cfg)

        assert settings.remote == "/srv/backups"
        assert settings.backup_defaults.enabled is True
        assert settings.debounce_seconds == 5.0
        # unknown environments fall back to production
        assert settings.environment is Environment.PRODUCTION

    def test_ini_requires_section(self, tmp_path):
        cfg = tmp_path / "bad.ini"
        cfg.write_text("[other]\nremote = x\n", encoding="utf-8")
        with pytest.raises(RuntimeError):
            load_settings(cfg)

    def test_invalid_backup_defaults_rejected(self, tmp_path):
        cfg = tmp_path / "backupsync.toml"
        cfg.write_text("[backup]\nmax_snapshots_to_keep = 0\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_settings(cfg)

    def test_defaults_without_config(self, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("backupsync.config.DEFAULT_LOCATIONS", [tmp_path / "missing.toml"])
        settings = load_settings()

        assert settings.max_attempts == 5
        assert settings.backoff_cap == 32.0
        assert settings.quota_backoff_cap == 300.0
        assert "no config file found" in capsys.readouterr().err


class TestRemoteIsLocal:
    @pytest.mark.parametrize("remote,expected", [
        ("/srv/backups", True),
        ("relative/dir", True),
        ("C:/backups", True),
        ("gdrive:Backups", False),
        ("s3:bucket/path", False),
    ])
    def test_remote_is_local(self, tmp_path, remote, expected):
        settings = Settings(
            state_db=tmp_path / "s.db", source_db=tmp_path / "a.db", log_path=tmp_path / "l.log",
            tmp_dir=tmp_path, remote=remote,
        )
        assert settings.remote_is_local is expected
