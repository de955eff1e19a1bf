#!/usr/bin/env python3

"""
config.py

Configuration loading for the backupsync package.

Supports:
- TOML (preferred) using stdlib tomllib (Python 3.11+) or if not available, falls back to tomli
- INI using configparser

Precedence:
1. CLI --config <path>
2. ./backupsync.toml
3. ./backupsync.ini
4. ~/.config/backupsync.toml
5. ~/.config/backupsync.ini
6. /etc/backupsync.toml
7. /etc/backupsync.ini
"""

from __future__ import annotations

import configparser
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from backupsync import __version__
from backupsync.models import BackupConfig, Environment


@dataclass
class Settings:
    # Core paths
    state_db: Path
    source_db: Path
    log_path: Path
    tmp_dir: Path
    remote: str

    # Application identity (used in snapshot metadata and file names)
    app_name: str = "LocalApp"
    app_version: str = __version__
    environment: Environment = Environment.PRODUCTION

    # Sync timing
    min_upload_interval: float = 60.0
    debounce_seconds: float = 30.0
    max_attempts: int = 5
    backoff_base: float = 2.0
    backoff_cap: float = 32.0
    quota_backoff_cap: float = 300.0

    # Snapshot
    max_snapshot_bytes: int = 50 * 1024 * 1024
    compress_level: int = 6

    # Connectivity probe
    probe_host: str = "1.1.1.1"
    probe_port: int = 53
    probe_timeout: float = 3.0
    probe_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    rotate_by_time: bool = False
    max_log_files: int = 7
    max_log_size: int = 10 * 1024 * 1024
    status_interval: int = 300

    # rclone
    rclone_log_level: str = "NOTICE"
    rclone_timeout: int = 300

    # Defaults for the user facing backup configuration
    backup_defaults: BackupConfig = field(default_factory=BackupConfig)

    @property
    def remote_is_local(self) -> bool:
        # rclone treats "name:path" as a configured remote, anything else as a local path
        head = self.remote.split("/", 1)[0]
        return ":" not in head or (len(head) == 2 and head[1] == ":")


DEFAULT_LOCATIONS = [
    Path("./backupsync.toml"),
    Path("./backupsync.ini"),
    Path(os.path.expanduser("~/.config/backupsync.toml")),
    Path(os.path.expanduser("~/.config/backupsync.ini")),
    Path("/etc/backupsync.toml"),
    Path("/etc/backupsync.ini"),
]


def _load_toml(path: Path) -> Dict[str, Any]:
    # Prefer stdlib tomllib (3.11+), else fallback to third-party tomli if available.
    try:
        import tomllib  # type: ignore
        loader = tomllib.load
    except ImportError:
        try:
            import tomli  # type: ignore
            loader = tomli.load
        except ImportError:
            raise RuntimeError(
                f"TOML config {path} requested but no TOML parser available. "
                f"Install Python 3.11+ or the 'tomli' package, or use an INI config."
            )

    with open(path, "rb") as f:
        data = loader(f)
    return data


def _load_ini(path: Path) -> Dict[str, Any]:
    cp = configparser.ConfigParser()
    cp.read(path)
    data: Dict[str, Any] = {}

    # Flat keys live in a top-level [backupsync] section
    section = "backupsync"
    if section not in cp:
        raise RuntimeError(f"INI config {path} must have a [{section}] section")

    sec = cp[section]
    for k in sec:
        data[k] = sec[k]
    return data


def _coerce_bool(v: Any, default: bool) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def _coerce_int(v: Any, default: int) -> int:
    if v is None:
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _coerce_float(v: Any, default: float) -> float:
    if v is None:
        return default
    try:
        return float(v)
    except (TypeError, ValueError):
        return default


def _coerce_environment(v: Any) -> Environment:
    try:
        return Environment(str(v).strip().lower())
    except ValueError:
        return Environment.PRODUCTION


def load_settings(config_path: Optional[Path] = None) -> Settings:
    data: Dict[str, Any] = {}

    source_path: Optional[Path] = None

    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        source_path = config_path
    else:
        for p in DEFAULT_LOCATIONS:
            if p.exists():
                source_path = p
                break

    if source_path is None:
        # Fall back to built-in defaults, but make it explicit for the user
        sys.stderr.write(
            "Warning: no config file found. Using built-in defaults.\n"
        )
    else:
        if source_path.suffix.lower() == ".toml":
            data = _load_toml(source_path)
        else:
            data = _load_ini(source_path)

    # We accept either flat keys or nested dicts ([paths], [backup], ...)
    def pick(*keys: str, default: Any = None) -> Any:
        for k in keys:
            if k in data:
                return data[k]
        for k in keys:
            parts = k.split(".")
            if len(parts) == 2:
                top, sub = parts
                if top in data and isinstance(data[top], dict):
                    if sub in data[top]:
                        return data[top][sub]
        return default

    base_dir = Path(os.path.expanduser("~/.local/share/backupsync"))

    state_db = Path(pick("state_db", "paths.state_db", default=base_dir / "state.db"))
    source_db = Path(pick("source_db", "paths.source_db", default=base_dir / "app.db"))
    log_path = Path(pick("log_path", "paths.log_path", default=base_dir / "logs" / "backupsync.log"))
    tmp_dir = Path(pick("tmp_dir", "paths.tmp_dir", default=base_dir / "staging"))
    remote = str(pick("remote", "paths.remote", default=str(base_dir / "remote"))).rstrip("/")

    app_name = str(pick("app_name", "app.name", default="LocalApp"))
    app_version = str(pick("app_version", "app.version", default=__version__))
    environment = _coerce_environment(pick("environment", "app.environment", default="production"))

    min_upload_interval = _coerce_float(pick("min_upload_interval", "sync.min_upload_interval", default=60), 60.0)
    debounce_seconds = _coerce_float(pick("debounce_seconds", "sync.debounce_seconds", default=30), 30.0)
    max_attempts = _coerce_int(pick("max_attempts", "sync.max_attempts", default=5), 5)
    backoff_base = _coerce_float(pick("backoff_base", "sync.backoff_base", default=2), 2.0)
    backoff_cap = _coerce_float(pick("backoff_cap", "sync.backoff_cap", default=32), 32.0)
    quota_backoff_cap = _coerce_float(pick("quota_backoff_cap", "sync.quota_backoff_cap", default=300), 300.0)

    max_snapshot_bytes = _coerce_int(
        pick("max_snapshot_bytes", "snapshot.max_bytes", default=50 * 1024 * 1024), 50 * 1024 * 1024)
    compress_level = _coerce_int(pick("compress_level", "snapshot.compress_level", default=6), 6)

    probe_host = str(pick("probe_host", "network.probe_host", default="1.1.1.1"))
    probe_port = _coerce_int(pick("probe_port", "network.probe_port", default=53), 53)
    probe_timeout = _coerce_float(pick("probe_timeout", "network.probe_timeout", default=3), 3.0)
    probe_enabled = _coerce_bool(pick("probe_enabled", "network.probe_enabled", default=True), True)

    log_level = str(pick("log_level", "logging.level", default="INFO")).upper()
    rotate_by_time = _coerce_bool(pick("rotate_by_time", "logging.rotate_by_time", default=False), False)
    max_log_files = _coerce_int(pick("max_log_files", "logging.max_log_files", default=7), 7)
    max_log_size = _coerce_int(pick("max_log_size", "logging.max_log_size", default=10 * 1024 * 1024),
                               10 * 1024 * 1024)
    status_interval = _coerce_int(pick("status_interval", "logging.status_interval", default=300), 300)

    rclone_log_level = str(pick("rclone_log_level", "rclone.log_level", default="NOTICE"))
    rclone_timeout = _coerce_int(pick("rclone_timeout", "rclone.timeout", default=300), 300)

    defaults = BackupConfig()
    backup_defaults = BackupConfig(
        enabled=_coerce_bool(pick("enabled", "backup.enabled", default=defaults.enabled), defaults.enabled),
        auto_interval_minutes=_coerce_int(
            pick("auto_interval_minutes", "backup.auto_interval_minutes", default=defaults.auto_interval_minutes),
            defaults.auto_interval_minutes),
        max_snapshots_to_keep=_coerce_int(
            pick("max_snapshots_to_keep", "backup.max_snapshots_to_keep", default=defaults.max_snapshots_to_keep),
            defaults.max_snapshots_to_keep),
        backup_on_close=_coerce_bool(
            pick("backup_on_close", "backup.backup_on_close", default=defaults.backup_on_close),
            defaults.backup_on_close),
        backup_on_critical_actions=_coerce_bool(
            pick("backup_on_critical_actions", "backup.backup_on_critical_actions",
                 default=defaults.backup_on_critical_actions),
            defaults.backup_on_critical_actions),
        notify_on_success=_coerce_bool(
            pick("notify_on_success", "backup.notify_on_success", default=defaults.notify_on_success),
            defaults.notify_on_success),
        notify_on_error=_coerce_bool(
            pick("notify_on_error", "backup.notify_on_error", default=defaults.notify_on_error),
            defaults.notify_on_error),
    )
    backup_defaults.validate()

    from backupsync.rclone import set_rclone_defaults

    set_rclone_defaults(rclone_log_level, rclone_timeout)

    return Settings(
        state_db=state_db,
        source_db=source_db,
        log_path=log_path,
        tmp_dir=tmp_dir,
        remote=remote,
        app_name=app_name,
        app_version=app_version,
        environment=environment,
        min_upload_interval=min_upload_interval,
        debounce_seconds=debounce_seconds,
        max_attempts=max_attempts,
        backoff_base=backoff_base,
        backoff_cap=backoff_cap,
        quota_backoff_cap=quota_backoff_cap,
        max_snapshot_bytes=max_snapshot_bytes,
        compress_level=compress_level,
        probe_host=probe_host,
        probe_port=probe_port,
        probe_timeout=probe_timeout,
        probe_enabled=probe_enabled,
        log_level=log_level,
        rotate_by_time=rotate_by_time,
        max_log_files=max_log_files,
        max_log_size=max_log_size,
        status_interval=status_interval,
        rclone_log_level=rclone_log_level,
        rclone_timeout=rclone_timeout,
        backup_defaults=backup_defaults,
    )
