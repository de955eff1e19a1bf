#!/usr/bin/env python3

"""
utils.py

Utility helpers shared across the package:
- sha256 of bytes
- UTC timestamps
- subprocess run wrapper
- atomic bytes write
- directory and signal setup
"""

from __future__ import annotations

import datetime
import hashlib
import os
import signal
import subprocess
from pathlib import Path
from typing import Optional, Union

from backupsync.logger import get_logger


def sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat().replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime.datetime]:
    """Parse an ISO-8601 timestamp (trailing Z accepted). Naive values are taken as UTC."""
    if not value:
        return None
    try:
        dt = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def run_cmd(*args: str, check: bool = True, fatal: bool = False, text: bool = True,
            timeout: Optional[float] = None) -> Union[
    subprocess.CompletedProcess, subprocess.CalledProcessError]:
    """
    Run a command and return CompletedProcess.
    Logs errors (and success at debug) so callers can rely on logs without repeating prints.
    With text=False stdout is returned as raw bytes.
    """
    local_logger = get_logger(__name__)
    local_logger.debug(f"Run command: {' '.join(args)}")
    try:
        cp: subprocess.CompletedProcess = subprocess.run(
            args, check=check, capture_output=True, text=text, timeout=timeout
        )
        if cp.returncode < 0:
            local_logger.error(f"Command interrupted: {' '.join(args)}")
            raise KeyboardInterrupt()
        if cp.returncode != 0:
            local_logger.debug(f"Command exited {cp.returncode}: {' '.join(args)} -> {_as_text(cp.stderr)[:400]}")
        else:
            local_logger.debug(f"Command succeeded: {' '.join(args)} | {cp.returncode}")
        return cp
    except subprocess.CalledProcessError as e:
        if e.returncode < 0:
            local_logger.error(f"Command interrupted: {' '.join(args)}")
            raise KeyboardInterrupt()
        local_logger.error(f"Command failed: {' '.join(args)} -> {_as_text(e.stderr).strip()}")
        if fatal:
            raise
        return e


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def write_bytes_atomic(path: Path, data: bytes) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    with open(tmp, "wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def ensure_dirs(*paths: Path) -> None:
    for p in paths:
        p.mkdir(parents=True, exist_ok=True)


def install_signal_handlers(on_interrupt):
    signal.signal(signal.SIGINT, on_interrupt)
    signal.signal(signal.SIGTERM, on_interrupt)
