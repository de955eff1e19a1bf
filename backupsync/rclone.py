# backupsync/rclone.py
from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

# Default arguments for all rclone calls
RCLONE_BASE = ["rclone", "--log-level", "NOTICE"]
RCLONE_TIMEOUT: Optional[float] = 300


def _run_rclone(*args: Union[str, Path], check: bool = False, text: bool = True):
    """Low-level helper that executes rclone with consistent defaults."""
    from backupsync.utils import run_cmd

    cmd = RCLONE_BASE + [str(a) for a in args]
    return run_cmd(*cmd, check=check, text=text, timeout=RCLONE_TIMEOUT)


def set_rclone_defaults(log_level="NOTICE", timeout: Optional[float] = 300):
    global RCLONE_BASE, RCLONE_TIMEOUT
    RCLONE_BASE = [
        "rclone",
        f"--log-level={log_level}",
    ]
    RCLONE_TIMEOUT = timeout


# --------------------------
# Core command wrappers
# --------------------------

def rclone_mkdir(remote_path: str, check: bool = False):
    """Create a remote directory (no-op when it exists)."""
    return _run_rclone("mkdir", remote_path, check=check)


def rclone_copyto(src: Union[str, Path], dst: Union[str, Path], *extra: str, check: bool = False):
    """Copy single file to remote/local destination."""
    return _run_rclone("copyto", str(src), str(dst), *extra, check=check)


def rclone_moveto(src: str, dst: str, *extra: str, check: bool = False):
    """Move file atomically on remote."""
    return _run_rclone("moveto", src, dst, *extra, check=check)


def rclone_cat(remote_path: str, check: bool = False):
    """Return file contents from remote as raw bytes (stdout)."""
    return _run_rclone("cat", remote_path, check=check, text=False)


def rclone_deletefile(remote_path: str, check: bool = False):
    """Delete a single remote file."""
    return _run_rclone("deletefile", remote_path, check=check)


def rclone_lsjson(remote_path: str, *extra: str, check: bool = False):
    """List remote files as JSON."""
    return _run_rclone("lsjson", remote_path, *extra, check=check)


def rclone_listremotes(check: bool = False):
    """List configured remotes, one 'name:' per line."""
    return _run_rclone("listremotes", check=check)
