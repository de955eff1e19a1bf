#!/usr/bin/env python3

"""
db.py

SQLite access layer for the persisted backup state:
- ensure schema
- get / set / delete JSON values in the kv table
- wipe all keys

Uses thread-local connections to avoid cross-thread SQLite errors.
"""

from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from backupsync.logger import get_logger
from backupsync.utils import utc_now_iso

_thread_local = threading.local()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """
    Return a sqlite3.Connection specific to the current thread and db_path.
    Ensures parent directories exist and applies WAL / busy timeout pragmas.
    """
    conns = getattr(_thread_local, "conns", None)
    if conns is None:
        conns = {}
        setattr(_thread_local, "conns", conns)

    key = str(db_path.resolve())
    if key in conns:
        conn = conns[key]
        try:
            # quick liveness check (will raise if closed/corrupt)
            conn.execute("SELECT 1;")
            return conn
        except (sqlite3.ProgrammingError, sqlite3.OperationalError, sqlite3.DatabaseError):
            del conns[key]

    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), check_same_thread=False, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    conns[key] = conn
    return conn


def close_connection(db_path: Path) -> None:
    conns = getattr(_thread_local, "conns", None)
    if not conns:
        return
    conn = conns.pop(str(db_path.resolve()), None)
    if conn is not None:
        conn.close()


def ensure_schema(db_path: Path) -> None:
    """
    Ensure the kv table exists. Safe to call multiple times.
    """
    _logger = get_logger(__name__)
    conn = get_connection(db_path)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS kv
        (
            key        TEXT PRIMARY KEY,
            value      TEXT NOT NULL,
            updated_at DATETIME
        );
        """
    )
    conn.commit()
    _logger.debug(f"State schema ensured at {db_path}")


def kv_get(db_path: Path, key: str, default: Any = None) -> Any:
    conn = get_connection(db_path)
    row = conn.execute("SELECT value FROM kv WHERE key = ?;", (key,)).fetchone()
    if row is None:
        return default
    try:
        return json.loads(row["value"])
    except json.JSONDecodeError:
        get_logger(__name__).warning(f"Corrupt state value for key '{key}', using default")
        return default


def kv_set(db_path: Path, key: str, value: Any) -> None:
    conn = get_connection(db_path)
    with conn:
        conn.execute(
            """
            INSERT INTO kv (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                           updated_at = excluded.updated_at;
            """,
            (key, json.dumps(value, ensure_ascii=False), utc_now_iso()),
        )


def kv_delete(db_path: Path, key: str) -> None:
    conn = get_connection(db_path)
    with conn:
        conn.execute("DELETE FROM kv WHERE key = ?;", (key,))


def kv_clear(db_path: Path) -> None:
    conn = get_connection(db_path)
    with conn:
        conn.execute("DELETE FROM kv;")
