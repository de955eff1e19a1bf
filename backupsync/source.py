#!/usr/bin/env python3

"""
source.py

LocalSnapshotSource: export the application's records as plain
collections and import a snapshot's collections back.

SqliteSnapshotSource treats every user table of an SQLite database as one
collection. Imports run inside a single transaction; on any error the
database is left as it was before the call.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from backupsync.errors import BackupError, BackupErrorCode
from backupsync.logger import get_logger
from backupsync.models import RestoreMode

Collections = Dict[str, List[Dict[str, Any]]]

SOFT_DELETE_COLUMN = "deleted_at"


@dataclass
class ExportOptions:
    collections: Optional[List[str]] = None
    include_deleted: bool = False


class LocalSnapshotSource(ABC):
    @abstractmethod
    def export_all(self, options: Optional[ExportOptions] = None) -> Collections:
        ...

    @abstractmethod
    def import_all(self, collections: Collections, mode: RestoreMode) -> Dict[str, int]:
        """Import every collection atomically and return imported record counts."""


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class SqliteSnapshotSource(LocalSnapshotSource):
    def __init__(self, db_path: Path, collections: Optional[Sequence[str]] = None):
        self.logger = get_logger(__name__)
        self.db_path = db_path
        self.collections = list(collections) if collections else None

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def _user_tables(self, conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name;"
        ).fetchall()
        tables = [r["name"] for r in rows]
        if self.collections is not None:
            return [t for t in self.collections if t in tables]
        return tables

    @staticmethod
    def _columns(conn: sqlite3.Connection, table: str) -> List[str]:
        return [r["name"] for r in conn.execute(f"PRAGMA table_info({_quote(table)});").fetchall()]

    def export_all(self, options: Optional[ExportOptions] = None) -> Collections:
        options = options or ExportOptions()
        conn = self._connect()
        try:
            tables = self._user_tables(conn)
            if options.collections is not None:
                tables = [t for t in tables if t in options.collections]
            result: Collections = {}
            for table in tables:
                query = f"SELECT * FROM {_quote(table)}"
                if not options.include_deleted and SOFT_DELETE_COLUMN in self._columns(conn, table):
                    query += f" WHERE {SOFT_DELETE_COLUMN} IS NULL"
                result[table] = [dict(row) for row in conn.execute(query).fetchall()]
            self.logger.debug(
                f"Exported {sum(len(v) for v in result.values())} records from {len(result)} collections"
            )
            return result
        except sqlite3.Error as e:
            raise BackupError(BackupErrorCode.UNKNOWN_ERROR, f"Export from {self.db_path} failed: {e}", e)
        finally:
            conn.close()

    def import_all(self, collections: Collections, mode: RestoreMode) -> Dict[str, int]:
        conn = self._connect()
        counts: Dict[str, int] = {}
        try:
            with conn:
                tables = self._user_tables(conn)
                if mode == RestoreMode.REPLACE:
                    for table in tables:
                        conn.execute(f"DELETE FROM {_quote(table)};")

                for name, rows in collections.items():
                    if name not in tables:
                        self.logger.warning(f"Skipping unknown collection '{name}' ({len(rows)} records)")
                        continue
                    counts[name] = self._import_rows(conn, mode, name, rows)
        except sqlite3.IntegrityError as e:
            raise BackupError(BackupErrorCode.INVALID_BACKUP, f"Snapshot violates local constraints: {e}", e)
        except sqlite3.Error as e:
            raise BackupError(BackupErrorCode.UNKNOWN_ERROR, f"Import into {self.db_path} failed: {e}", e)
        finally:
            conn.close()
        self.logger.info(f"Imported {sum(counts.values())} records ({mode.value})")
        return counts

    @staticmethod
    def _primary_key(conn: sqlite3.Connection, table: str) -> List[str]:
        info = conn.execute(f"PRAGMA table_info({_quote(table)});").fetchall()
        return [r["name"] for r in sorted(info, key=lambda r: r["pk"]) if r["pk"] > 0]

    def _import_rows(self, conn: sqlite3.Connection, mode: RestoreMode, table: str,
                     rows: List[Dict[str, Any]]) -> int:
        columns = self._columns(conn, table)
        # merge skips only rows whose key already exists; other violations still abort the import
        conflict = ""
        pk = self._primary_key(conn, table)
        if mode == RestoreMode.MERGE and pk:
            conflict = f" ON CONFLICT ({', '.join(_quote(c) for c in pk)}) DO NOTHING"

        known = set(columns)
        unknown = sorted({k for row in rows for k in row} - known)
        if unknown:
            self.logger.warning(f"Ignoring unknown columns in '{table}': {', '.join(unknown)}")

        imported = 0
        for row in rows:
            cols = [c for c in columns if c in row]
            if not cols:
                continue
            sql = (
                f"INSERT INTO {_quote(table)} ({', '.join(_quote(c) for c in cols)}) "
                f"VALUES ({', '.join('?' for _ in cols)}){conflict};"
            )
            cur = conn.execute(sql, [row[c] for c in cols])
            imported += cur.rowcount if cur.rowcount > 0 else 0
        return imported
