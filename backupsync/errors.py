#!/usr/bin/env python3

"""
errors.py

Error taxonomy for backup and restore operations.

Every failure crossing a collaborator boundary (remote store, auth provider,
codec, local store) is raised as a BackupError carrying a BackupErrorCode.
The code decides whether the failure is retried through the queue or
surfaced to the caller.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class BackupErrorCode(str, Enum):
    AUTH_FAILED = "AUTH_FAILED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    NETWORK_ERROR = "NETWORK_ERROR"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FOLDER_NOT_FOUND = "FOLDER_NOT_FOUND"
    INVALID_BACKUP = "INVALID_BACKUP"
    SCHEMA_INCOMPATIBLE = "SCHEMA_INCOMPATIBLE"
    COMPRESSION_FAILED = "COMPRESSION_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES = frozenset({
    BackupErrorCode.NETWORK_ERROR,
    BackupErrorCode.TOKEN_EXPIRED,
    BackupErrorCode.QUOTA_EXCEEDED,
})


class BackupError(RuntimeError):
    """Base exception for backup related failures."""

    def __init__(self, code: BackupErrorCode, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.original = original

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES

    def __repr__(self) -> str:
        return f"BackupError({self.code.value}, {self.message!r})"


def as_backup_error(exc: BaseException, message: Optional[str] = None) -> BackupError:
    """
    Wrap an arbitrary exception into a BackupError.

    BackupErrors pass through unchanged. OS level failures (sockets, pipes,
    timeouts) are classified as network errors, everything else as unknown.
    """
    if isinstance(exc, BackupError):
        return exc
    code = BackupErrorCode.NETWORK_ERROR if isinstance(exc, OSError) else BackupErrorCode.UNKNOWN_ERROR
    return BackupError(code, message or str(exc) or exc.__class__.__name__, original=exc)


__all__ = [
    "BackupError",
    "BackupErrorCode",
    "RETRYABLE_CODES",
    "as_backup_error",
]
