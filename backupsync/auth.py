#!/usr/bin/env python3

"""
auth.py

AuthProvider contract plus two implementations:

- StaticTokenAuthProvider: a token handed in by the host application
  (optionally with an expiry), e.g. from an OAuth flow done elsewhere.
- RcloneAuthProvider: credentials are owned by rclone; the remote counts as
  authenticated when it is a local path or a configured rclone remote.
"""

from __future__ import annotations

import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from backupsync.errors import BackupError, BackupErrorCode
from backupsync.logger import get_logger
from backupsync.models import AuthState
from backupsync.rclone import rclone_listremotes

AuthListener = Callable[[AuthState], None]


class AuthProvider(ABC):
    def __init__(self):
        self.logger = get_logger(__name__)
        self._listeners: List[AuthListener] = []
        self._listener_lock = threading.Lock()

    @abstractmethod
    def is_authenticated(self) -> bool:
        ...

    @abstractmethod
    def get_token(self) -> str:
        """Return a usable token. Raises BackupError(AUTH_FAILED or TOKEN_EXPIRED)."""

    @abstractmethod
    def sign_in(self) -> AuthState:
        ...

    @abstractmethod
    def sign_out(self) -> None:
        ...

    @abstractmethod
    def get_auth_state(self) -> AuthState:
        ...

    def add_listener(self, listener: AuthListener) -> None:
        with self._listener_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: AuthListener) -> None:
        with self._listener_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self) -> None:
        state = self.get_auth_state()
        with self._listener_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                self.logger.warning(f"Auth listener failed: {e}")


class StaticTokenAuthProvider(AuthProvider):
    def __init__(self, token: Optional[str] = None, expires_at: Optional[float] = None, user: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        super().__init__()
        self._token = token
        self._expires_at = expires_at
        self._user = user
        self._clock = clock

    def _expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def is_authenticated(self) -> bool:
        return bool(self._token) and not self._expired()

    def get_token(self) -> str:
        if not self._token:
            raise BackupError(BackupErrorCode.AUTH_FAILED, "Not signed in")
        if self._expired():
            raise BackupError(BackupErrorCode.TOKEN_EXPIRED, "Access token expired")
        return self._token

    def set_token(self, token: str, expires_at: Optional[float] = None, user: Optional[str] = None) -> None:
        self._token = token
        self._expires_at = expires_at
        if user is not None:
            self._user = user
        self._notify()

    def sign_in(self) -> AuthState:
        if not self._token:
            raise BackupError(BackupErrorCode.AUTH_FAILED, "No token available for sign-in")
        self._notify()
        return self.get_auth_state()

    def sign_out(self) -> None:
        self._token = None
        self._expires_at = None
        self._user = None
        self._notify()

    def get_auth_state(self) -> AuthState:
        return AuthState(authenticated=self.is_authenticated(), user=self._user, expires_at=self._expires_at)


class RcloneAuthProvider(AuthProvider):
    def __init__(self, remote: str, remote_is_local: bool = False):
        super().__init__()
        self.remote = remote
        self.remote_is_local = remote_is_local
        self._signed_out = False
        self._cached: Optional[bool] = None

    @property
    def remote_name(self) -> str:
        return self.remote.split(":", 1)[0] + ":"

    def _check_remote(self) -> bool:
        if self.remote_is_local:
            return True
        try:
            res = rclone_listremotes()
        except (subprocess.TimeoutExpired, FileNotFoundError) as e:
            self.logger.warning(f"Could not query rclone remotes: {e}")
            return False
        if res.returncode != 0:
            self.logger.warning(f"rclone listremotes failed: {(res.stderr or '').strip()}")
            return False
        remotes = {line.strip() for line in (res.stdout or "").splitlines() if line.strip()}
        return self.remote_name in remotes

    def is_authenticated(self) -> bool:
        if self._signed_out:
            return False
        if self._cached is None:
            self._cached = self._check_remote()
        return self._cached

    def get_token(self) -> str:
        if not self.is_authenticated():
            raise BackupError(BackupErrorCode.AUTH_FAILED, f"Remote {self.remote_name} is not configured in rclone")
        return self.remote_name

    def sign_in(self) -> AuthState:
        self._signed_out = False
        self._cached = None
        if not self.is_authenticated():
            raise BackupError(
                BackupErrorCode.AUTH_FAILED,
                f"Remote {self.remote_name} is not configured; run 'rclone config' first",
            )
        self._notify()
        return self.get_auth_state()

    def sign_out(self) -> None:
        self._signed_out = True
        self._notify()

    def get_auth_state(self) -> AuthState:
        user = None if self.remote_is_local else self.remote_name
        return AuthState(authenticated=self.is_authenticated(), user=user)
