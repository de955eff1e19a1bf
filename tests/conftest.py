#!/usr/bin/env python3
"""
Shared pytest fixtures and configuration for backupsync tests.
"""

import datetime
import sqlite3
from typing import Dict, List, Optional

import pytest

from backupsync import config
from backupsync.auth import StaticTokenAuthProvider
from backupsync.codec import SnapshotCodec
from backupsync.errors import BackupError, BackupErrorCode
from backupsync.logger import reset_logger
from backupsync.models import Environment, RemoteFile, UploadReceipt
from backupsync.network import ConnectivityMonitor
from backupsync.orchestrator import BackupOrchestrator
from backupsync.remote import RemoteStore
from backupsync.retry_queue import UploadThrottle
from backupsync.source import SqliteSnapshotSource
from backupsync.state import PersistedState

Settings = config.Settings

BASE_TIME = datetime.datetime(2024, 3, 1, 12, 0, 0, tzinfo=datetime.timezone.utc)


class FakeClock:
    """Monotonic clock whose sleep() advances time instantly."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def wall(self) -> datetime.datetime:
        return BASE_TIME + datetime.timedelta(seconds=self.now)


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    instances: List["FakeTimer"] = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.instances.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args, **self.kwargs)


class FakeRemoteStore(RemoteStore):
    """In-memory remote. Failures are scripted per upload call."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.files: Dict[str, dict] = {}
        self.uploads: List[tuple] = []
        self.upload_attempts: List[str] = []
        self.failures: List[BackupError] = []
        self.fail_always: Optional[BackupError] = None
        self.delete_failures: set = set()
        self.download_error: Optional[BackupError] = None
        self.ensure_calls = 0
        self._counter = 0

    def fail_next(self, code: BackupErrorCode, times: int = 1, message: str = "simulated failure"):
        self.failures.extend(BackupError(code, message) for _ in range(times))

    def ensure_folder(self) -> str:
        self.ensure_calls += 1
        return "folder-1"

    def upload(self, file_name, data, metadata):
        self.upload_attempts.append(file_name)
        if self.fail_always is not None:
            raise self.fail_always
        if self.failures:
            raise self.failures.pop(0)
        self._counter += 1
        remote_id = f"folder-1/{file_name}"
        created = self.clock.wall() if self.clock else BASE_TIME + datetime.timedelta(seconds=self._counter)
        self.files[remote_id] = {"name": file_name, "data": data, "metadata": metadata, "created_at": created}
        self.uploads.append((file_name, self.clock() if self.clock else None))
        return UploadReceipt(remote_id=remote_id, size_bytes=len(data))

    def add_file(self, name: str, data: bytes, created_at: datetime.datetime, metadata=None) -> str:
        remote_id = f"folder-1/{name}"
        self.files[remote_id] = {"name": name, "data": data, "metadata": metadata, "created_at": created_at}
        return remote_id

    def list(self, folder_id):
        files = [
            RemoteFile(remote_id=rid, name=f["name"], created_at=f["created_at"], size_bytes=len(f["data"]),
                       metadata=f["metadata"])
            for rid, f in self.files.items()
        ]
        files.sort(key=lambda f: f.created_at, reverse=True)
        return files

    def download(self, remote_id):
        if self.download_error is not None:
            raise self.download_error
        if remote_id not in self.files:
            raise BackupError(BackupErrorCode.UNKNOWN_ERROR, f"{remote_id} not found")
        return self.files[remote_id]["data"]

    def delete(self, remote_id):
        if remote_id in self.delete_failures:
            raise BackupError(BackupErrorCode.NETWORK_ERROR, "delete failed")
        self.files.pop(remote_id, None)


@pytest.fixture(autouse=True)
def isolated_logger():
    """Drop any logger configured by a test (e.g. through the CLI)."""
    yield
    reset_logger()


@pytest.fixture
def test_settings(tmp_path):
    """Create a Settings object with test paths."""
    return Settings(
        state_db=tmp_path / "state.db",
        source_db=tmp_path / "app.db",
        log_path=tmp_path / "logs" / "test.log",
        tmp_dir=tmp_path / "staging",
        remote=str(tmp_path / "remote"),
        app_name="TestApp",
        app_version="1.2.3",
        environment=Environment.DEVELOPMENT,
        probe_enabled=False,
        status_interval=10,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_timers():
    FakeTimer.instances = []
    yield FakeTimer
    FakeTimer.instances = []


@pytest.fixture
def fake_remote(clock):
    return FakeRemoteStore(clock)


@pytest.fixture
def state(tmp_path):
    return PersistedState(tmp_path / "state.db")


@pytest.fixture
def source_db(tmp_path):
    """Application database with two collections and a soft-deleted row."""
    db_path = tmp_path / "app.db"
    conn = sqlite3.connect(str(db_path))
    conn.executescript(
        """
        CREATE TABLE players (id TEXT PRIMARY KEY, name TEXT NOT NULL, deleted_at TEXT);
        CREATE TABLE games (id TEXT PRIMARY KEY, title TEXT NOT NULL, player_id TEXT);
        INSERT INTO players VALUES ('p1', 'Alice', NULL);
        INSERT INTO players VALUES ('p2', 'Bob', NULL);
        INSERT INTO players VALUES ('p3', 'Gone', '2024-01-01T00:00:00Z');
        INSERT INTO games VALUES ('g1', 'Tarot', 'p1');
        """
    )
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def source(source_db):
    return SqliteSnapshotSource(source_db)


@pytest.fixture
def auth():
    return StaticTokenAuthProvider(token="token-123", user="alice@example.com")


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(probe=False, initial=True)


@pytest.fixture
def codec(clock):
    return SnapshotCodec(app_version="1.2.3", device_id="device_1700000000000_abc123",
                         environment=Environment.DEVELOPMENT, clock=clock.wall)


@pytest.fixture
def make_orchestrator(state, fake_remote, auth, source, connectivity, codec, clock, fake_timers):
    """Factory building an orchestrator wired to fakes; keyword arguments override defaults."""
    created = []

    def factory(**overrides):
        kwargs = dict(
            state=state,
            remote=fake_remote,
            auth=auth,
            source=source,
            connectivity=connectivity,
            codec=codec,
            app_name="TestApp",
            min_upload_interval=60.0,
            debounce_seconds=30.0,
            throttle=UploadThrottle(60.0, clock=clock),
            sleep=clock.sleep,
            timer_factory=fake_timers,
            clock=clock.wall,
            notifier=lambda message, level: None,
        )
        kwargs.update(overrides)
        orch = BackupOrchestrator(**kwargs)
        created.append(orch)
        return orch

    yield factory
    for orch in created:
        orch.stop()


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def mock_rclone(mocker):
    """Mock rclone command calls."""
    mock_run = mocker.patch("backupsync.utils.run_cmd")
    mock_run.return_value = mocker.Mock(
        returncode=0,
        stdout="",
        stderr=""
    )
    return mock_run
