#!/usr/bin/env python3

"""
backupsync
Offline-resilient backup synchronization for local-first applications.

Snapshots the local store, uploads it to a remote object store (via rclone),
queues uploads durably while offline and restores remote snapshots.
"""

__version__ = "0.1.0"

__all__ = [
    "auth",
    "codec",
    "config",
    "db",
    "dirty",
    "errors",
    "logger",
    "network",
    "orchestrator",
    "rclone",
    "remote",
    "retention",
    "retry_queue",
    "scheduler",
    "source",
    "state",
    "statistics",
    "models",
    "utils",
]
