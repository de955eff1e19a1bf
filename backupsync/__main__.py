#!/usr/bin/env python3
"""
__main__.py

Top-level CLI for backupsync.
Maps CLI actions onto BackupOrchestrator operations.
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from backupsync.codec import format_file_size
from backupsync.config import load_settings
from backupsync.errors import BackupError
from backupsync.logger import get_logger, setup_logger
from backupsync.models import RestoreMode, RestoreOptions
from backupsync.orchestrator import BackupOrchestrator, build_orchestrator
from backupsync.statistics import StatusThread, create_stats, log_status
from backupsync.utils import ensure_dirs, install_signal_handlers


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="backupsync – offline-resilient snapshot backups to any rclone remote")
    p.add_argument(
        "action",
        choices=[
            "backup",
            "restore",
            "list",
            "prune",
            "drain",
            "status",
            "run",
        ],
        help="Which operation to run",
    )
    p.add_argument("--config", type=Path, help="Path to config file")
    p.add_argument("--description", help="Description stored with the snapshot (backup)")
    p.add_argument("--file-id", help="Remote id of the snapshot to restore (see 'list')")
    p.add_argument("--mode", choices=[m.value for m in RestoreMode], default=RestoreMode.REPLACE.value,
                   help="Restore policy (default: replace)")
    p.add_argument("--no-validate", action="store_true", help="Skip the schema compatibility check on restore")
    p.add_argument("--no-safety-snapshot", action="store_true", help="Do not back up before restoring")
    p.add_argument("--keep", type=int, help="Snapshots to keep when pruning (default: from config)")
    return p


def _print_status(orchestrator: BackupOrchestrator) -> None:
    state = orchestrator.get_state()
    last = state.last_backup
    print(f"enabled:      {state.config.enabled} (every {state.config.auto_interval_minutes} min, "
          f"keep {state.config.max_snapshots_to_keep})")
    print(f"signed in:    {state.auth_state.authenticated}" + (f" ({state.auth_state.user})"
                                                              if state.auth_state.user else ""))
    print(f"online:       {state.online}")
    print(f"dirty:        {state.dirty}")
    print(f"last backup:  {last.status.value} {last.timestamp or ''} {last.file_name or ''}".rstrip())
    if last.error:
        print(f"last error:   {last.error}")
    print(f"queued:       {len(state.queue)}")
    for entry in state.queue:
        print(f"  - {entry.file_name} attempts={entry.attempts} status={entry.status.value}"
              + (f" error={entry.last_error}" if entry.last_error else ""))


def _run_action(args, orchestrator: BackupOrchestrator, logger) -> int:
    if args.action == "backup":
        result = orchestrator.create_backup(args.description)
        if result.success:
            print(f"{result.outcome.value}: {result.file_name}")
            return 0
        print(f"failed: {result.error}", file=sys.stderr)
        return 1

    if args.action == "restore":
        if not args.file_id:
            logger.error("restore requires --file-id")
            return 2
        options = RestoreOptions(
            mode=RestoreMode(args.mode),
            validate_schema=not args.no_validate,
            create_backup_before_restore=not args.no_safety_snapshot,
        )
        result = orchestrator.restore_backup(args.file_id, options)
        if result.success:
            for name, count in sorted(result.records_imported.items()):
                print(f"{name}: {count}")
            return 0
        print(f"failed at {result.stage.value if result.stage else '?'}: {result.error}", file=sys.stderr)
        return 1

    if args.action == "list":
        for f in orchestrator.list_backups():
            print(f"{f.created_at:%Y-%m-%d %H:%M:%S}  {format_file_size(f.size_bytes):>10}  {f.remote_id}")
        return 0

    if args.action == "prune":
        summary = orchestrator.prune_old_snapshots(args.keep)
        print(f"deleted {len(summary.deleted)}, kept {len(summary.kept)}, failed {len(summary.failed)}")
        return 1 if summary.failed else 0

    if args.action == "drain":
        orchestrator.connectivity.check()
        result = orchestrator.queue.process()
        if not result.ran:
            print(f"queue not drained: {result.skipped}")
            return 0
        print(f"uploaded {len(result.uploaded)}, failed {len(result.failed)}, "
              f"abandoned {len(result.abandoned)}, remaining {len(orchestrator.queue)}")
        return 0

    if args.action == "status":
        _print_status(orchestrator)
        return 0

    if args.action == "run":
        return _run_daemon(orchestrator, logger)

    logger.error(f"Unknown action: {args.action}")
    return 2


def _run_daemon(orchestrator: BackupOrchestrator, logger) -> int:
    if not orchestrator.start():
        logger.error("Automatic backups are disabled or not signed in; nothing to run")
        return 2

    stop = threading.Event()

    def on_interrupt(signum, frame):
        logger.warning("Interrupt received. Queueing unsynced changes and exiting...")
        stop.set()

    install_signal_handlers(on_interrupt)
    logger.info("backupsync running; press Ctrl+C to stop")
    try:
        while not stop.wait(1.0):
            pass
    finally:
        entry = orchestrator.shutdown()
        if entry is not None:
            logger.info(f"Queued {entry.file_name} on exit")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = load_settings(args.config)

    ensure_dirs(settings.tmp_dir, settings.state_db.parent, settings.log_path.parent)
    setup_logger(settings)
    logger = get_logger(__name__)

    stats = create_stats()
    try:
        orchestrator = build_orchestrator(settings, stats=stats)
    except Exception as e:
        logger.exception(f"Failed to initialise backup state: {e}")
        return 2

    status_thread = StatusThread(
        settings.status_interval, stats, extra=lambda: f"Pending: {len(orchestrator.queue)} | "
    )
    if args.action == "run":
        status_thread.start()

    start = time.time()
    try:
        code = _run_action(args, orchestrator, logger)
    except BackupError as e:
        logger.error(f"Action '{args.action}' failed ({e.code.value}): {e.message}")
        code = 1
    finally:
        status_thread.stop()

    elapsed = time.time() - start
    logger.info(f"Action '{args.action}' completed in {elapsed:.1f}s")
    log_status(stats)
    return code


if __name__ == "__main__":
    sys.exit(main())
