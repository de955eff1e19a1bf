#!/usr/bin/env python3

"""
retention.py

Retention step: keep the `keep` most recent remote snapshots and delete the
rest. Pruning is best effort; a failed delete is logged and the remaining
snapshots are still processed.
"""

from __future__ import annotations

from typing import Optional

from backupsync.logger import get_logger
from backupsync.models import PruneSummary
from backupsync.remote import RemoteStore
from backupsync.statistics import StatKey, ThreadSafeStats


def prune_snapshots(remote: RemoteStore, folder_id: str, keep: int,
                    stats: Optional[ThreadSafeStats] = None) -> PruneSummary:
    logger = get_logger(__name__)
    if keep <= 0:
        raise ValueError("keep must be > 0")

    files = remote.list(folder_id)
    files.sort(key=lambda f: f.created_at, reverse=True)

    summary = PruneSummary(kept=[f.name for f in files[:keep]])
    obsolete = files[keep:]
    if not obsolete:
        logger.debug(f"Retention: {len(files)} snapshots, nothing to prune (keep={keep})")
        return summary

    logger.info(f"Retention: pruning {len(obsolete)} of {len(files)} snapshots (keep={keep})")
    for f in obsolete:
        try:
            remote.delete(f.remote_id)
        except Exception as e:
            logger.warning(f"Could not delete old snapshot {f.name}: {e}")
            summary.failed.append(f.name)
            continue
        summary.deleted.append(f.name)
        if stats is not None:
            stats.increment(StatKey.PRUNED)
        logger.debug(f"Deleted old snapshot {f.name}")
    return summary
