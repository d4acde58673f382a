# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Retention - Keep the N most recent snapshots.

Only whole snapshot directories are deleted. Plain files at the top of
the snapshot root (the lock and the run journal) are never touched, and
a deletion failure does not bring back snapshots already removed.
"""

import asyncio
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import List

import structlog

from appsnap.snapshot import snapshot_dirs

logger = structlog.get_logger()

_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="appsnap-prune")


@dataclass
class PruneResult:
    """Outcome of a retention pass."""

    keep: int
    dry_run: bool
    kept: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


async def prune_snapshots(root: Path, keep: int, dry_run: bool = False) -> PruneResult:
    """
    Delete all but the `keep` most recent snapshot directories.

    Args:
        root: Snapshot root
        keep: Number of snapshots to keep; 0 keeps everything
        dry_run: If True, only report what would be deleted

    Returns:
        PruneResult listing kept, deleted (or would-be deleted) and failed ids

    Raises:
        ValueError: If keep is negative
    """
    if keep < 0:
        raise ValueError(f"keep must be >= 0, got {keep}")

    result = PruneResult(keep=keep, dry_run=dry_run)
    if keep == 0:
        logger.info("retention_skipped", reason="unlimited")
        return result

    candidates = snapshot_dirs(Path(root))
    result.kept = [path.name for path in candidates[:keep]]

    loop = asyncio.get_running_loop()
    for path in candidates[keep:]:
        if dry_run:
            result.deleted.append(path.name)
            logger.info("snapshot_would_prune", snapshot_id=path.name)
            continue
        try:
            await loop.run_in_executor(_executor, partial(shutil.rmtree, path))
        except OSError as e:
            result.errors.append(f"{path.name}: {e}")
            logger.warning("snapshot_prune_failed", snapshot_id=path.name, error=str(e))
            continue
        result.deleted.append(path.name)
        logger.info("snapshot_pruned", snapshot_id=path.name)

    logger.info(
        "retention_applied",
        keep=keep,
        kept=len(result.kept),
        deleted=len(result.deleted),
        errors=len(result.errors),
        dry_run=dry_run,
    )
    return result
