# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Exclusive lease over the snapshot root.

One backup or restore at a time: the lease is an flock() on a lock file
at the top of the snapshot root, held for the whole run and released by
the kernel if the process dies.
"""

import fcntl
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import structlog

from appsnap.errors import explain_concurrent_run
from appsnap.exceptions import ConcurrentRunError

logger = structlog.get_logger()


@asynccontextmanager
async def snapshot_root_lease(lock_path: Path) -> AsyncIterator[Path]:
    """
    Hold an exclusive, non-blocking lock on lock_path.

    Raises:
        ConcurrentRunError: If another run holds the lock
    """
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError as e:
        os.close(fd)
        holder = lock_path.read_text().strip() if lock_path.exists() else ""
        raise ConcurrentRunError(
            explain_concurrent_run(lock_path),
            details={"lock_path": str(lock_path), "holder_pid": holder or None},
        ) from e

    try:
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug("lease_acquired", lock_path=str(lock_path))
        yield lock_path
    finally:
        fcntl.flock(fd, fcntl.LOCK_UN)
        os.close(fd)
        logger.debug("lease_released", lock_path=str(lock_path))
