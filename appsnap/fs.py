# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Filesystem helpers for the live application directories.

Recursive deletes and ownership walks are blocking, so they run in the
default thread pool.
"""

import asyncio
import grp
import os
import pwd
import shutil
from functools import partial
from pathlib import Path

import structlog

from appsnap.exceptions import RestoreError

logger = structlog.get_logger()


def is_privileged() -> bool:
    """True when running with an effective uid of 0."""
    return os.geteuid() == 0


def current_uid() -> int:
    return os.geteuid()


async def reset_directory(path: Path) -> None:
    """
    Delete a directory tree and recreate it empty.

    Args:
        path: Directory to reset

    Raises:
        RestoreError: If deletion or creation fails
    """
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _reset_directory_sync, path)
    except OSError as e:
        raise RestoreError(
            f"Failed to reset directory {path}: {e}",
            details={"path": str(path)},
        ) from e

    logger.info("directory_reset", path=str(path))


def _reset_directory_sync(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)


async def chown_recursive(path: Path, user: str, group: str) -> int:
    """
    Change ownership of a tree without following symlinks.

    Args:
        path: Root of the tree
        user: Owner name
        group: Group name

    Returns:
        Number of entries re-owned

    Raises:
        RestoreError: If the user/group is unknown or an entry cannot be changed
    """
    try:
        uid = pwd.getpwnam(user).pw_uid
        gid = grp.getgrnam(group).gr_gid
    except KeyError as e:
        raise RestoreError(
            f"Unknown user or group {user}:{group}",
            details={"path": str(path)},
        ) from e

    loop = asyncio.get_running_loop()
    try:
        count = await loop.run_in_executor(None, partial(_chown_tree_sync, path, uid, gid))
    except OSError as e:
        raise RestoreError(
            f"Failed to change ownership of {path}: {e}",
            details={"path": str(path), "user": user, "group": group},
        ) from e

    logger.info("ownership_fixed", path=str(path), owner=f"{user}:{group}", entries=count)
    return count


def _chown_tree_sync(path: Path, uid: int, gid: int) -> int:
    count = 1
    os.lchown(path, uid, gid)
    for dirpath, dirnames, filenames in os.walk(path):
        for name in dirnames + filenames:
            os.lchown(os.path.join(dirpath, name), uid, gid)
            count += 1
    return count
