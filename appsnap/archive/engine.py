# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Archive Engine - Directory tree <-> single archive artifact.

The same engine handles the installation and the data directory:

- capture_directory(): tar the *contents* of a directory (members are
  rooted at "."), keeping permission bits, ownership and mtimes
- verify_archive(): stream every member to detect truncation/corruption
- extract_archive(): inverse of capture into an existing, empty directory

Archives are written to a temporary ".partial" file and renamed into
place, so a snapshot never contains a half-written artifact under its
final name.
"""

import asyncio
import os
import tarfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from pathlib import Path, PurePosixPath
from typing import Iterator

import structlog
import zstandard as zstd

from appsnap.archive.compression import detect_compression, open_tar_reader, open_tar_writer
from appsnap.config import CompressionMode
from appsnap.exceptions import ArchiveError

logger = structlog.get_logger()

# Thread pool for blocking tar streaming
_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="appsnap-archive")

_READ_CHUNK = 1024 * 1024

_ARCHIVE_FAILURES = (OSError, EOFError, tarfile.TarError, zstd.ZstdError)


@dataclass
class ArchiveInfo:
    """Summary of an archive produced, verified or extracted."""

    path: Path
    compression: CompressionMode
    members: int
    content_bytes: int
    size_bytes: int


async def capture_directory(
    source_dir: Path,
    dest_file: Path,
    compression: CompressionMode = CompressionMode.NONE,
) -> ArchiveInfo:
    """
    Archive the contents of source_dir into dest_file.

    Args:
        source_dir: Directory whose contents are archived (nothing excluded)
        dest_file: Artifact path; must not exist yet
        compression: Compression codec

    Returns:
        ArchiveInfo describing the artifact

    Raises:
        ArchiveError: If the source is unreadable or the destination unwritable
    """
    if not source_dir.is_dir():
        raise ArchiveError(
            f"Source directory not found: {source_dir}",
            details={"source_dir": str(source_dir)},
        )
    if dest_file.exists():
        raise ArchiveError(
            f"Archive already exists: {dest_file}",
            details={"dest_file": str(dest_file)},
        )

    loop = asyncio.get_running_loop()
    try:
        info = await loop.run_in_executor(
            _executor,
            partial(_capture_sync, source_dir, dest_file, compression),
        )
    except _ARCHIVE_FAILURES as e:
        raise ArchiveError(
            f"Failed to archive {source_dir}: {e}",
            details={"source_dir": str(source_dir), "dest_file": str(dest_file)},
        ) from e

    logger.info(
        "archive_captured",
        source_dir=str(source_dir),
        archive=str(dest_file),
        members=info.members,
        size=info.size_bytes,
        compression=compression.value,
    )
    return info


def _capture_sync(source_dir: Path, dest_file: Path, compression: CompressionMode) -> ArchiveInfo:
    temp_path = dest_file.with_name(dest_file.name + ".partial")
    members = 0
    content_bytes = 0

    def _count(tarinfo: tarfile.TarInfo) -> tarfile.TarInfo:
        nonlocal members, content_bytes
        members += 1
        content_bytes += tarinfo.size
        return tarinfo

    try:
        with open(temp_path, "wb") as raw:
            with open_tar_writer(raw, compression) as tar:
                tar.add(source_dir, arcname=".", recursive=True, filter=_count)
            raw.flush()
            os.fsync(raw.fileno())
        temp_path.rename(dest_file)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    return ArchiveInfo(
        path=dest_file,
        compression=compression,
        members=members,
        content_bytes=content_bytes,
        size_bytes=dest_file.stat().st_size,
    )


async def verify_archive(
    src_file: Path,
    compression: CompressionMode | None = None,
) -> ArchiveInfo:
    """
    Read an archive end to end without extracting it.

    Args:
        src_file: Archive to check
        compression: Expected codec (sniffed from the file when None)

    Returns:
        ArchiveInfo with member and byte counts

    Raises:
        ArchiveError: If the archive is missing, truncated, corrupt or unsafe
    """
    if not src_file.is_file():
        raise ArchiveError(
            f"Archive not found: {src_file}",
            details={"src_file": str(src_file)},
        )

    loop = asyncio.get_running_loop()
    try:
        info = await loop.run_in_executor(
            _executor,
            partial(_verify_sync, src_file, compression),
        )
    except ArchiveError:
        raise
    except _ARCHIVE_FAILURES as e:
        raise ArchiveError(
            f"Archive {src_file} is unreadable or corrupt: {e}",
            details={"src_file": str(src_file)},
        ) from e

    logger.info(
        "archive_verified",
        archive=str(src_file),
        members=info.members,
        content_bytes=info.content_bytes,
    )
    return info


def _verify_sync(src_file: Path, compression: CompressionMode | None) -> ArchiveInfo:
    codec = compression or detect_compression(src_file)
    members = 0
    content_bytes = 0

    with open(src_file, "rb") as raw:
        with open_tar_reader(raw, codec) as tar:
            for member in tar:
                _check_member(member, src_file)
                members += 1
                if member.isfile():
                    stream = tar.extractfile(member)
                    if stream is None:
                        continue
                    read = 0
                    while chunk := stream.read(_READ_CHUNK):
                        read += len(chunk)
                    if read != member.size:
                        raise ArchiveError(
                            f"Truncated member {member.name} in {src_file}",
                            details={"expected": member.size, "read": read},
                        )
                    content_bytes += read

    if members == 0:
        raise ArchiveError(
            f"Archive {src_file} contains no entries",
            details={"src_file": str(src_file)},
        )

    return ArchiveInfo(
        path=src_file,
        compression=codec,
        members=members,
        content_bytes=content_bytes,
        size_bytes=src_file.stat().st_size,
    )


async def extract_archive(
    src_file: Path,
    dest_dir: Path,
    compression: CompressionMode | None = None,
) -> ArchiveInfo:
    """
    Extract an archive into an existing, empty directory.

    Permission bits, ownership (when running as root) and modification
    times are restored from the archive.

    Args:
        src_file: Archive to extract
        dest_dir: Existing, empty destination directory
        compression: Expected codec (sniffed from the file when None)

    Returns:
        ArchiveInfo with member and byte counts

    Raises:
        ArchiveError: If the archive is missing/corrupt/unsafe or dest_dir is unusable
    """
    if not src_file.is_file():
        raise ArchiveError(
            f"Archive not found: {src_file}",
            details={"src_file": str(src_file)},
        )
    if not dest_dir.is_dir():
        raise ArchiveError(
            f"Destination directory does not exist: {dest_dir}",
            details={"dest_dir": str(dest_dir)},
        )
    if any(dest_dir.iterdir()):
        raise ArchiveError(
            f"Destination directory is not empty: {dest_dir}",
            details={"dest_dir": str(dest_dir)},
        )

    loop = asyncio.get_running_loop()
    try:
        info = await loop.run_in_executor(
            _executor,
            partial(_extract_sync, src_file, dest_dir, compression),
        )
    except ArchiveError:
        raise
    except _ARCHIVE_FAILURES as e:
        raise ArchiveError(
            f"Failed to extract {src_file} into {dest_dir}: {e}",
            details={"src_file": str(src_file), "dest_dir": str(dest_dir)},
        ) from e

    logger.info(
        "archive_extracted",
        archive=str(src_file),
        dest_dir=str(dest_dir),
        members=info.members,
    )
    return info


def _extract_sync(src_file: Path, dest_dir: Path, compression: CompressionMode | None) -> ArchiveInfo:
    codec = compression or detect_compression(src_file)
    counted = {"members": 0, "content_bytes": 0}

    def _checked(tar: tarfile.TarFile) -> Iterator[tarfile.TarInfo]:
        for member in tar:
            _check_member(member, src_file, dest_dir)
            counted["members"] += 1
            counted["content_bytes"] += member.size if member.isfile() else 0
            yield member

    with open(src_file, "rb") as raw:
        with open_tar_reader(raw, codec) as tar:
            # Members are vetted by _checked() one at a time, right before
            # each is written, so the archive's own permissions and owners
            # are applied unchanged.
            tar.extractall(dest_dir, members=_checked(tar), filter="fully_trusted")

    return ArchiveInfo(
        path=src_file,
        compression=codec,
        members=counted["members"],
        content_bytes=counted["content_bytes"],
        size_bytes=src_file.stat().st_size,
    )


def _check_member(member: tarfile.TarInfo, src_file: Path, dest_dir: Path | None = None) -> None:
    """
    Reject members that would land outside the destination.

    Symlink targets are stored as-is and may point anywhere, but nothing
    is ever written through one: when dest_dir is given, the member's
    real path (and a hard link's real target) must stay inside it.
    """
    name = PurePosixPath(member.name)
    if name.is_absolute() or ".." in name.parts:
        raise ArchiveError(
            f"Unsafe path in archive: {member.name}",
            details={"src_file": str(src_file)},
        )
    if member.islnk():
        target = PurePosixPath(member.linkname)
        if target.is_absolute() or ".." in target.parts:
            raise ArchiveError(
                f"Unsafe hard link in archive: {member.name} -> {member.linkname}",
                details={"src_file": str(src_file)},
            )
    if member.isdev():
        raise ArchiveError(
            f"Device node in archive: {member.name}",
            details={"src_file": str(src_file)},
        )
    if dest_dir is None:
        return

    root = os.path.realpath(dest_dir)
    paths = [os.path.join(root, member.name)]
    if member.islnk():
        paths.append(os.path.join(root, member.linkname))
    for path in paths:
        resolved = os.path.realpath(path)
        if os.path.commonpath([root, resolved]) != root:
            raise ArchiveError(
                f"Archive member escapes the destination through a symlink: {member.name}",
                details={"src_file": str(src_file), "resolved": resolved},
            )
