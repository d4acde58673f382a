# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Snapshots - Layout, identifiers, manifest and integrity checks.

A snapshot is one directory under the snapshot root, named after its
creation time, holding the installation archive, the data archive and the
database dump. Backup creates the directory atomically (an existing one
is never reused) and then fills it artifact by artifact. Restore only
ever reads it.

The manifest records size and SHA-256 of every artifact so a snapshot
can be checked before anything live is deleted.
"""

import hashlib
import json
import os
from dataclasses import dataclass
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, List

import aiofiles
import structlog

from appsnap.archive import verify_archive
from appsnap.config import StackConfig
from appsnap.errors import (
    explain_invalid_snapshot_id,
    explain_snapshot_exists,
    explain_snapshot_missing,
    explain_snapshot_root_missing,
)
from appsnap.exceptions import ArchiveError, PreconditionError

logger = structlog.get_logger()

MANIFEST_FORMAT = 1

_HASH_CHUNK = 1024 * 1024

# Artifact keys, in backup order
INSTALLATION = "installation"
DATA = "data"
DATABASE = "database"
ARTIFACT_KEYS = (INSTALLATION, DATA, DATABASE)


@dataclass(frozen=True)
class Snapshot:
    """Paths of one snapshot directory and its artifacts."""

    snapshot_id: str
    path: Path
    installation_archive: Path
    data_archive: Path
    database_dump: Path
    manifest_path: Path

    @classmethod
    def for_config(cls, config: StackConfig, snapshot_id: str) -> "Snapshot":
        path = Path(config.snapshot_root) / snapshot_id
        return cls(
            snapshot_id=snapshot_id,
            path=path,
            installation_archive=path / config.installation_archive_filename,
            data_archive=path / config.data_archive_filename,
            database_dump=path / config.database_dump_name,
            manifest_path=path / config.manifest_name,
        )

    def artifacts(self) -> Dict[str, Path]:
        return {
            INSTALLATION: self.installation_archive,
            DATA: self.data_archive,
            DATABASE: self.database_dump,
        }


@dataclass
class SnapshotInfo:
    """Listing entry for one snapshot directory."""

    snapshot_id: str
    path: Path
    modified_at: datetime
    size_bytes: int
    complete: bool
    problems: List[str]


@dataclass
class SnapshotVerification:
    """Result of verify_snapshot()."""

    snapshot_id: str
    manifest_found: bool
    checked: List[str]
    problems: List[str]

    @property
    def ok(self) -> bool:
        return not self.problems


# ============================================================================
# Identifiers and directories
# ============================================================================

def generate_snapshot_id(config: StackConfig, now: datetime | None = None) -> str:
    """Render the snapshot identifier for the given (local) time."""
    return (now or datetime.now()).strftime(config.snapshot_id_format)


def validate_snapshot_id(snapshot_id: str) -> str:
    """
    Reject identifiers that would escape the snapshot root.

    Raises:
        PreconditionError: If the id is empty, contains a path separator or is . / ..
    """
    if (
        not snapshot_id
        or snapshot_id in (".", "..")
        or "/" in snapshot_id
        or "\\" in snapshot_id
        or "\x00" in snapshot_id
    ):
        raise PreconditionError(
            explain_invalid_snapshot_id(snapshot_id),
            details={"snapshot_id": snapshot_id},
        )
    return snapshot_id


def require_snapshot_root(config: StackConfig) -> Path:
    """Return the snapshot root, or raise PreconditionError if it is not a directory."""
    root = Path(config.snapshot_root)
    if not root.is_dir():
        raise PreconditionError(
            explain_snapshot_root_missing(root),
            details={"snapshot_root": str(root)},
        )
    return root


def create_snapshot_dir(config: StackConfig, snapshot_id: str) -> Snapshot:
    """
    Create the empty directory of a new snapshot.

    Raises:
        PreconditionError: If the snapshot root is missing or the snapshot
            directory already exists
    """
    require_snapshot_root(config)
    snapshot = Snapshot.for_config(config, validate_snapshot_id(snapshot_id))
    try:
        snapshot.path.mkdir(mode=0o700)
    except FileExistsError as e:
        raise PreconditionError(
            explain_snapshot_exists(snapshot.path),
            details={"snapshot_id": snapshot_id},
        ) from e

    logger.info("snapshot_dir_created", snapshot_id=snapshot_id, path=str(snapshot.path))
    return snapshot


def open_snapshot(config: StackConfig, snapshot_id: str) -> Snapshot:
    """
    Locate an existing snapshot for reading.

    Raises:
        PreconditionError: If the id is invalid or the directory does not exist
    """
    snapshot = Snapshot.for_config(config, validate_snapshot_id(snapshot_id))
    if not snapshot.path.is_dir():
        raise PreconditionError(
            explain_snapshot_missing(snapshot_id, Path(config.snapshot_root)),
            details={"snapshot_id": snapshot_id, "path": str(snapshot.path)},
        )
    return snapshot


def snapshot_dirs(root: Path) -> List[Path]:
    """
    Immediate child directories of root, newest first.

    Ordered by modification time; equal times fall back to the name so the
    order is stable. Symlinks and plain files are ignored.
    """
    entries = []
    with os.scandir(root) as it:
        for entry in it:
            if entry.is_dir(follow_symlinks=False):
                entries.append((entry.stat(follow_symlinks=False).st_mtime, entry.name))
    entries.sort(reverse=True)
    return [root / name for _, name in entries]


# ============================================================================
# Manifest
# ============================================================================

async def file_sha256(path: Path) -> str:
    """Hex SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    async with aiofiles.open(path, "rb") as f:
        while True:
            chunk = await f.read(_HASH_CHUNK)
            if not chunk:
                break
            digest.update(chunk)
    return digest.hexdigest()


async def write_manifest(
    snapshot: Snapshot,
    config: StackConfig,
    run_id: str,
    failed_steps: List[str] | None = None,
) -> dict:
    """
    Describe the artifacts present in the snapshot in its manifest file.

    Artifacts that are missing (a degraded backup) are left out and the
    manifest is flagged as partial.

    Raises:
        ArchiveError: If an artifact cannot be read or the manifest written
    """
    artifacts: Dict[str, dict] = {}
    try:
        for key, path in snapshot.artifacts().items():
            if not path.is_file():
                continue
            artifacts[key] = {
                "file": path.name,
                "size": path.stat().st_size,
                "sha256": await file_sha256(path),
            }

        manifest = {
            "format": MANIFEST_FORMAT,
            "run_id": run_id,
            "snapshot_id": snapshot.snapshot_id,
            "created_at": datetime.now(UTC).isoformat(),
            "engine": config.database_engine.value,
            "compression": config.compression.value,
            "partial": len(artifacts) != len(ARTIFACT_KEYS) or bool(failed_steps),
            "failed_steps": list(failed_steps or []),
            "artifacts": artifacts,
        }

        temp_path = snapshot.manifest_path.with_name(snapshot.manifest_path.name + ".partial")
        async with aiofiles.open(temp_path, "w") as f:
            await f.write(json.dumps(manifest, indent=2, sort_keys=True))
        temp_path.rename(snapshot.manifest_path)
    except OSError as e:
        raise ArchiveError(
            f"Failed to write manifest for snapshot {snapshot.snapshot_id}: {e}",
            details={"manifest": str(snapshot.manifest_path)},
        ) from e

    logger.info(
        "manifest_written",
        snapshot_id=snapshot.snapshot_id,
        artifacts=sorted(artifacts),
        partial=manifest["partial"],
    )
    return manifest


async def read_manifest(snapshot: Snapshot) -> dict | None:
    """
    Load the snapshot manifest.

    Returns:
        The manifest, or None when the snapshot has none (older snapshots)

    Raises:
        ArchiveError: If the manifest exists but cannot be parsed
    """
    if not snapshot.manifest_path.is_file():
        return None
    try:
        async with aiofiles.open(snapshot.manifest_path, "r") as f:
            manifest = json.loads(await f.read())
    except (OSError, ValueError) as e:
        raise ArchiveError(
            f"Unreadable manifest in snapshot {snapshot.snapshot_id}: {e}",
            details={"manifest": str(snapshot.manifest_path)},
        ) from e
    if not isinstance(manifest, dict) or not isinstance(manifest.get("artifacts"), dict):
        raise ArchiveError(
            f"Malformed manifest in snapshot {snapshot.snapshot_id}",
            details={"manifest": str(snapshot.manifest_path)},
        )
    return manifest


# ============================================================================
# Integrity
# ============================================================================

async def find_snapshot_problems(snapshot: Snapshot) -> List[str]:
    """
    Check that all three artifacts are present and non-empty.

    When a manifest exists, sizes must also match the recorded ones.
    Returns a list of human-readable problems (empty when complete).
    """
    problems: List[str] = []
    try:
        manifest = await read_manifest(snapshot)
    except ArchiveError as e:
        problems.append(e.message)
        manifest = None

    recorded = manifest["artifacts"] if manifest else {}
    for key, path in snapshot.artifacts().items():
        if not path.is_file():
            problems.append(f"{key} artifact missing: {path.name}")
            continue
        size = path.stat().st_size
        if size == 0:
            problems.append(f"{key} artifact is empty: {path.name}")
            continue
        expected = recorded.get(key, {}).get("size")
        if manifest is not None and expected is None:
            problems.append(f"{key} artifact is not listed in the manifest")
        elif expected is not None and expected != size:
            problems.append(f"{key} artifact size {size} does not match manifest size {expected}")

    return problems


async def verify_snapshot(config: StackConfig, snapshot_id: str) -> SnapshotVerification:
    """
    Check a snapshot's completeness and content.

    With a manifest every artifact is re-hashed against it. Without one
    the two archives are streamed end to end to detect corruption.

    Raises:
        PreconditionError: If the snapshot does not exist
    """
    snapshot = open_snapshot(config, snapshot_id)
    problems = await find_snapshot_problems(snapshot)
    checked: List[str] = []

    try:
        manifest = await read_manifest(snapshot)
    except ArchiveError:
        manifest = None

    if manifest is not None:
        for key, entry in manifest["artifacts"].items():
            path = snapshot.path / entry.get("file", "")
            if not path.is_file():
                continue
            actual = await file_sha256(path)
            checked.append(key)
            if actual != entry.get("sha256"):
                problems.append(f"{key} artifact checksum mismatch: {path.name}")
    else:
        for key in (INSTALLATION, DATA):
            path = snapshot.artifacts()[key]
            if not path.is_file() or path.stat().st_size == 0:
                continue
            try:
                await verify_archive(path)
            except ArchiveError as e:
                problems.append(f"{key} archive is corrupt: {e.message}")
            checked.append(key)

    logger.info(
        "snapshot_verified",
        snapshot_id=snapshot_id,
        manifest=manifest is not None,
        checked=checked,
        problems=len(problems),
    )
    return SnapshotVerification(
        snapshot_id=snapshot_id,
        manifest_found=manifest is not None,
        checked=checked,
        problems=problems,
    )


async def list_snapshots(config: StackConfig) -> List[SnapshotInfo]:
    """
    List the snapshots under the snapshot root, newest first.

    Raises:
        PreconditionError: If the snapshot root does not exist
    """
    root = require_snapshot_root(config)
    snapshots: List[SnapshotInfo] = []
    for path in snapshot_dirs(root):
        snapshot = Snapshot.for_config(config, path.name)
        problems = await find_snapshot_problems(snapshot)
        size = sum(
            entry.stat().st_size for entry in path.iterdir() if entry.is_file()
        )
        snapshots.append(
            SnapshotInfo(
                snapshot_id=path.name,
                path=path,
                modified_at=datetime.fromtimestamp(path.stat().st_mtime, UTC),
                size_bytes=size,
                complete=not problems,
                problems=problems,
            )
        )
    return snapshots
