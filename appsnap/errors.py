# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for AppSnap.

These helpers centralize wording for common configuration and
precondition errors so that all modules present consistent, actionable
messages.
"""

from pathlib import Path


def explain_not_privileged(uid: int) -> str:
    """
    Explain that the run needs root privileges.
    """

    return (
        f"appsnap must run as root (current effective uid: {uid}). "
        "Stopping the web server, re-owning the application directories and "
        "administering the database all require elevated privileges."
    )


def explain_snapshot_root_missing(root: Path) -> str:
    """
    Explain that the snapshot root is not reachable.
    """

    return (
        f"Snapshot root {str(root)!r} does not exist or is not a directory. "
        "Mount the backup volume or set APPSNAP_SNAPSHOT_ROOT."
    )


def explain_snapshot_exists(snapshot_dir: Path) -> str:
    """
    Explain that a snapshot with the same identifier already exists.
    """

    return (
        f"Snapshot directory {str(snapshot_dir)!r} already exists. "
        "Refusing to overwrite an existing snapshot; wait a second and retry."
    )


def explain_snapshot_missing(snapshot_id: str, root: Path) -> str:
    """
    Explain that the requested snapshot does not exist.
    """

    return (
        f"Snapshot {snapshot_id!r} not found under {str(root)!r}. "
        "Run 'appsnap snapshots' to list available snapshots."
    )


def explain_invalid_snapshot_id(snapshot_id: str) -> str:
    """
    Explain that a snapshot identifier is not a plain directory name.
    """

    return (
        f"Invalid snapshot identifier: {snapshot_id!r}. "
        "Expected a plain directory name such as '20210327_200514'."
    )


def explain_incomplete_snapshot(snapshot_id: str, problems: list[str]) -> str:
    """
    Explain that a snapshot is missing artifacts.
    """

    return (
        f"Snapshot {snapshot_id!r} is incomplete: {'; '.join(problems)}. "
        "Restoring it would leave the instance without installation, data or database."
    )


def explain_tool_missing(tool: str, purpose: str) -> str:
    """
    Explain that an external command is not installed.
    """

    return (
        f"Required command {tool!r} was not found on PATH. "
        f"It is needed to {purpose}."
    )


def explain_concurrent_run(lock_path: Path) -> str:
    """
    Explain that another run holds the snapshot root.
    """

    return (
        f"Another appsnap run holds {str(lock_path)!r}. "
        "Only one backup or restore may run against a snapshot root at a time."
    )


def explain_invalid_engine(value: str | None) -> str:
    """
    Explain that the database engine selector is invalid.
    """

    return (
        f"Invalid database engine: {value!r}. "
        "Expected one of: 'mysql', 'mariadb', 'postgresql' or 'pgsql'."
    )


def explain_invalid_compression(value: str | None) -> str:
    """
    Explain that the compression setting is invalid.
    """

    return (
        f"Invalid compression setting: {value!r}. "
        "Expected 'none', 'gzip', 'zstd', 'true' or 'false'."
    )


def explain_invalid_keep_env(value: str | None) -> str:
    """
    Explain that APPSNAP_KEEP_SNAPSHOTS is invalid.
    """

    return (
        f"Invalid APPSNAP_KEEP_SNAPSHOTS value: {value!r}. "
        "It must be a non-negative integer (0 keeps every snapshot)."
    )


def explain_invalid_bool_env(name: str, value: str | None) -> str:
    """
    Explain that a boolean environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: true, false, yes, no, 1, 0."
    )


def explain_invalid_secret_backend(value: str | None) -> str:
    """
    Explain that the secret backend is invalid.
    """

    return (
        f"Invalid secret backend: {value!r}. "
        "Expected 'env', 'file' or 'encpass'."
    )


def explain_missing_secret(name: str, source: str) -> str:
    """
    Explain that a credential could not be found.
    """

    return (
        f"Secret {name!r} is missing or empty in {source}. "
        "The database name, user and password must all be provided."
    )
