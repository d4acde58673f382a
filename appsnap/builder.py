# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Builder - Functional builder pattern for configuration.

This module provides pure functions for building StackConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from appsnap.config import CompressionMode, DatabaseEngine, SecretBackend, StackConfig
from appsnap.exceptions import ConfigurationError


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "snapshot_root": Path("/mnt/backup/nextcloud"),
        "installation_dir": Path("/var/www/nextcloud"),
        "data_dir": Path("/home/nextcloud/data"),
        "compression": CompressionMode.NONE,
        "service_name": "nginx",
        "service_user": "www-data",
        "service_group": None,
        "database_engine": DatabaseEngine.POSTGRESQL,
        "database_host": "localhost",
        "database_port": None,
        "postgres_admin_user": "postgres",
        "postgres_maintenance_db": "postgres",
        "keep_snapshots": 7,
        "installation_archive_name": "nextcloud-installation-directory.tar",
        "data_archive_name": "nextcloud-data-directory.tar",
        "database_dump_name": "nextcloud-db.dump",
        "manifest_name": "manifest.json",
        "snapshot_id_format": "%Y%m%d_%H%M%S",
        "php_binary": "php",
        "occ_path": None,
        "secret_backend": SecretBackend.ENV,
        "secret_bucket": "nextcloud",
        "secret_dir": None,
        "backup_continue_on_artifact_error": True,
        "restore_continue_on_artifact_error": False,
        "verify_archives_before_delete": True,
        "require_complete_snapshot": True,
        "probe_database": True,
        "write_manifest": True,
        "prune_after_partial_backup": True,
        "require_privilege": True,
        "journal_enabled": True,
        "journal_name": ".appsnap-journal.db",
        "lock_name": ".appsnap.lock",
    }


def with_snapshot_root(config: ConfigDict, path: Path | str) -> ConfigDict:
    """
    Set the directory that holds one sub-directory per snapshot.

    Args:
        config: Current configuration dictionary
        path: Snapshot root path

    Returns:
        New configuration dictionary with snapshot root set
    """
    return {**config, "snapshot_root": Path(path)}


def with_directories(
    config: ConfigDict,
    installation_dir: Path | str,
    data_dir: Path | str,
) -> ConfigDict:
    """
    Set the live installation and data directories.

    Args:
        config: Current configuration dictionary
        installation_dir: Application installation directory
        data_dir: Application data directory

    Returns:
        New configuration dictionary with both directories set
    """
    return {
        **config,
        "installation_dir": Path(installation_dir),
        "data_dir": Path(data_dir),
    }


def with_compression(config: ConfigDict, mode: CompressionMode | str | bool) -> ConfigDict:
    """
    Set archive compression.

    Args:
        config: Current configuration dictionary
        mode: 'none', 'gzip', 'zstd', or a boolean (True means gzip)

    Returns:
        New configuration dictionary with compression set
    """
    return {**config, "compression": CompressionMode(mode)}


def with_service(config: ConfigDict, name: str, user: str, group: str | None = None) -> ConfigDict:
    """
    Set the service unit and the user owning the application files.

    Args:
        config: Current configuration dictionary
        name: systemd unit of the web server / reverse proxy
        user: User the application runs as
        group: Group for re-owned files (defaults to the user)

    Returns:
        New configuration dictionary with service settings
    """
    return {**config, "service_name": name, "service_user": user, "service_group": group}


def with_database(
    config: ConfigDict,
    engine: DatabaseEngine | str,
    host: str = "localhost",
    port: int | None = None,
) -> ConfigDict:
    """
    Select the database engine and its local endpoint.

    Args:
        config: Current configuration dictionary
        engine: 'mysql', 'mariadb', 'postgresql' or 'pgsql'
        host: Database host (default: localhost)
        port: Database port (default: engine default)

    Returns:
        New configuration dictionary with database settings
    """
    return {
        **config,
        "database_engine": DatabaseEngine(engine),
        "database_host": host,
        "database_port": port,
    }


def keep_snapshots(config: ConfigDict, count: int) -> ConfigDict:
    """
    Set how many snapshots retention keeps.

    Args:
        config: Current configuration dictionary
        count: Number of snapshots to keep (0 keeps all)

    Returns:
        New configuration dictionary with retention set

    Raises:
        ConfigurationError: If count is not a non-negative integer
    """
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ConfigurationError(
            "Configuration validation failed",
            details={"errors": [f"keep_snapshots must be a non-negative integer, got {count!r}"]},
        )
    return {**config, "keep_snapshots": count}


def with_artifact_names(
    config: ConfigDict,
    installation: str | None = None,
    data: str | None = None,
    dump: str | None = None,
) -> ConfigDict:
    """
    Override artifact file names.

    Args:
        config: Current configuration dictionary
        installation: Installation archive name (without compression suffix)
        data: Data archive name (without compression suffix)
        dump: Database dump name

    Returns:
        New configuration dictionary with artifact names set
    """
    updated = dict(config)
    if installation:
        updated["installation_archive_name"] = installation
    if data:
        updated["data_archive_name"] = data
    if dump:
        updated["database_dump_name"] = dump
    return updated


def with_secrets(
    config: ConfigDict,
    backend: SecretBackend | str,
    bucket: str | None = None,
    secret_dir: Path | str | None = None,
) -> ConfigDict:
    """
    Configure where database credentials come from.

    Args:
        config: Current configuration dictionary
        backend: 'env', 'file' or 'encpass'
        bucket: encpass bucket / environment prefix
        secret_dir: Directory with one file per secret (file backend)

    Returns:
        New configuration dictionary with secret settings
    """
    updated = {**config, "secret_backend": SecretBackend(backend)}
    if bucket:
        updated["secret_bucket"] = bucket
    if secret_dir is not None:
        updated["secret_dir"] = Path(secret_dir)
    return updated


def legacy_ordering(config: ConfigDict) -> ConfigDict:
    """
    Delete live directories before validating archives on restore.

    WARNING: A corrupt archive then leaves the instance without its
    installation and data directories.

    Args:
        config: Current configuration dictionary

    Returns:
        New configuration dictionary with archive pre-validation disabled
    """
    import sys

    print(
        "⚠️  WARNING: Restore will delete live directories before validating archives.",
        file=sys.stderr,
    )
    return {**config, "verify_archives_before_delete": False}


def disable_privilege_check(config: ConfigDict) -> ConfigDict:
    """
    Skip the root check.

    WARNING: Use only for testing against scratch directories.

    Args:
        config: Current configuration dictionary

    Returns:
        New configuration dictionary with the privilege check disabled
    """
    return {**config, "require_privilege": False}


def build_config(config_dict: ConfigDict) -> StackConfig:
    """
    Validate and build an immutable StackConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable StackConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    unknown = set(config_dict) - set(create_empty_config())
    if unknown:
        raise ConfigurationError(
            "Unknown configuration keys",
            details={"keys": sorted(unknown)},
        )

    return StackConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_snapshot_root(c, "/mnt/backup/cloud"),
            lambda c: with_database(c, "mariadb"),
            legacy_ordering,
        )(create_empty_config())

    Args:
        *funcs: Builder functions to compose

    Returns:
        A single function that applies all functions in sequence
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def _coerce_int(name: str, value: Any) -> int:
    if isinstance(value, bool):
        value = str(value)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            "Configuration validation failed",
            details={"errors": [f"{name} must be an integer, got {value!r}"]},
        ) from exc


def create_config(**kwargs: Any) -> StackConfig:
    """
    Create a StackConfig from keyword arguments.

    This is the recommended user-facing API. Values may be given as plain
    strings (paths, engine names, compression modes) and are normalised.

    Example:
        config = create_config(
            snapshot_root="/mnt/backup/nextcloud",
            database_engine="mariadb",
            compression=True,
            keep_snapshots=14,
        )

    Returns:
        Validated, immutable StackConfig instance
    """
    config_dict = create_empty_config()

    if "compression" in kwargs:
        config_dict = with_compression(config_dict, kwargs.pop("compression"))

    if "keep_snapshots" in kwargs:
        config_dict = keep_snapshots(config_dict, _coerce_int("keep_snapshots", kwargs.pop("keep_snapshots")))

    config_dict.update(kwargs)

    return build_config(config_dict)
