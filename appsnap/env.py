# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment and file based configuration helpers, plus policy profiles.

These helpers are small, convenient wrappers around create_config() and
StackConfig.with_updates(). They make it easy to:

- Build a configuration from APPSNAP_* environment variables
- Load a YAML configuration file (environment variables still win)
- Apply ready-made failure-policy profiles
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from appsnap.builder import create_config, create_empty_config
from appsnap.config import CompressionMode, DatabaseEngine, SecretBackend, StackConfig
from appsnap.errors import (
    explain_invalid_bool_env,
    explain_invalid_compression,
    explain_invalid_engine,
    explain_invalid_keep_env,
    explain_invalid_secret_backend,
)
from appsnap.exceptions import ConfigurationError

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")

# Environment variable -> config field, for values used verbatim
_STRING_VARS = {
    "APPSNAP_SNAPSHOT_ROOT": "snapshot_root",
    "APPSNAP_INSTALLATION_DIR": "installation_dir",
    "APPSNAP_DATA_DIR": "data_dir",
    "APPSNAP_SERVICE_NAME": "service_name",
    "APPSNAP_SERVICE_USER": "service_user",
    "APPSNAP_SERVICE_GROUP": "service_group",
    "APPSNAP_DATABASE_HOST": "database_host",
    "APPSNAP_POSTGRES_ADMIN_USER": "postgres_admin_user",
    "APPSNAP_POSTGRES_MAINTENANCE_DB": "postgres_maintenance_db",
    "APPSNAP_INSTALLATION_ARCHIVE_NAME": "installation_archive_name",
    "APPSNAP_DATA_ARCHIVE_NAME": "data_archive_name",
    "APPSNAP_DATABASE_DUMP_NAME": "database_dump_name",
    "APPSNAP_SNAPSHOT_ID_FORMAT": "snapshot_id_format",
    "APPSNAP_PHP_BINARY": "php_binary",
    "APPSNAP_OCC_PATH": "occ_path",
    "APPSNAP_SECRET_BUCKET": "secret_bucket",
    "APPSNAP_SECRET_DIR": "secret_dir",
}

_BOOL_VARS = {
    "APPSNAP_BACKUP_CONTINUE_ON_ERROR": "backup_continue_on_artifact_error",
    "APPSNAP_RESTORE_CONTINUE_ON_ERROR": "restore_continue_on_artifact_error",
    "APPSNAP_VERIFY_ARCHIVES": "verify_archives_before_delete",
    "APPSNAP_REQUIRE_COMPLETE_SNAPSHOT": "require_complete_snapshot",
    "APPSNAP_PROBE_DATABASE": "probe_database",
    "APPSNAP_WRITE_MANIFEST": "write_manifest",
    "APPSNAP_JOURNAL": "journal_enabled",
    "APPSNAP_PRUNE_AFTER_PARTIAL": "prune_after_partial_backup",
    "APPSNAP_REQUIRE_PRIVILEGE": "require_privilege",
}


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_bool_env(name, value))


def _parse_keep(value: str) -> int:
    try:
        keep = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_keep_env(value)) from exc
    if keep < 0:
        raise ConfigurationError(explain_invalid_keep_env(value))
    return keep


def _parse_engine(value: Any) -> DatabaseEngine:
    try:
        return DatabaseEngine(value)
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_engine(str(value))) from exc


def _parse_compression(value: Any) -> CompressionMode:
    try:
        return CompressionMode(value)
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_compression(str(value))) from exc


def _parse_secret_backend(value: Any) -> SecretBackend:
    try:
        return SecretBackend(str(value).lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_secret_backend(str(value))) from exc


def _parse_port(value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ConfigurationError(f"Invalid APPSNAP_DATABASE_PORT value: {value!r}") from exc


def read_env_overrides(environ: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """
    Collect configuration overrides from APPSNAP_* environment variables.

    Only variables that are set produce an entry, so the result can be
    layered over file-based configuration.
    """
    env = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}

    for var, key in _STRING_VARS.items():
        value = env.get(var)
        if value:
            overrides[key] = value

    for var, key in _BOOL_VARS.items():
        value = env.get(var)
        if value:
            overrides[key] = _parse_bool(var, value)

    if env.get("APPSNAP_KEEP_SNAPSHOTS"):
        overrides["keep_snapshots"] = _parse_keep(env["APPSNAP_KEEP_SNAPSHOTS"])
    if env.get("APPSNAP_DATABASE"):
        overrides["database_engine"] = _parse_engine(env["APPSNAP_DATABASE"])
    if env.get("APPSNAP_DATABASE_PORT"):
        overrides["database_port"] = _parse_port(env["APPSNAP_DATABASE_PORT"])
    if env.get("APPSNAP_COMPRESSION"):
        overrides["compression"] = _parse_compression(env["APPSNAP_COMPRESSION"])
    if env.get("APPSNAP_SECRET_BACKEND"):
        overrides["secret_backend"] = _parse_secret_backend(env["APPSNAP_SECRET_BACKEND"])

    return overrides


def create_config_from_env(environ: Mapping[str, str] | None = None) -> StackConfig:
    """
    Create a StackConfig from environment variables.

    Unset variables keep the stock defaults
    (/var/www/nextcloud, /home/nextcloud/data, /mnt/backup/nextcloud,
    nginx, www-data, PostgreSQL, 7 snapshots, no compression).

    Recognised variables:
        - APPSNAP_SNAPSHOT_ROOT, APPSNAP_INSTALLATION_DIR, APPSNAP_DATA_DIR
        - APPSNAP_COMPRESSION: none | gzip | zstd | true | false
        - APPSNAP_SERVICE_NAME, APPSNAP_SERVICE_USER, APPSNAP_SERVICE_GROUP
        - APPSNAP_DATABASE: mysql | mariadb | postgresql | pgsql
        - APPSNAP_DATABASE_HOST, APPSNAP_DATABASE_PORT
        - APPSNAP_KEEP_SNAPSHOTS: non-negative integer (0 keeps all)
        - APPSNAP_*_NAME: artifact file names
        - APPSNAP_SECRET_BACKEND / APPSNAP_SECRET_BUCKET / APPSNAP_SECRET_DIR
        - policy switches such as APPSNAP_VERIFY_ARCHIVES=false
    """
    return create_config(**read_env_overrides(environ))


def load_config_file(
    path: Path | str,
    environ: Mapping[str, str] | None = None,
) -> StackConfig:
    """
    Load a YAML configuration file and overlay environment variables.

    The file holds a flat mapping of StackConfig field names. Credentials
    are never read from it.
    """
    path = Path(path)
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        raise ConfigurationError(
            f"Configuration file not found: {path}",
            details={"path": str(path)},
        ) from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(
            f"Configuration file is not valid YAML: {exc}",
            details={"path": str(path)},
        ) from exc

    if not isinstance(data, dict):
        raise ConfigurationError(
            "Configuration file must contain a mapping",
            details={"path": str(path)},
        )

    forbidden = {"password", "db_password", "database_password"} & set(data)
    if forbidden:
        raise ConfigurationError(
            "Credentials must come from the secret provider, not the configuration file",
            details={"keys": sorted(forbidden)},
        )

    unknown = set(data) - set(create_empty_config())
    if unknown:
        raise ConfigurationError(
            "Unknown configuration keys",
            details={"keys": sorted(unknown), "path": str(path)},
        )

    if "database_engine" in data:
        data["database_engine"] = _parse_engine(data["database_engine"])
    if "compression" in data:
        data["compression"] = _parse_compression(data["compression"])
    if "secret_backend" in data:
        data["secret_backend"] = _parse_secret_backend(data["secret_backend"])

    data.update(read_env_overrides(environ))
    return create_config(**data)


# ============================================================================
# Profiles
# ============================================================================

def legacy_compatible(config: StackConfig) -> StackConfig:
    """
    Reproduce the step order and failure handling of the classic backup scripts.

    - Restore deletes live directories before validating the archives
    - No snapshot completeness check and no database probe
    - Backup keeps going past artifact errors, restore stops at the first
    """

    return config.with_updates(
        verify_archives_before_delete=False,
        require_complete_snapshot=False,
        probe_database=False,
        backup_continue_on_artifact_error=True,
        restore_continue_on_artifact_error=False,
        prune_after_partial_backup=True,
    )


def hardened(config: StackConfig) -> StackConfig:
    """
    Apply a fail-fast profile.

    - Any artifact error aborts both backup and restore
    - Archives are validated and snapshots checked before deletion
    - Retention never runs after a degraded backup
    """

    return config.with_updates(
        backup_continue_on_artifact_error=False,
        restore_continue_on_artifact_error=False,
        verify_archives_before_delete=True,
        require_complete_snapshot=True,
        probe_database=True,
        prune_after_partial_backup=False,
    )
