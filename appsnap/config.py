# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Configuration - Immutable stack configuration.

All configuration is frozen (immutable) after creation: a run loads it
once and never mutates it. Backup and restore derive artifact names from
the same fields, so both sides of a deployment agree on the snapshot
layout as long as they share one configuration.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List


class DatabaseEngine(str, Enum):
    """Database engine family. Accepts the legacy aliases as input."""

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"

    @classmethod
    def _missing_(cls, value: object) -> "DatabaseEngine | None":
        if not isinstance(value, str):
            return None
        return _ENGINE_ALIASES.get(value.strip().lower())

    @property
    def default_port(self) -> int:
        return 3306 if self is DatabaseEngine.MYSQL else 5432


_ENGINE_ALIASES = {
    "mysql": DatabaseEngine.MYSQL,
    "mariadb": DatabaseEngine.MYSQL,
    "postgresql": DatabaseEngine.POSTGRESQL,
    "postgres": DatabaseEngine.POSTGRESQL,
    "pgsql": DatabaseEngine.POSTGRESQL,
}


class CompressionMode(str, Enum):
    """Compression applied to directory archives."""

    NONE = "none"
    GZIP = "gzip"
    ZSTD = "zstd"

    @classmethod
    def _missing_(cls, value: object) -> "CompressionMode | None":
        if isinstance(value, bool):
            return cls.GZIP if value else cls.NONE
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on", "1", "gz"):
            return cls.GZIP
        if lowered in ("false", "no", "off", "0", ""):
            return cls.NONE
        if lowered in ("zst", "zstandard"):
            return cls.ZSTD
        for member in cls:
            if member.value == lowered:
                return member
        return None

    @property
    def suffix(self) -> str:
        return {
            CompressionMode.NONE: "",
            CompressionMode.GZIP: ".gz",
            CompressionMode.ZSTD: ".zst",
        }[self]


class SecretBackend(str, Enum):
    """Where database credentials are read from."""

    ENV = "env"
    FILE = "file"
    ENCPASS = "encpass"


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_plain_name(name: str) -> bool:
    return isinstance(name, str) and bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name


def _is_within(path: Path, parent: Path) -> bool:
    try:
        path.resolve().relative_to(parent.resolve())
        return True
    except ValueError:
        return False


def _validate_id_format(fmt: str) -> bool:
    """The id format must render to a plain, time-dependent directory name."""
    try:
        rendered = datetime(2021, 3, 27, 20, 5, 14).strftime(fmt)
        other = datetime(2021, 3, 27, 20, 5, 15).strftime(fmt)
    except ValueError:
        return False
    return _is_plain_name(rendered) and rendered != other


@dataclass(frozen=True)
class StackConfig:
    """
    Immutable configuration for one appsnap deployment.

    This configuration is frozen after creation so a backup or restore
    run always sees the same paths, names and policies from start to end.
    """

    # Directory holding one sub-directory per snapshot
    snapshot_root: Path = field(default_factory=lambda: Path("/mnt/backup/nextcloud"))

    # Live application directories
    installation_dir: Path = field(default_factory=lambda: Path("/var/www/nextcloud"))
    data_dir: Path = field(default_factory=lambda: Path("/home/nextcloud/data"))

    # Archive compression (disable when a deduplicating tool like Borg
    # consumes the snapshots)
    compression: CompressionMode = CompressionMode.NONE

    # Web server / reverse proxy unit and the user owning the application
    service_name: str = "nginx"
    service_user: str = "www-data"
    service_group: str | None = None

    # Database engine and fixed local endpoint
    database_engine: DatabaseEngine = DatabaseEngine.POSTGRESQL
    database_host: str = "localhost"
    database_port: int | None = None
    postgres_admin_user: str = "postgres"
    postgres_maintenance_db: str = "postgres"

    # Number of snapshots to keep (0 keeps all)
    keep_snapshots: int = 7

    # Artifact file names (compression suffix is appended automatically)
    installation_archive_name: str = "nextcloud-installation-directory.tar"
    data_archive_name: str = "nextcloud-data-directory.tar"
    database_dump_name: str = "nextcloud-db.dump"
    manifest_name: str = "manifest.json"

    # Snapshot identifier (second resolution)
    snapshot_id_format: str = "%Y%m%d_%H%M%S"

    # Application management command
    php_binary: str = "php"
    occ_path: Path | None = None

    # Credentials
    secret_backend: SecretBackend = SecretBackend.ENV
    secret_bucket: str = "nextcloud"
    secret_dir: Path | None = None

    # Failure policies
    backup_continue_on_artifact_error: bool = True
    restore_continue_on_artifact_error: bool = False
    verify_archives_before_delete: bool = True
    require_complete_snapshot: bool = True
    probe_database: bool = True
    write_manifest: bool = True
    prune_after_partial_backup: bool = True
    require_privilege: bool = True

    # Bookkeeping files at the top of the snapshot root
    journal_enabled: bool = True
    journal_name: str = ".appsnap-journal.db"
    lock_name: str = ".appsnap.lock"

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        # Accept plain strings from YAML/env and normalise them in place
        for name in ("snapshot_root", "installation_dir", "data_dir", "occ_path", "secret_dir"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, Path):
                object.__setattr__(self, name, Path(value))
        for name, enum_cls in (
            ("database_engine", DatabaseEngine),
            ("compression", CompressionMode),
            ("secret_backend", SecretBackend),
        ):
            value = getattr(self, name)
            if not isinstance(value, enum_cls):
                try:
                    object.__setattr__(self, name, enum_cls(value))
                except ValueError:
                    errors.append(f"Invalid {name}: {value!r}")
        if errors:
            from appsnap.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

        if not _is_int(self.keep_snapshots) or self.keep_snapshots < 0:
            errors.append(f"keep_snapshots must be >= 0, got {self.keep_snapshots!r}")

        if self.database_port is not None and (
            not _is_int(self.database_port) or not 0 < self.database_port < 65536
        ):
            errors.append(f"database_port must be 1-65535, got {self.database_port!r}")

        names = {
            "installation_archive_name": self.installation_archive_name,
            "data_archive_name": self.data_archive_name,
            "database_dump_name": self.database_dump_name,
            "manifest_name": self.manifest_name,
            "journal_name": self.journal_name,
            "lock_name": self.lock_name,
        }
        for key, value in names.items():
            if not _is_plain_name(value):
                errors.append(f"{key} must be a plain file name, got {value!r}")

        artifact_names = [
            self.installation_archive_filename,
            self.data_archive_filename,
            self.database_dump_name,
            self.manifest_name,
        ]
        if len(set(artifact_names)) != len(artifact_names):
            errors.append(f"Artifact file names must be distinct: {artifact_names}")

        if not self.service_name:
            errors.append("service_name is required")
        if not self.service_user:
            errors.append("service_user is required")

        install = Path(self.installation_dir)
        data = Path(self.data_dir)
        root = Path(self.snapshot_root)
        if install.resolve() == data.resolve():
            errors.append("installation_dir and data_dir must be different directories")
        for label, live in (("installation_dir", install), ("data_dir", data)):
            if _is_within(root, live):
                errors.append(
                    f"snapshot_root {str(root)!r} lies inside {label} {str(live)!r}; "
                    "a restore would delete it"
                )

        if not _validate_id_format(self.snapshot_id_format):
            errors.append(f"Invalid snapshot_id_format: {self.snapshot_id_format!r}")

        if self.secret_backend == SecretBackend.FILE and self.secret_dir is None:
            errors.append("secret_dir is required when secret_backend is 'file'")

        if errors:
            from appsnap.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def installation_archive_filename(self) -> str:
        return self.installation_archive_name + self.compression.suffix

    @property
    def data_archive_filename(self) -> str:
        return self.data_archive_name + self.compression.suffix

    @property
    def effective_database_port(self) -> int:
        return self.database_port or self.database_engine.default_port

    @property
    def effective_service_group(self) -> str:
        return self.service_group or self.service_user

    @property
    def effective_occ_path(self) -> Path:
        return self.occ_path or Path(self.installation_dir) / "occ"

    @property
    def lock_path(self) -> Path:
        return Path(self.snapshot_root) / self.lock_name

    @property
    def journal_path(self) -> Path:
        return Path(self.snapshot_root) / self.journal_name

    def with_updates(self, **kwargs) -> "StackConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return StackConfig(**current)
