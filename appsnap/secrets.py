# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Secrets - Credential lookup.

The coordinator needs exactly three secrets: the database name (`db`),
the database user (`dbUser`) and its password (`dbPassword`). They are
resolved once at the start of a run and held in memory only.
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Protocol

import structlog

from appsnap.config import SecretBackend, StackConfig
from appsnap.errors import explain_missing_secret
from appsnap.exceptions import CommandError, SecretError, ToolMissingError
from appsnap.shell import CommandRunner, run_command

logger = structlog.get_logger()

SECRET_DB = "db"
SECRET_DB_USER = "dbUser"
SECRET_DB_PASSWORD = "dbPassword"


@dataclass(frozen=True)
class Credentials:
    """Database credentials. The password never appears in repr()."""

    database: str
    user: str
    password: str = field(repr=False)

    def __repr__(self) -> str:
        return f"Credentials(database={self.database!r}, user={self.user!r}, password='***')"


class SecretProvider(Protocol):
    """Opaque key/value lookup of named secrets."""

    async def get_secret(self, name: str) -> str:
        """Return the secret value, or raise SecretError."""
        ...


class EnvSecretProvider:
    """Reads APPSNAP_SECRET_<NAME> (name upper-cased) from the environment."""

    def __init__(self, prefix: str = "APPSNAP_SECRET_", environ: Mapping[str, str] | None = None):
        self.prefix = prefix
        self.environ = environ

    def _variable(self, name: str) -> str:
        return self.prefix + name.upper()

    async def get_secret(self, name: str) -> str:
        env = os.environ if self.environ is None else self.environ
        value = env.get(self._variable(name), "")
        if not value:
            raise SecretError(explain_missing_secret(name, f"${self._variable(name)}"))
        return value


class FileSecretProvider:
    """Reads one file per secret from a directory (systemd credentials, docker secrets)."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    async def get_secret(self, name: str) -> str:
        path = self.directory / name
        try:
            value = path.read_text().rstrip("\n")
        except OSError as e:
            raise SecretError(
                explain_missing_secret(name, str(self.directory)),
                details={"path": str(path)},
            ) from e
        if not value:
            raise SecretError(explain_missing_secret(name, str(self.directory)))
        return value


class EncpassSecretProvider:
    """
    Reads secrets from an encpass.sh bucket.

    Sources encpass-lite.sh in bash and calls `get_secret <bucket> <name>`,
    the usual place for database credentials on hosts set up with encpass.
    """

    def __init__(
        self,
        bucket: str,
        script: str = "encpass-lite.sh",
        runner: CommandRunner = run_command,
    ):
        self.bucket = bucket
        self.script = script
        self.runner = runner

    async def get_secret(self, name: str) -> str:
        snippet = (
            f". {shlex.quote(self.script)} && "
            f"get_secret {shlex.quote(self.bucket)} {shlex.quote(name)}"
        )
        try:
            result = await self.runner(["bash", "-c", snippet])
        except (CommandError, ToolMissingError) as e:
            raise SecretError(
                explain_missing_secret(name, f"encpass bucket {self.bucket!r}"),
            ) from e
        value = result.stdout.rstrip("\n")
        if not value:
            raise SecretError(explain_missing_secret(name, f"encpass bucket {self.bucket!r}"))
        return value


def create_secret_provider(config: StackConfig) -> SecretProvider:
    """Build the provider selected by the configuration."""
    if config.secret_backend == SecretBackend.FILE:
        return FileSecretProvider(config.secret_dir)
    if config.secret_backend == SecretBackend.ENCPASS:
        return EncpassSecretProvider(config.secret_bucket)
    return EnvSecretProvider()


async def resolve_credentials(provider: SecretProvider) -> Credentials:
    """
    Resolve the database credentials.

    Raises:
        SecretError: If any of the three secrets is missing or empty
    """
    credentials = Credentials(
        database=await provider.get_secret(SECRET_DB),
        user=await provider.get_secret(SECRET_DB_USER),
        password=await provider.get_secret(SECRET_DB_PASSWORD),
    )
    logger.debug("credentials_resolved", database=credentials.database, user=credentials.user)
    return credentials
