# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Database adapter base class.

An adapter is selected once per run from the configured engine and owns
the four destructive/capturing capabilities {dump, drop, create, import}
plus the preflight checks that run before any of them.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Mapping, Sequence

import structlog

from appsnap.config import DatabaseEngine, StackConfig
from appsnap.errors import explain_tool_missing
from appsnap.exceptions import (
    CommandError,
    DatabaseError,
    DatabaseUnavailableError,
    ToolMissingError,
)
from appsnap.secrets import Credentials
from appsnap.shell import CommandResult, CommandRunner, find_tool, run_command

logger = structlog.get_logger()


class DatabaseAdapter(ABC):
    """Engine-specific dump/drop/create/import against the local server."""

    engine: DatabaseEngine
    dump_tool: str
    client_tool: str

    def __init__(
        self,
        config: StackConfig,
        credentials: Credentials,
        runner: CommandRunner = run_command,
        tool_lookup: Callable[[str], str | None] = find_tool,
    ):
        self.config = config
        self.credentials = credentials
        self.runner = runner
        self.tool_lookup = tool_lookup

    @property
    def host(self) -> str:
        return self.config.database_host

    @property
    def port(self) -> int:
        return self.config.effective_database_port

    def _require_tool(self, tool: str, purpose: str) -> None:
        if self.tool_lookup(tool) is None:
            raise DatabaseUnavailableError(
                explain_tool_missing(tool, purpose),
                details={"engine": self.engine.value, "tool": tool},
            )

    def check_dump_tool(self) -> None:
        """Raise DatabaseUnavailableError unless the dump tool is installed."""
        self._require_tool(self.dump_tool, "dump the database")

    def check_client_tool(self) -> None:
        """Raise DatabaseUnavailableError unless the restore client is installed."""
        self._require_tool(self.client_tool, "restore the database")

    async def _run(
        self,
        argv: Sequence[str],
        operation: str,
        *,
        env: Mapping[str, str] | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
    ) -> CommandResult:
        try:
            return await self.runner(
                argv,
                env=env,
                stdin_path=stdin_path,
                stdout_path=stdout_path,
            )
        except ToolMissingError as e:
            raise DatabaseUnavailableError(e.message, details=e.details) from e
        except CommandError as e:
            raise DatabaseError(
                f"Database {operation} failed ({self.engine.value}): {e.message}",
                details={"database": self.credentials.database, **e.details},
            ) from e
        except OSError as e:
            raise DatabaseError(
                f"Database {operation} failed ({self.engine.value}): {e}",
                details={"database": self.credentials.database},
            ) from e

    async def dump(self, dest_file: Path) -> None:
        """
        Write a logical, transactionally consistent dump to dest_file.

        The dump is written under a temporary name and renamed once the
        tool exits successfully and produced output.
        """
        self.check_dump_tool()
        temp_path = dest_file.with_name(dest_file.name + ".partial")
        try:
            await self._dump_to(temp_path)
            if not temp_path.exists() or temp_path.stat().st_size == 0:
                raise DatabaseError(
                    f"Dump of {self.credentials.database!r} produced no output",
                    details={"dest_file": str(dest_file)},
                )
            temp_path.rename(dest_file)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

        logger.info(
            "database_dumped",
            engine=self.engine.value,
            database=self.credentials.database,
            dump=str(dest_file),
            size=dest_file.stat().st_size,
        )

    async def import_dump(self, src_file: Path) -> None:
        """Load a dump into the (freshly created) database."""
        if not src_file.is_file():
            raise DatabaseError(
                f"Dump file not found: {src_file}",
                details={"src_file": str(src_file)},
            )
        await self._import_from(src_file)
        logger.info(
            "database_imported",
            engine=self.engine.value,
            database=self.credentials.database,
            dump=str(src_file),
        )

    @abstractmethod
    async def _dump_to(self, dest_file: Path) -> None:
        """Run the engine's dump tool into dest_file."""

    @abstractmethod
    async def _import_from(self, src_file: Path) -> None:
        """Run the engine's client to load src_file."""

    @abstractmethod
    async def drop(self) -> None:
        """Drop the application database if it exists."""

    @abstractmethod
    async def create(self) -> None:
        """Create the application database with the engine's UTF-8 settings."""

    @abstractmethod
    async def probe(self) -> None:
        """Connect to the server and run a trivial query, or raise DatabaseUnavailableError."""
