# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Shell - Async execution of external commands.

Every external tool (systemctl, php occ, mysqldump, psql, ...) is run
through run_command(). Secrets travel in the child environment, never in
argv, because argv is logged and visible in the process table.
"""

import asyncio
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Mapping, Protocol, Sequence

import structlog

from appsnap.errors import explain_tool_missing
from appsnap.exceptions import CommandError, ToolMissingError

logger = structlog.get_logger()

# Keep error details readable when a tool dumps a lot on stderr
_MAX_STDERR_CHARS = 2000


@dataclass
class CommandResult:
    """Outcome of an external command."""

    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    """Callable that runs an external command (swappable in tests)."""

    def __call__(
        self,
        argv: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        stdin_path: Path | None = None,
        stdout_path: Path | None = None,
        check: bool = True,
    ) -> Awaitable[CommandResult]:
        ...


def find_tool(name: str) -> str | None:
    """Return the absolute path of an executable on PATH, or None."""
    return shutil.which(name)


def as_user(user: str, argv: Sequence[str]) -> list[str]:
    """Wrap argv so it runs as another user."""
    return ["sudo", "-u", user, *argv]


async def run_command(
    argv: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    stdin_path: Path | None = None,
    stdout_path: Path | None = None,
    check: bool = True,
) -> CommandResult:
    """
    Run an external command to completion.

    Args:
        argv: Command and arguments (no shell involved)
        env: Extra environment variables merged over os.environ
        stdin_path: File fed to the command's stdin
        stdout_path: File receiving the command's stdout (created/truncated)
        check: Raise CommandError on a non-zero exit status

    Returns:
        CommandResult with captured output (stdout is empty when redirected)

    Raises:
        ToolMissingError: If the executable does not exist
        CommandError: If check is set and the command fails
    """
    argv = [str(a) for a in argv]
    child_env = None
    if env:
        child_env = {**os.environ, **env}

    stdin_file = open(stdin_path, "rb") if stdin_path else None
    try:
        stdout_file = open(stdout_path, "wb") if stdout_path else None
    except OSError:
        if stdin_file:
            stdin_file.close()
        raise

    logger.debug("command_started", argv=argv)

    try:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin_file if stdin_file else asyncio.subprocess.DEVNULL,
                stdout=stdout_file if stdout_file else asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=child_env,
            )
        except FileNotFoundError as e:
            raise ToolMissingError(
                explain_tool_missing(argv[0], f"run {' '.join(argv[:2])}"),
                details={"argv": argv},
            ) from e

        stdout_bytes, stderr_bytes = await proc.communicate()
    finally:
        if stdin_file:
            stdin_file.close()
        if stdout_file:
            stdout_file.close()

    result = CommandResult(
        argv=argv,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=(stdout_bytes or b"").decode(errors="replace"),
        stderr=(stderr_bytes or b"").decode(errors="replace"),
    )

    logger.debug("command_finished", argv=argv, returncode=result.returncode)

    if check and not result.ok:
        raise CommandError(
            f"Command {argv[0]!r} exited with status {result.returncode}",
            details={
                "argv": argv,
                "returncode": result.returncode,
                "stderr": result.stderr.strip()[-_MAX_STDERR_CHARS:],
            },
        )

    return result
