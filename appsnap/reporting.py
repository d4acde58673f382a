# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Operator narration.

Every step prints a start marker and a done marker on stdout. Failures
and warnings go to stderr so the narration stays intact when a step
fails.
"""

from typing import Protocol

import typer


class ProgressReporter(Protocol):
    """Receives step progress from the coordinator."""

    def step_started(self, description: str) -> None: ...

    def step_finished(self, description: str) -> None: ...

    def step_failed(self, description: str, error: BaseException) -> None: ...

    def warning(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...


class ConsoleReporter:
    """Print progress to the terminal."""

    def step_started(self, description: str) -> None:
        typer.echo(f"{description} ...")

    def step_finished(self, description: str) -> None:
        typer.echo(f"{description}: done")

    def step_failed(self, description: str, error: BaseException) -> None:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        typer.secho(f"{description}: FAILED - {message}", fg=typer.colors.RED, err=True)

    def warning(self, message: str) -> None:
        typer.secho(f"WARNING: {message}", fg=typer.colors.YELLOW, err=True)

    def info(self, message: str) -> None:
        typer.echo(message)


class NullReporter:
    """Discard all progress (library use)."""

    def step_started(self, description: str) -> None:
        pass

    def step_finished(self, description: str) -> None:
        pass

    def step_failed(self, description: str, error: BaseException) -> None:
        pass

    def warning(self, message: str) -> None:
        pass

    def info(self, message: str) -> None:
        pass
