# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap command line interface.

Exit codes:
    0   success
    1   fatal error (nothing done, or a step failed and was unwound)
    2   usage error
    3   backup finished with some artifacts missing
    130 cancelled by the operator
"""

import asyncio
import signal
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import structlog
import typer

from appsnap.config import StackConfig
from appsnap.core import create_collaborators, run_backup, run_prune, run_restore
from appsnap.env import create_config_from_env, hardened, legacy_compatible, load_config_file
from appsnap.exceptions import AppSnapError, OperationCancelled
from appsnap.journal import get_recent_runs
from appsnap.log import configure_logging
from appsnap.reporting import ConsoleReporter
from appsnap.run import CancellationToken, RunReport
from appsnap.snapshot import list_snapshots, verify_snapshot

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_PARTIAL = 3
EXIT_CANCELLED = 130

T = TypeVar("T")

app = typer.Typer(
    name="appsnap",
    help="Back up and restore a web application stack (installation, data and database).",
    no_args_is_help=True,
)


class Profile(str, Enum):
    LEGACY = "legacy"
    HARDENED = "hardened"


@dataclass
class CliState:
    config_path: Path | None
    profile: Profile | None


@app.callback()
def _root(
    ctx: typer.Context,
    config: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", envvar="APPSNAP_CONFIG", help="YAML configuration file"),
    ] = None,
    profile: Annotated[
        Optional[Profile],
        typer.Option(help="Failure-policy profile applied on top of the configuration"),
    ] = None,
    log_level: Annotated[str, typer.Option(help="Log level (DEBUG, INFO, WARNING, ...)")] = "WARNING",
    json_logs: Annotated[bool, typer.Option(help="Emit JSON log lines on stderr")] = False,
):
    """Back up and restore a web application stack."""
    configure_logging(log_level, json_logs)
    ctx.obj = CliState(config_path=config, profile=profile)


# ============================================================================
# Helpers
# ============================================================================

def _fail(message: str, code: int = EXIT_FAILURE, problems: list | None = None) -> typer.Exit:
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    for problem in problems or []:
        typer.secho(f"  - {problem}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=code)


def _load_config(ctx: typer.Context) -> StackConfig:
    state: CliState = ctx.obj
    try:
        if state.config_path is not None:
            config = load_config_file(state.config_path)
        else:
            config = create_config_from_env()
    except AppSnapError as e:
        raise _fail(e.message, problems=e.details.get("errors") or e.details.get("keys"))

    if state.profile == Profile.LEGACY:
        config = legacy_compatible(config)
    elif state.profile == Profile.HARDENED:
        config = hardened(config)
    return config


def _ask_stay_in_maintenance() -> bool:
    try:
        return typer.confirm("Stay in maintenance mode?", default=False, err=True)
    except typer.Abort:
        # No terminal to answer on
        return False


async def _with_signals(factory: Callable[[CancellationToken], Awaitable[T]]) -> T:
    cancel = CancellationToken()
    loop = asyncio.get_running_loop()

    def _on_signal() -> None:
        typer.secho(
            "Cancellation requested; stopping after the current step ...",
            fg=typer.colors.YELLOW,
            err=True,
        )
        cancel.cancel()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal)
        except (NotImplementedError, RuntimeError) as e:
            logger.debug("signal_handler_unavailable", signal=sig.name, error=str(e))
            continue
        installed.append(sig)

    try:
        return await factory(cancel)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _execute(factory: Callable[[CancellationToken], Awaitable[T]]) -> T:
    try:
        return asyncio.run(_with_signals(factory))
    except (OperationCancelled, KeyboardInterrupt):
        typer.secho("Cancelled by operator.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=EXIT_CANCELLED)
    except AppSnapError as e:
        raise _fail(e.message, problems=e.details.get("problems") or e.details.get("errors"))


def _print_summary(report: RunReport) -> None:
    if report.pruned:
        typer.echo(f"Pruned snapshots: {', '.join(report.pruned)}")
    if report.partial:
        typer.secho(
            f"{report.operation.capitalize()} of {report.snapshot_id} finished with errors:",
            fg=typer.colors.YELLOW,
            err=True,
        )
        for error in report.errors:
            typer.secho(f"  - {error}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(
            f"{report.operation.capitalize()} of {report.snapshot_id} completed "
            f"in {report.duration_seconds:.1f}s",
            fg=typer.colors.GREEN,
        )


def _format_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if value < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{size} B"
        value /= 1024
    return f"{value:.1f} TiB"


# ============================================================================
# Commands
# ============================================================================

@app.command()
def backup(ctx: typer.Context):
    """Take a new snapshot, then apply retention."""
    config = _load_config(ctx)
    collaborators = create_collaborators(config, ConsoleReporter(), _ask_stay_in_maintenance)
    report = _execute(lambda cancel: run_backup(config, collaborators, cancel))
    _print_summary(report)
    if report.partial:
        raise typer.Exit(code=EXIT_PARTIAL)


@app.command()
def restore(
    ctx: typer.Context,
    snapshot_id: Annotated[str, typer.Argument(help="Snapshot identifier, e.g. 20210327_200514")],
):
    """Restore installation, data and database from a snapshot."""
    config = _load_config(ctx)
    collaborators = create_collaborators(config, ConsoleReporter(), _ask_stay_in_maintenance)
    report = _execute(lambda cancel: run_restore(config, snapshot_id, collaborators, cancel))
    _print_summary(report)
    if report.partial:
        raise typer.Exit(code=EXIT_FAILURE)


@app.command()
def snapshots(ctx: typer.Context):
    """List snapshots, newest first."""
    config = _load_config(ctx)
    found = _execute(lambda cancel: list_snapshots(config))
    if not found:
        typer.echo("No snapshots found.")
        return

    for info in found:
        status = "complete" if info.complete else "INCOMPLETE"
        typer.echo(
            f"{info.snapshot_id}  {info.modified_at:%Y-%m-%d %H:%M:%S}  "
            f"{_format_size(info.size_bytes):>10}  {status}"
        )


@app.command()
def prune(
    ctx: typer.Context,
    keep: Annotated[
        Optional[int],
        typer.Option(min=0, help="Snapshots to keep (default: configured value, 0 keeps all)"),
    ] = None,
    dry_run: Annotated[bool, typer.Option(help="Only show what would be deleted")] = False,
):
    """Delete all but the most recent snapshots."""
    config = _load_config(ctx)
    result = _execute(lambda cancel: run_prune(config, keep=keep, dry_run=dry_run))

    verb = "Would delete" if dry_run else "Deleted"
    for snapshot_id in result.deleted:
        typer.echo(f"{verb} {snapshot_id}")
    if not result.deleted:
        typer.echo("Nothing to prune.")
    if result.errors:
        raise _fail("Some snapshots could not be deleted", problems=result.errors)


@app.command()
def verify(
    ctx: typer.Context,
    snapshot_id: Annotated[str, typer.Argument(help="Snapshot identifier")],
):
    """Check a snapshot's artifacts against its manifest."""
    config = _load_config(ctx)
    result = _execute(lambda cancel: verify_snapshot(config, snapshot_id))

    if not result.manifest_found:
        typer.secho("No manifest; archives were checked by reading them.", fg=typer.colors.YELLOW, err=True)
    if not result.ok:
        raise _fail(f"Snapshot {snapshot_id} failed verification", problems=result.problems)
    typer.secho(f"Snapshot {snapshot_id} OK ({', '.join(result.checked)})", fg=typer.colors.GREEN)


@app.command()
def history(
    ctx: typer.Context,
    limit: Annotated[int, typer.Option(min=1, help="Number of runs to show")] = 20,
):
    """Show recent backup and restore runs from the run journal."""
    config = _load_config(ctx)
    runs = _execute(lambda cancel: get_recent_runs(config.journal_path, limit))
    if not runs:
        typer.echo("No runs recorded.")
        return

    for run in runs:
        line = f"{run['started_at']}  {run['operation']:<7}  {run['snapshot_id'] or '-'}  {run['state'] or 'running'}"
        if run["error"]:
            line += f"  ({run['error']})"
        typer.echo(line)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
