# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Core - Backup/restore coordinator.

The coordinator drives the state machine

    Init -> Validated -> MaintenanceOn -> ServiceStopped
         -> ArtifactsCaptured | Restored -> ServiceRestarted
         -> MaintenanceOff -> RetentionApplied -> Done

with Cancelling reachable from any point after MaintenanceOn.

Preconditions (privilege, snapshot existence, credentials, client tools)
are all checked before anything is mutated. Once maintenance mode is on,
two nested guards make sure the service is started again and maintenance
mode is left on every exit path.
"""

from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Callable

import structlog
from ulid import ULID

from appsnap.archive import capture_directory, extract_archive, verify_archive
from appsnap.config import StackConfig
from appsnap.database import DatabaseAdapter, create_database_adapter
from appsnap.errors import explain_incomplete_snapshot, explain_not_privileged
from appsnap.exceptions import (
    DatabaseUnavailableError,
    PreconditionError,
    PrivilegeError,
)
from appsnap.fs import chown_recursive, current_uid, is_privileged, reset_directory
from appsnap.guards import MaintenanceGuard, ServiceGuard
from appsnap.journal import RunJournal
from appsnap.lock import snapshot_root_lease
from appsnap.reporting import NullReporter, ProgressReporter
from appsnap.retention import PruneResult, prune_snapshots
from appsnap.run import (
    CancellationToken,
    CoordinatorState,
    RunReport,
    StepRunner,
    is_cancellation,
)
from appsnap.secrets import (
    Credentials,
    SecretProvider,
    create_secret_provider,
    resolve_credentials,
)
from appsnap.service import ServiceControl, SystemdServiceController
from appsnap.shell import CommandRunner, run_command
from appsnap.snapshot import (
    Snapshot,
    create_snapshot_dir,
    find_snapshot_problems,
    generate_snapshot_id,
    open_snapshot,
    require_snapshot_root,
    write_manifest,
)

logger = structlog.get_logger()

AdapterFactory = Callable[[StackConfig, Credentials, CommandRunner], DatabaseAdapter]


@dataclass
class Collaborators:
    """External collaborators of a run (replaced by fakes in tests)."""

    service: ServiceControl
    secrets: SecretProvider
    reporter: ProgressReporter = field(default_factory=NullReporter)
    runner: CommandRunner = run_command
    adapter_factory: AdapterFactory = create_database_adapter
    ask_stay_in_maintenance: Callable[[], bool] | None = None
    clock: Callable[[], datetime] = datetime.now


def create_collaborators(
    config: StackConfig,
    reporter: ProgressReporter | None = None,
    ask_stay_in_maintenance: Callable[[], bool] | None = None,
) -> Collaborators:
    """Wire the production collaborators for a configuration."""
    return Collaborators(
        service=SystemdServiceController(config),
        secrets=create_secret_provider(config),
        reporter=reporter or NullReporter(),
        ask_stay_in_maintenance=ask_stay_in_maintenance,
    )


# ============================================================================
# Backup
# ============================================================================

async def run_backup(
    config: StackConfig,
    collaborators: Collaborators,
    cancel: CancellationToken | None = None,
) -> RunReport:
    """
    Take a snapshot of the installation directory, data directory and database.

    Artifact failures (archive, dump, missing tool) are recorded and, with
    backup_continue_on_artifact_error, the remaining artifacts are still
    taken; the report is then partial.

    Args:
        config: Stack configuration
        collaborators: Service controller, secret provider, reporter, ...
        cancel: Cancellation token polled between steps

    Returns:
        RunReport (check .succeeded / .partial)

    Raises:
        PrivilegeError, PreconditionError, ConcurrentRunError: Before any mutation
        ServiceControlError: If the service or maintenance flag cannot be toggled
        OperationCancelled: If the operator cancelled the run
        ArchiveError, DatabaseError, ToolMissingError: With the fail-fast policy
    """
    cancel = cancel or CancellationToken()
    report = RunReport(run_id=str(ULID()), operation="backup")
    reporter = collaborators.reporter

    logger.info("backup_started", run_id=report.run_id)

    _check_privilege(config)
    require_snapshot_root(config)
    credentials = await resolve_credentials(collaborators.secrets)
    adapter = collaborators.adapter_factory(config, credentials, collaborators.runner)

    # Advisory only: the dump step reports the missing tool and the other
    # artifacts are still captured
    try:
        adapter.check_dump_tool()
    except DatabaseUnavailableError as e:
        report.warnings.append(e.message)
        reporter.warning(e.message)
        logger.warning("dump_tool_missing", tool=adapter.dump_tool)

    async with snapshot_root_lease(config.lock_path):
        snapshot = create_snapshot_dir(config, generate_snapshot_id(config, collaborators.clock()))
        report.snapshot_id = snapshot.snapshot_id
        report.transition(CoordinatorState.VALIDATED)

        journal = RunJournal(config.journal_path, enabled=config.journal_enabled)
        steps = StepRunner(report, reporter, journal, cancel)
        await journal.start_run(report.run_id, report.operation, report.snapshot_id)

        try:
            await _backup_window(config, collaborators, snapshot, adapter, steps)

            if config.write_manifest:
                await steps.run(
                    "write_manifest",
                    "Writing snapshot manifest",
                    lambda: write_manifest(snapshot, config, report.run_id, report.failed_steps),
                    continue_on_error=True,
                )

            await _apply_retention(config, steps)
            report.transition(CoordinatorState.DONE)
        except BaseException as e:
            _mark_failed(report, e)
            raise
        finally:
            await _finish(report, journal)

    _log_outcome(report)
    return report


async def _backup_window(
    config: StackConfig,
    collaborators: Collaborators,
    snapshot: Snapshot,
    adapter: DatabaseAdapter,
    steps: StepRunner,
) -> None:
    service = collaborators.service
    report = steps.report
    continue_on_error = config.backup_continue_on_artifact_error

    async with AsyncExitStack() as maintenance_scope:
        maintenance_scope.push_async_exit(
            MaintenanceGuard(service, steps, collaborators.ask_stay_in_maintenance)
        )
        await steps.run("enable_maintenance", "Enabling maintenance mode", service.enable_maintenance)
        report.transition(CoordinatorState.MAINTENANCE_ON)
        steps.checkpoint()

        async with AsyncExitStack() as service_scope:
            service_scope.push_async_exit(ServiceGuard(service, steps))
            await steps.run("stop_service", "Stopping web server", service.stop_service)
            report.transition(CoordinatorState.SERVICE_STOPPED)

            artifact_steps = (
                (
                    "archive_installation",
                    f"Archiving installation directory {config.installation_dir}",
                    lambda: capture_directory(
                        config.installation_dir, snapshot.installation_archive, config.compression
                    ),
                ),
                (
                    "archive_data",
                    f"Archiving data directory {config.data_dir}",
                    lambda: capture_directory(
                        config.data_dir, snapshot.data_archive, config.compression
                    ),
                ),
                (
                    "dump_database",
                    f"Dumping {config.database_engine.value} database",
                    lambda: adapter.dump(snapshot.database_dump),
                ),
            )
            for name, description, func in artifact_steps:
                steps.checkpoint()
                await steps.run(name, description, func, continue_on_error=continue_on_error)

            report.transition(CoordinatorState.ARTIFACTS_CAPTURED)
            steps.checkpoint()


async def _apply_retention(config: StackConfig, steps: StepRunner) -> None:
    report = steps.report
    if config.keep_snapshots == 0:
        return

    if report.failed_steps and not config.prune_after_partial_backup:
        message = "Backup is partial; retention skipped so no older snapshot is pruned"
        report.warnings.append(message)
        steps.reporter.warning(message)
        logger.warning("retention_skipped", reason="partial_backup", failed_steps=report.failed_steps)
        return

    results: list[PruneResult] = []

    async def _prune() -> None:
        results.append(await prune_snapshots(config.snapshot_root, config.keep_snapshots))

    await steps.run(
        "apply_retention",
        f"Keeping the {config.keep_snapshots} most recent snapshots",
        _prune,
    )
    result = results[0]
    report.pruned = result.deleted
    for error in result.errors:
        report.warnings.append(f"retention: {error}")
        steps.reporter.warning(f"Could not delete snapshot {error}")
    report.transition(CoordinatorState.RETENTION_APPLIED)


# ============================================================================
# Restore
# ============================================================================

async def run_restore(
    config: StackConfig,
    snapshot_id: str,
    collaborators: Collaborators,
    cancel: CancellationToken | None = None,
) -> RunReport:
    """
    Restore the installation directory, data directory and database from a snapshot.

    Every step is fatal unless restore_continue_on_artifact_error is set.
    With verify_archives_before_delete both archives are streamed end to
    end before the live directories are deleted.

    Args:
        config: Stack configuration
        snapshot_id: Identifier of the snapshot directory
        collaborators: Service controller, secret provider, reporter, ...
        cancel: Cancellation token polled between steps

    Returns:
        RunReport

    Raises:
        PrivilegeError, PreconditionError, DatabaseUnavailableError,
        ConcurrentRunError: Before any mutation
        ArchiveError, DatabaseError, RestoreError: When a restore step fails
        ServiceControlError: If the service or maintenance flag cannot be toggled
        OperationCancelled: If the operator cancelled the run
    """
    cancel = cancel or CancellationToken()
    report = RunReport(run_id=str(ULID()), operation="restore", snapshot_id=snapshot_id)
    reporter = collaborators.reporter

    logger.info("restore_started", run_id=report.run_id, snapshot_id=snapshot_id)

    _check_privilege(config)
    snapshot = open_snapshot(config, snapshot_id)

    if config.require_complete_snapshot:
        problems = await find_snapshot_problems(snapshot)
        if problems:
            raise PreconditionError(
                explain_incomplete_snapshot(snapshot_id, problems),
                details={"snapshot_id": snapshot_id, "problems": problems},
            )

    credentials = await resolve_credentials(collaborators.secrets)
    adapter = collaborators.adapter_factory(config, credentials, collaborators.runner)
    adapter.check_client_tool()
    if config.probe_database:
        await adapter.probe()

    async with snapshot_root_lease(config.lock_path):
        journal = RunJournal(config.journal_path, enabled=config.journal_enabled)
        steps = StepRunner(report, reporter, journal, cancel)
        await journal.start_run(report.run_id, report.operation, snapshot_id)

        try:
            if config.verify_archives_before_delete:
                await steps.run(
                    "verify_installation_archive",
                    "Verifying installation archive",
                    lambda: verify_archive(snapshot.installation_archive),
                )
                await steps.run(
                    "verify_data_archive",
                    "Verifying data archive",
                    lambda: verify_archive(snapshot.data_archive),
                )
            else:
                message = (
                    "Archives are not verified before the live directories are deleted; "
                    "a corrupt archive leaves the instance recoverable only from the snapshot"
                )
                report.warnings.append(message)
                reporter.warning(message)
            report.transition(CoordinatorState.VALIDATED)

            await _restore_window(config, collaborators, snapshot, adapter, steps)
            report.transition(CoordinatorState.DONE)
        except BaseException as e:
            _mark_failed(report, e)
            raise
        finally:
            await _finish(report, journal)

    _log_outcome(report)
    return report


async def _restore_window(
    config: StackConfig,
    collaborators: Collaborators,
    snapshot: Snapshot,
    adapter: DatabaseAdapter,
    steps: StepRunner,
) -> None:
    service = collaborators.service
    report = steps.report
    continue_on_error = config.restore_continue_on_artifact_error
    install = config.installation_dir
    data = config.data_dir

    async with AsyncExitStack() as maintenance_scope:
        maintenance_scope.push_async_exit(
            MaintenanceGuard(service, steps, collaborators.ask_stay_in_maintenance)
        )
        await steps.run("enable_maintenance", "Enabling maintenance mode", service.enable_maintenance)
        report.transition(CoordinatorState.MAINTENANCE_ON)
        steps.checkpoint()

        async with AsyncExitStack() as service_scope:
            service_scope.push_async_exit(ServiceGuard(service, steps))
            await steps.run("stop_service", "Stopping web server", service.stop_service)
            report.transition(CoordinatorState.SERVICE_STOPPED)

            restore_steps = (
                (
                    "reset_installation_dir",
                    f"Deleting and recreating installation directory {install}",
                    lambda: reset_directory(install),
                ),
                (
                    "reset_data_dir",
                    f"Deleting and recreating data directory {data}",
                    lambda: reset_directory(data),
                ),
                (
                    "extract_installation",
                    "Extracting installation archive",
                    lambda: extract_archive(snapshot.installation_archive, install),
                ),
                (
                    "extract_data",
                    "Extracting data archive",
                    lambda: extract_archive(snapshot.data_archive, data),
                ),
                ("drop_database", "Dropping database", adapter.drop),
                ("create_database", "Creating database", adapter.create),
                (
                    "import_database",
                    "Importing database dump",
                    lambda: adapter.import_dump(snapshot.database_dump),
                ),
            )
            for name, description, func in restore_steps:
                steps.checkpoint()
                await steps.run(name, description, func, continue_on_error=continue_on_error)

            report.transition(CoordinatorState.RESTORED)
            steps.checkpoint()

        # Service is up again; ownership and fingerprint still run in maintenance mode
        user = config.service_user
        group = config.effective_service_group
        await steps.run(
            "chown_installation_dir",
            f"Setting ownership of {install} to {user}:{group}",
            lambda: chown_recursive(install, user, group),
            continue_on_error=continue_on_error,
        )
        await steps.run(
            "chown_data_dir",
            f"Setting ownership of {data} to {user}:{group}",
            lambda: chown_recursive(data, user, group),
            continue_on_error=continue_on_error,
        )
        await steps.run(
            "refresh_data_fingerprint",
            "Refreshing data fingerprint",
            service.refresh_data_fingerprint,
        )


# ============================================================================
# Retention
# ============================================================================

async def run_prune(
    config: StackConfig,
    keep: int | None = None,
    dry_run: bool = False,
) -> PruneResult:
    """
    Apply retention outside a backup, under the snapshot root lease.

    Raises:
        PreconditionError: If the snapshot root does not exist
        ConcurrentRunError: If a backup or restore is running
    """
    root = require_snapshot_root(config)
    keep = config.keep_snapshots if keep is None else keep
    async with snapshot_root_lease(config.lock_path):
        return await prune_snapshots(root, keep, dry_run=dry_run)


# ============================================================================
# Helpers
# ============================================================================

def _check_privilege(config: StackConfig) -> None:
    if config.require_privilege and not is_privileged():
        uid = current_uid()
        raise PrivilegeError(explain_not_privileged(uid), details={"uid": uid})


def _mark_failed(report: RunReport, error: BaseException) -> None:
    if is_cancellation(type(error)):
        report.cancelled = True
    message = str(error) or type(error).__name__
    if not any(entry.endswith(message) for entry in report.errors):
        report.errors.append(message)
    report.transition(CoordinatorState.FAILED)


async def _finish(report: RunReport, journal: RunJournal) -> None:
    report.duration_seconds = (datetime.now(UTC) - report.started_at).total_seconds()
    error = report.errors[-1] if report.state == CoordinatorState.FAILED and report.errors else None
    await journal.finish_run(report.run_id, report.state.value, error)


def _log_outcome(report: RunReport) -> None:
    logger.info(
        "run_completed",
        operation=report.operation,
        run_id=report.run_id,
        snapshot_id=report.snapshot_id,
        partial=report.partial,
        failed_steps=report.failed_steps,
        pruned=report.pruned,
        duration=round(report.duration_seconds, 3),
    )
