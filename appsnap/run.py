# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Run State - Coordinator states, run report, steps and cancellation.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from typing import Awaitable, Callable, List

import structlog

from appsnap.exceptions import ARTIFACT_ERRORS, OperationCancelled
from appsnap.journal import RunJournal
from appsnap.reporting import ProgressReporter

logger = structlog.get_logger()


class CoordinatorState(str, Enum):
    """States of the backup/restore state machine."""

    INIT = "init"
    VALIDATED = "validated"
    MAINTENANCE_ON = "maintenance_on"
    SERVICE_STOPPED = "service_stopped"
    ARTIFACTS_CAPTURED = "artifacts_captured"
    RESTORED = "restored"
    SERVICE_RESTARTED = "service_restarted"
    MAINTENANCE_OFF = "maintenance_off"
    RETENTION_APPLIED = "retention_applied"
    DONE = "done"
    CANCELLING = "cancelling"
    FAILED = "failed"


# Exceptions that mean "the operator asked us to stop"
CANCELLATION_EXCEPTIONS = (OperationCancelled, asyncio.CancelledError, KeyboardInterrupt)


def is_cancellation(exc_type: type | None) -> bool:
    return exc_type is not None and issubclass(exc_type, CANCELLATION_EXCEPTIONS)


@dataclass
class StepResult:
    """Outcome of one coordinator step."""

    name: str
    description: str
    status: str  # ok, failed
    duration_seconds: float
    error: str | None = None


@dataclass
class RunReport:
    """Result of a backup or restore run."""

    run_id: str  # ULID
    operation: str  # backup, restore
    snapshot_id: str | None = None
    state: CoordinatorState = CoordinatorState.INIT
    states: List[CoordinatorState] = field(default_factory=lambda: [CoordinatorState.INIT])
    steps: List[StepResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    cancelled: bool = False
    maintenance_kept: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    duration_seconds: float = 0.0

    def transition(self, state: CoordinatorState) -> None:
        logger.debug("coordinator_state", run_id=self.run_id, state=state.value)
        self.state = state
        self.states.append(state)

    @property
    def failed_steps(self) -> List[str]:
        return [step.name for step in self.steps if step.status == "failed"]

    @property
    def partial(self) -> bool:
        """Run finished, but some artifact steps failed and were skipped over."""
        return self.state == CoordinatorState.DONE and bool(self.failed_steps)

    @property
    def succeeded(self) -> bool:
        return self.state == CoordinatorState.DONE and not self.failed_steps


class CancellationToken:
    """Cooperative cancellation flag, set from a signal handler."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.warning("cancellation_requested")
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled by operator")


class StepRunner:
    """Runs coordinator steps with narration, timing and journaling."""

    def __init__(
        self,
        report: RunReport,
        reporter: ProgressReporter,
        journal: RunJournal,
        cancel: CancellationToken,
    ):
        self.report = report
        self.reporter = reporter
        self.journal = journal
        self.cancel = cancel

    def checkpoint(self) -> None:
        """Raise OperationCancelled if cancellation was requested."""
        if self.cancel.cancelled:
            if not self.report.cancelled:
                self.report.cancelled = True
                self.report.transition(CoordinatorState.CANCELLING)
            self.cancel.raise_if_cancelled()

    async def run(
        self,
        name: str,
        description: str,
        func: Callable[[], Awaitable[object]],
        continue_on_error: bool = False,
    ) -> bool:
        """
        Run one step.

        Args:
            name: Step identifier (journal, report)
            description: Operator-facing description
            func: Coroutine factory doing the work
            continue_on_error: Absorb artifact errors instead of raising

        Returns:
            True if the step succeeded, False if an artifact error was absorbed
        """
        self.reporter.step_started(description)
        started = time.monotonic()
        try:
            await func()
        except ARTIFACT_ERRORS as e:
            await self._record(name, description, started, e)
            if not continue_on_error:
                raise
            logger.warning("step_failed_continuing", step=name, error=str(e))
            return False
        except BaseException as e:
            await self._record(name, description, started, e)
            raise

        duration = time.monotonic() - started
        self.report.steps.append(StepResult(name, description, "ok", duration))
        self.reporter.step_finished(description)
        logger.info("step_completed", run_id=self.report.run_id, step=name, duration=round(duration, 3))
        await self.journal.record_step(self.report.run_id, name, "ok", duration)
        return True

    async def _record(self, name: str, description: str, started: float, error: BaseException) -> None:
        duration = time.monotonic() - started
        message = str(error) or type(error).__name__
        self.report.steps.append(StepResult(name, description, "failed", duration, message))
        self.report.errors.append(f"{name}: {message}")
        self.reporter.step_failed(description, error)
        logger.error("step_failed", run_id=self.report.run_id, step=name, error=message)
        await self.journal.record_step(self.report.run_id, name, "failed", duration, message)
