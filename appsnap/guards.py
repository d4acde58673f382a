# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Scoped release of the stack's external state.

"Maintenance enabled" and "service stopped" are two independent
acquisitions. Each guard is pushed onto an AsyncExitStack *before* the
matching acquire runs, so its release happens on every exit path: normal
completion, a failed step, a failed acquire, or cancellation.

Neither guard suppresses the exception in flight. A release failure
(ServiceControlError) replaces it and is reported to the operator.
"""

import asyncio
from types import TracebackType
from typing import Callable

import structlog

from appsnap.run import CoordinatorState, StepRunner, is_cancellation
from appsnap.service import ServiceControl

logger = structlog.get_logger()


class ServiceGuard:
    """Start the service when the scope exits, unconditionally."""

    def __init__(self, service: ServiceControl, steps: StepRunner):
        self.service = service
        self.steps = steps

    async def __call__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if is_cancellation(exc_type):
            self._mark_cancelled()
        await self.steps.run("start_service", "Starting web server", self.service.start_service)
        self.steps.report.transition(CoordinatorState.SERVICE_RESTARTED)
        return False

    def _mark_cancelled(self) -> None:
        report = self.steps.report
        if not report.cancelled:
            report.cancelled = True
            report.transition(CoordinatorState.CANCELLING)


class MaintenanceGuard:
    """
    Leave maintenance mode when the scope exits.

    On cancellation the operator may choose to stay in maintenance mode;
    any other exit disables it.
    """

    def __init__(
        self,
        service: ServiceControl,
        steps: StepRunner,
        ask_stay_in_maintenance: Callable[[], bool] | None = None,
    ):
        self.service = service
        self.steps = steps
        self.ask_stay_in_maintenance = ask_stay_in_maintenance

    async def __call__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if is_cancellation(exc_type) and self.ask_stay_in_maintenance is not None:
            stay = await asyncio.to_thread(self.ask_stay_in_maintenance)
            if stay:
                self.steps.report.maintenance_kept = True
                self.steps.reporter.warning(
                    "Staying in maintenance mode; disable it manually once the instance is checked"
                )
                logger.warning("maintenance_mode_kept", run_id=self.steps.report.run_id)
                return False

        await self.steps.run(
            "disable_maintenance",
            "Disabling maintenance mode",
            self.service.disable_maintenance,
        )
        self.steps.report.transition(CoordinatorState.MAINTENANCE_OFF)
        return False
