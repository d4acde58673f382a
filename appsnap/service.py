# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Service Control - Web server unit and application maintenance flag.

The web server is managed through systemd. The maintenance flag and the
data fingerprint belong to the application and are toggled through its
`occ` management command, run as the web user.
"""

from typing import Protocol

import structlog

from appsnap.config import StackConfig
from appsnap.exceptions import CommandError, ServiceControlError, ToolMissingError
from appsnap.shell import CommandRunner, as_user, run_command

logger = structlog.get_logger()


class ServiceControl(Protocol):
    """Operations the coordinator needs from the service layer."""

    async def stop_service(self) -> None: ...

    async def start_service(self) -> None: ...

    async def is_service_active(self) -> bool: ...

    async def enable_maintenance(self) -> None: ...

    async def disable_maintenance(self) -> None: ...

    async def refresh_data_fingerprint(self) -> None: ...


class SystemdServiceController:
    """ServiceControl backed by systemctl and the application's occ command."""

    def __init__(self, config: StackConfig, runner: CommandRunner = run_command):
        self.config = config
        self.runner = runner

    async def _systemctl(self, action: str) -> None:
        argv = ["systemctl", action, self.config.service_name]
        try:
            await self.runner(argv)
        except (CommandError, ToolMissingError) as e:
            raise ServiceControlError(
                f"Failed to {action} service {self.config.service_name!r}: {e.message}",
                details={"service": self.config.service_name, **e.details},
            ) from e
        logger.info("service_action_completed", action=action, service=self.config.service_name)

    async def stop_service(self) -> None:
        await self._systemctl("stop")

    async def start_service(self) -> None:
        await self._systemctl("start")

    async def is_service_active(self) -> bool:
        result = await self.runner(
            ["systemctl", "is-active", "--quiet", self.config.service_name],
            check=False,
        )
        return result.ok

    async def _occ(self, *args: str) -> None:
        argv = as_user(
            self.config.service_user,
            [self.config.php_binary, str(self.config.effective_occ_path), *args],
        )
        try:
            await self.runner(argv)
        except (CommandError, ToolMissingError) as e:
            raise ServiceControlError(
                f"occ {' '.join(args)} failed: {e.message}",
                details={"occ": str(self.config.effective_occ_path), **e.details},
            ) from e

    async def enable_maintenance(self) -> None:
        await self._occ("maintenance:mode", "--on")
        logger.info("maintenance_mode_enabled")

    async def disable_maintenance(self) -> None:
        await self._occ("maintenance:mode", "--off")
        logger.info("maintenance_mode_disabled")

    async def refresh_data_fingerprint(self) -> None:
        await self._occ("maintenance:data-fingerprint")
        logger.info("data_fingerprint_refreshed")
