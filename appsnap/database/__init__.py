# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Database Adapters - Engine-specific dump, drop, create and import.
"""

from typing import Dict, Type

from appsnap.config import DatabaseEngine, StackConfig
from appsnap.database.base import DatabaseAdapter
from appsnap.database.mysql import MySQLAdapter
from appsnap.database.postgres import PostgresAdapter
from appsnap.exceptions import ConfigurationError
from appsnap.secrets import Credentials
from appsnap.shell import CommandRunner, run_command

ADAPTERS: Dict[DatabaseEngine, Type[DatabaseAdapter]] = {
    DatabaseEngine.MYSQL: MySQLAdapter,
    DatabaseEngine.POSTGRESQL: PostgresAdapter,
}


def create_database_adapter(
    config: StackConfig,
    credentials: Credentials,
    runner: CommandRunner = run_command,
) -> DatabaseAdapter:
    """
    Select the adapter for the configured engine.

    Args:
        config: Stack configuration (engine, host, port)
        credentials: Resolved database credentials
        runner: Command runner (swappable in tests)

    Returns:
        Adapter instance bound to the credentials

    Raises:
        ConfigurationError: If the engine is not supported
    """
    try:
        adapter_cls = ADAPTERS[config.database_engine]
    except KeyError:
        raise ConfigurationError(f"Unsupported database engine: {config.database_engine}")
    return adapter_cls(config, credentials, runner=runner)


__all__ = [
    "ADAPTERS",
    "DatabaseAdapter",
    "MySQLAdapter",
    "PostgresAdapter",
    "create_database_adapter",
]
