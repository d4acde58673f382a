# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
PostgreSQL adapter.

Dump and import run as the application's database user (password in
PGPASSWORD). Dropping and creating the database needs the server's admin
role, so those statements go through psql run as the postgres OS user,
which authenticates over the local socket.
"""

from pathlib import Path
from typing import Dict, List

import structlog

from appsnap.config import DatabaseEngine
from appsnap.database.base import DatabaseAdapter
from appsnap.exceptions import DatabaseUnavailableError
from appsnap.shell import as_user

logger = structlog.get_logger()

POSTGRES_ENCODING = "UTF8"


def quote_identifier(name: str) -> str:
    """Quote a PostgreSQL identifier with double quotes."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Quote a PostgreSQL string literal."""
    return "'" + value.replace("'", "''") + "'"


class PostgresAdapter(DatabaseAdapter):
    """Adapter for PostgreSQL."""

    engine = DatabaseEngine.POSTGRESQL
    dump_tool = "pg_dump"
    client_tool = "psql"

    def _env(self) -> Dict[str, str]:
        return {"PGPASSWORD": self.credentials.password}

    def _connection_args(self) -> List[str]:
        return [
            f"--host={self.host}",
            f"--port={self.port}",
            f"--username={self.credentials.user}",
            "--no-password",
        ]

    async def _dump_to(self, dest_file: Path) -> None:
        argv = [
            self.dump_tool,
            *self._connection_args(),
            f"--dbname={self.credentials.database}",
            f"--file={dest_file}",
        ]
        await self._run(argv, "dump", env=self._env())

    async def _admin_sql(self, sql: str, operation: str) -> None:
        argv = as_user(
            self.config.postgres_admin_user,
            [
                self.client_tool,
                "--no-psqlrc",
                "--set=ON_ERROR_STOP=1",
                f"--dbname={self.config.postgres_maintenance_db}",
                "--command", sql,
            ],
        )
        await self._run(argv, operation)

    async def drop(self) -> None:
        # Remaining sessions (php-fpm workers, cron) would block the drop
        await self._admin_sql(
            "SELECT pg_terminate_backend(pid) FROM pg_stat_activity "
            f"WHERE datname = {quote_literal(self.credentials.database)} "
            "AND pid <> pg_backend_pid();",
            "terminate sessions",
        )
        await self._admin_sql(
            f"DROP DATABASE IF EXISTS {quote_identifier(self.credentials.database)};",
            "drop",
        )
        logger.info("database_dropped", engine=self.engine.value, database=self.credentials.database)

    async def create(self) -> None:
        await self._admin_sql(
            f"CREATE DATABASE {quote_identifier(self.credentials.database)} "
            f"WITH OWNER {quote_identifier(self.credentials.user)} "
            f"TEMPLATE template0 ENCODING {quote_literal(POSTGRES_ENCODING)};",
            "create",
        )
        logger.info("database_created", engine=self.engine.value, database=self.credentials.database)

    async def _import_from(self, src_file: Path) -> None:
        argv = [
            self.client_tool,
            *self._connection_args(),
            "--no-psqlrc",
            "--quiet",
            "--set=ON_ERROR_STOP=1",
            f"--dbname={self.credentials.database}",
            f"--file={src_file}",
        ]
        await self._run(argv, "import", env=self._env())

    async def probe(self) -> None:
        import asyncpg

        try:
            conn = await asyncpg.connect(
                host=self.host,
                port=self.port,
                user=self.credentials.user,
                password=self.credentials.password,
                database=self.config.postgres_maintenance_db,
                timeout=10,
            )
        except Exception as e:
            raise DatabaseUnavailableError(
                f"Cannot connect to PostgreSQL at {self.host}:{self.port}: {e}",
                details={"engine": self.engine.value, "user": self.credentials.user},
            ) from e

        try:
            await conn.fetchval("SELECT 1")
        finally:
            await conn.close()

        logger.info("database_probe_ok", engine=self.engine.value, host=self.host, port=self.port)
