# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
MySQL / MariaDB adapter.

Uses the mysqldump and mysql command line clients against the local
server. The password is handed over through MYSQL_PWD instead of -p so it
does not show up in argv.
"""

from pathlib import Path
from typing import Dict, List

import structlog

from appsnap.config import DatabaseEngine
from appsnap.database.base import DatabaseAdapter
from appsnap.exceptions import DatabaseUnavailableError

logger = structlog.get_logger()

# Character set / collation the application expects on a fresh database
MYSQL_CHARSET = "utf8mb4"
MYSQL_COLLATION = "utf8mb4_general_ci"


def quote_identifier(name: str) -> str:
    """Quote a MySQL identifier with backticks."""
    return "`" + name.replace("`", "``") + "`"


class MySQLAdapter(DatabaseAdapter):
    """Adapter for the MySQL family (MySQL, MariaDB)."""

    engine = DatabaseEngine.MYSQL
    dump_tool = "mysqldump"
    client_tool = "mysql"

    def _env(self) -> Dict[str, str]:
        return {"MYSQL_PWD": self.credentials.password}

    def _connection_args(self) -> List[str]:
        return [
            "-h", self.host,
            "-P", str(self.port),
            "-u", self.credentials.user,
        ]

    async def _dump_to(self, dest_file: Path) -> None:
        argv = [
            self.dump_tool,
            "--single-transaction",
            *self._connection_args(),
            f"--result-file={dest_file}",
            self.credentials.database,
        ]
        await self._run(argv, "dump", env=self._env())

    async def _execute(self, sql: str, operation: str) -> None:
        argv = [self.client_tool, *self._connection_args(), "-e", sql]
        await self._run(argv, operation, env=self._env())

    async def drop(self) -> None:
        database = quote_identifier(self.credentials.database)
        await self._execute(f"DROP DATABASE IF EXISTS {database}", "drop")
        logger.info("database_dropped", engine=self.engine.value, database=self.credentials.database)

    async def create(self) -> None:
        database = quote_identifier(self.credentials.database)
        await self._execute(
            f"CREATE DATABASE {database} CHARACTER SET {MYSQL_CHARSET} COLLATE {MYSQL_COLLATION}",
            "create",
        )
        logger.info("database_created", engine=self.engine.value, database=self.credentials.database)

    async def _import_from(self, src_file: Path) -> None:
        argv = [self.client_tool, *self._connection_args(), self.credentials.database]
        await self._run(argv, "import", env=self._env(), stdin_path=src_file)

    async def probe(self) -> None:
        import aiomysql

        try:
            conn = await aiomysql.connect(
                host=self.host,
                port=self.port,
                user=self.credentials.user,
                password=self.credentials.password,
                charset=MYSQL_CHARSET,
            )
        except Exception as e:
            raise DatabaseUnavailableError(
                f"Cannot connect to MySQL at {self.host}:{self.port}: {e}",
                details={"engine": self.engine.value, "user": self.credentials.user},
            ) from e

        try:
            async with conn.cursor() as cursor:
                await cursor.execute("SELECT 1")
                await cursor.fetchone()
        finally:
            conn.close()

        logger.info("database_probe_ok", engine=self.engine.value, host=self.host, port=self.port)
