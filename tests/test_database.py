# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the database adapters.

Commands are captured by a recording runner; nothing talks to a real server.
"""

from pathlib import Path

import pytest

from appsnap.config import DatabaseEngine
from appsnap.database import (
    ADAPTERS,
    MySQLAdapter,
    PostgresAdapter,
    create_database_adapter,
)
from appsnap.database.postgres import quote_identifier, quote_literal
from appsnap.exceptions import DatabaseError, DatabaseUnavailableError

from conftest import RecordingRunner


def all_tools(name: str) -> str:
    return f"/usr/bin/{name}"


def no_tools(name: str) -> None:
    return None


@pytest.fixture
def mysql_adapter(test_config, credentials, recording_runner):
    return MySQLAdapter(test_config, credentials, runner=recording_runner, tool_lookup=all_tools)


@pytest.fixture
def postgres_adapter(test_config, credentials, recording_runner):
    config = test_config.with_updates(database_engine=DatabaseEngine.POSTGRESQL)
    return PostgresAdapter(config, credentials, runner=recording_runner, tool_lookup=all_tools)


# ============================================================================
# Dispatch
# ============================================================================

@pytest.mark.parametrize(
    "engine,adapter_cls",
    [("mysql", MySQLAdapter), ("mariadb", MySQLAdapter), ("pgsql", PostgresAdapter)],
)
def test_adapter_selected_from_engine(test_config, credentials, engine, adapter_cls):
    config = test_config.with_updates(database_engine=engine)

    adapter = create_database_adapter(config, credentials)

    assert type(adapter) is adapter_cls
    assert set(ADAPTERS) == set(DatabaseEngine)


def test_ports_follow_engine(test_config, credentials):
    mysql = create_database_adapter(test_config, credentials)
    postgres = create_database_adapter(
        test_config.with_updates(database_engine=DatabaseEngine.POSTGRESQL), credentials
    )
    assert mysql.port == 3306
    assert postgres.port == 5432


# ============================================================================
# MySQL
# ============================================================================

@pytest.mark.asyncio
async def test_mysql_dump(mysql_adapter, recording_runner, temp_dir):
    dest = temp_dir / "nextcloud-db.dump"

    await mysql_adapter.dump(dest)

    call = recording_runner.calls[0]
    assert call["argv"][:2] == ["mysqldump", "--single-transaction"]
    assert call["argv"][-1] == "nextcloud"
    assert f"--result-file={dest}.partial" in call["argv"]
    assert call["env"] == {"MYSQL_PWD": "s3cret"}
    assert "s3cret" not in " ".join(call["argv"])
    assert dest.read_text() == "-- dump\n"
    assert not Path(f"{dest}.partial").exists()


@pytest.mark.asyncio
async def test_mysql_drop_create_import(mysql_adapter, recording_runner, temp_dir):
    dump = temp_dir / "db.dump"
    dump.write_text("-- dump\n")

    await mysql_adapter.drop()
    await mysql_adapter.create()
    await mysql_adapter.import_dump(dump)

    drop, create, load = recording_runner.calls
    assert drop["argv"][-2:] == ["-e", "DROP DATABASE IF EXISTS `nextcloud`"]
    assert create["argv"][-1] == (
        "CREATE DATABASE `nextcloud` CHARACTER SET utf8mb4 COLLATE utf8mb4_general_ci"
    )
    assert load["argv"][0] == "mysql"
    assert load["argv"][-1] == "nextcloud"
    assert load["stdin_path"] == dump
    assert all("s3cret" not in " ".join(call["argv"]) for call in recording_runner.calls)


# ============================================================================
# PostgreSQL
# ============================================================================

@pytest.mark.asyncio
async def test_postgres_dump(postgres_adapter, recording_runner, temp_dir):
    dest = temp_dir / "nextcloud-db.dump"

    await postgres_adapter.dump(dest)

    argv = recording_runner.calls[0]["argv"]
    assert argv[0] == "pg_dump"
    assert "--username=ncuser" in argv
    assert "--dbname=nextcloud" in argv
    assert "--no-password" in argv
    assert recording_runner.calls[0]["env"] == {"PGPASSWORD": "s3cret"}
    assert dest.is_file()


@pytest.mark.asyncio
async def test_postgres_drop_runs_as_admin(postgres_adapter, recording_runner):
    await postgres_adapter.drop()

    terminate, drop = recording_runner.calls
    assert terminate["argv"][:4] == ["sudo", "-u", "postgres", "psql"]
    assert "pg_terminate_backend" in terminate["argv"][-1]
    assert "datname = 'nextcloud'" in terminate["argv"][-1]
    assert drop["argv"][-1] == 'DROP DATABASE IF EXISTS "nextcloud";'
    assert "--dbname=postgres" in drop["argv"]
    assert drop["env"] == {}


@pytest.mark.asyncio
async def test_postgres_create_sets_owner_and_encoding(postgres_adapter, recording_runner):
    await postgres_adapter.create()

    sql = recording_runner.calls[0]["argv"][-1]
    assert sql == (
        'CREATE DATABASE "nextcloud" WITH OWNER "ncuser" TEMPLATE template0 ENCODING \'UTF8\';'
    )


@pytest.mark.asyncio
async def test_postgres_import(postgres_adapter, recording_runner, temp_dir):
    dump = temp_dir / "db.dump"
    dump.write_text("-- dump\n")

    await postgres_adapter.import_dump(dump)

    argv = recording_runner.calls[0]["argv"]
    assert argv[0] == "psql"
    assert "--set=ON_ERROR_STOP=1" in argv
    assert f"--file={dump}" in argv


def test_postgres_quoting():
    assert quote_identifier('we"ird') == '"we""ird"'
    assert quote_literal("o'brien") == "'o''brien'"


# ============================================================================
# Failures
# ============================================================================

@pytest.mark.asyncio
async def test_command_failure_becomes_database_error(test_config, credentials, temp_dir):
    runner = RecordingRunner(returncode=2)
    adapter = MySQLAdapter(test_config, credentials, runner=runner, tool_lookup=all_tools)
    dest = temp_dir / "db.dump"

    with pytest.raises(DatabaseError, match="dump failed"):
        await adapter.dump(dest)

    assert not dest.exists()
    assert not Path(f"{dest}.partial").exists()


@pytest.mark.asyncio
async def test_empty_dump_is_an_error(test_config, credentials, temp_dir):
    runner = RecordingRunner(create_output=False)
    adapter = MySQLAdapter(test_config, credentials, runner=runner, tool_lookup=all_tools)

    with pytest.raises(DatabaseError, match="no output"):
        await adapter.dump(temp_dir / "db.dump")

    assert not (temp_dir / "db.dump").exists()


@pytest.mark.asyncio
async def test_missing_dump_tool(test_config, credentials, recording_runner, temp_dir):
    adapter = MySQLAdapter(test_config, credentials, runner=recording_runner, tool_lookup=no_tools)

    with pytest.raises(DatabaseUnavailableError, match="mysqldump"):
        await adapter.dump(temp_dir / "db.dump")

    assert recording_runner.calls == []


def test_missing_client_tool(test_config, credentials):
    config = test_config.with_updates(database_engine=DatabaseEngine.POSTGRESQL)
    adapter = PostgresAdapter(config, credentials, tool_lookup=no_tools)

    with pytest.raises(DatabaseUnavailableError, match="psql"):
        adapter.check_client_tool()


@pytest.mark.asyncio
async def test_import_missing_dump_file(mysql_adapter, recording_runner, temp_dir):
    with pytest.raises(DatabaseError, match="not found"):
        await mysql_adapter.import_dump(temp_dir / "missing.dump")
    assert recording_runner.calls == []


def test_credentials_repr_hides_password(credentials):
    assert "s3cret" not in repr(credentials)
    assert "ncuser" in repr(credentials)
