# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Run Journal - Append-only history of backup and restore runs.

One SQLite file at the top of the snapshot root records every run (ULID
run id, operation, snapshot id, final state) and every step outcome.
The journal is bookkeeping: a write failure is logged and the run goes
on.
"""

from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from appsnap.exceptions import JournalError

logger = structlog.get_logger()


class RunRecord(TypedDict):
    """Record of one backup or restore run."""

    id: str  # ULID
    operation: str  # backup, restore
    snapshot_id: str | None
    started_at: str  # ISO 8601
    finished_at: str | None
    state: str | None
    error: str | None


async def init_journal_db(db_path: Path) -> None:
    """
    Initialize the journal schema. Idempotent.

    Raises:
        JournalError: If the database cannot be created
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id TEXT PRIMARY KEY,
                    operation TEXT NOT NULL,
                    snapshot_id TEXT,
                    started_at TEXT NOT NULL,
                    finished_at TEXT,
                    state TEXT,
                    error TEXT
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS steps (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    duration_seconds REAL NOT NULL,
                    error TEXT,
                    recorded_at TEXT NOT NULL,
                    FOREIGN KEY (run_id) REFERENCES runs(id)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_steps_run_id
                ON steps(run_id)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_runs_started_at
                ON runs(started_at)
            """)

            await db.commit()
    except (aiosqlite.Error, OSError) as e:
        raise JournalError(
            f"Failed to initialize run journal: {e}",
            details={"db_path": str(db_path)},
        ) from e


class RunJournal:
    """
    Best-effort writer for the run journal.

    Every public method logs and absorbs JournalError so bookkeeping
    problems never turn into run failures.
    """

    def __init__(self, db_path: Path, enabled: bool = True):
        self.db_path = db_path
        self.enabled = enabled
        self._initialized = False

    async def _execute(self, sql: str, params: tuple) -> None:
        if not self._initialized:
            await init_journal_db(self.db_path)
            self._initialized = True
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(sql, params)
                await db.commit()
        except (aiosqlite.Error, OSError) as e:
            raise JournalError(
                f"Failed to write run journal: {e}",
                details={"db_path": str(self.db_path)},
            ) from e

    async def _write(self, event: str, sql: str, params: tuple) -> bool:
        if not self.enabled:
            return False
        try:
            await self._execute(sql, params)
        except JournalError as e:
            logger.warning("journal_write_failed", journal_event=event, error=str(e))
            return False
        return True

    async def start_run(self, run_id: str, operation: str, snapshot_id: str | None) -> bool:
        return await self._write(
            "start_run",
            """
            INSERT INTO runs (id, operation, snapshot_id, started_at)
            VALUES (?, ?, ?, ?)
            """,
            (run_id, operation, snapshot_id, datetime.now(UTC).isoformat()),
        )

    async def record_step(
        self,
        run_id: str,
        name: str,
        status: str,
        duration_seconds: float,
        error: str | None = None,
    ) -> bool:
        return await self._write(
            "record_step",
            """
            INSERT INTO steps (run_id, name, status, duration_seconds, error, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (run_id, name, status, duration_seconds, error, datetime.now(UTC).isoformat()),
        )

    async def finish_run(self, run_id: str, state: str, error: str | None = None) -> bool:
        return await self._write(
            "finish_run",
            """
            UPDATE runs SET finished_at = ?, state = ?, error = ?
            WHERE id = ?
            """,
            (datetime.now(UTC).isoformat(), state, error, run_id),
        )


async def get_recent_runs(db_path: Path, limit: int = 20) -> List[RunRecord]:
    """
    Read the most recent runs, newest first.

    Raises:
        JournalError: If the journal cannot be read
    """
    if not db_path.exists():
        return []
    try:
        async with aiosqlite.connect(db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT id, operation, snapshot_id, started_at, finished_at, state, error
                FROM runs
                ORDER BY started_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = await cursor.fetchall()
    except (aiosqlite.Error, OSError) as e:
        raise JournalError(
            f"Failed to read run journal: {e}",
            details={"db_path": str(db_path)},
        ) from e
    return [RunRecord(**dict(row)) for row in rows]


async def get_run_steps(db_path: Path, run_id: str) -> List[dict]:
    """Step outcomes of one run, in execution order."""
    try:
        async with aiosqlite.connect(db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                """
                SELECT name, status, duration_seconds, error
                FROM steps
                WHERE run_id = ?
                ORDER BY id
                """,
                (run_id,),
            )
            rows = await cursor.fetchall()
    except (aiosqlite.Error, OSError) as e:
        raise JournalError(
            f"Failed to read run journal: {e}",
            details={"db_path": str(db_path)},
        ) from e
    return [dict(row) for row in rows]
