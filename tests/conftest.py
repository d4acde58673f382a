# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for AppSnap tests.

Provides a throw-away application stack on disk (installation directory,
data directory, snapshot root), plus fake service, database and secret
collaborators that record every call and can be told to fail.
"""

import grp
import os
import pwd
import tempfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Generator, Iterable, List

import pytest

from appsnap.builder import create_config
from appsnap.config import DatabaseEngine, StackConfig
from appsnap.core import Collaborators
from appsnap.exceptions import DatabaseError, DatabaseUnavailableError, SecretError, ServiceControlError
from appsnap.secrets import SECRET_DB, SECRET_DB_PASSWORD, SECRET_DB_USER, Credentials


# ============================================================================
# Fakes
# ============================================================================

class FakeService:
    """ServiceControl that tracks service and maintenance state in memory."""

    def __init__(self, fail_on: Iterable[str] = ()):
        self.fail_on = set(fail_on)
        self.calls: List[str] = []
        self.hooks: Dict[str, Callable[[], None]] = {}
        self.running = True
        self.maintenance = False

    async def _call(self, name: str) -> None:
        self.calls.append(name)
        hook = self.hooks.get(name)
        if hook is not None:
            hook()
        if name in self.fail_on:
            raise ServiceControlError(f"{name} failed")

    async def stop_service(self) -> None:
        await self._call("stop_service")
        self.running = False

    async def start_service(self) -> None:
        await self._call("start_service")
        self.running = True

    async def is_service_active(self) -> bool:
        return self.running

    async def enable_maintenance(self) -> None:
        await self._call("enable_maintenance")
        self.maintenance = True

    async def disable_maintenance(self) -> None:
        await self._call("disable_maintenance")
        self.maintenance = False

    async def refresh_data_fingerprint(self) -> None:
        await self._call("refresh_data_fingerprint")


class FakeDatabase:
    """DatabaseAdapter stand-in holding the database content as bytes."""

    dump_tool = "fake-dump"
    client_tool = "fake-client"

    def __init__(self, content: bytes = b"CREATE TABLE oc_users (uid TEXT);\nINSERT INTO oc_users VALUES ('admin');\n"):
        self.content: bytes | None = content
        self.fail_on: set = set()
        self.missing_tool = False
        self.calls: List[str] = []

    def _maybe_fail(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_on:
            raise DatabaseError(f"{name} failed")

    def check_dump_tool(self) -> None:
        if self.missing_tool:
            raise DatabaseUnavailableError(f"{self.dump_tool} not installed")

    def check_client_tool(self) -> None:
        if self.missing_tool:
            raise DatabaseUnavailableError(f"{self.client_tool} not installed")

    async def probe(self) -> None:
        self._maybe_fail("probe")

    async def dump(self, dest_file: Path) -> None:
        self.check_dump_tool()
        self._maybe_fail("dump")
        dest_file.write_bytes(self.content or b"")

    async def drop(self) -> None:
        self._maybe_fail("drop")
        self.content = None

    async def create(self) -> None:
        self._maybe_fail("create")
        self.content = b""

    async def import_dump(self, src_file: Path) -> None:
        self._maybe_fail("import_dump")
        self.content = src_file.read_bytes()


class FakeSecrets:
    """SecretProvider backed by a dict."""

    def __init__(self, values: Dict[str, str] | None = None):
        self.values = values if values is not None else {
            SECRET_DB: "nextcloud",
            SECRET_DB_USER: "nextcloud",
            SECRET_DB_PASSWORD: "s3cret",
        }
        self.requested: List[str] = []

    async def get_secret(self, name: str) -> str:
        self.requested.append(name)
        value = self.values.get(name, "")
        if not value:
            raise SecretError(f"missing secret {name}")
        return value


class RecordingReporter:
    """ProgressReporter that keeps every event."""

    def __init__(self):
        self.events: List[tuple] = []

    def step_started(self, description: str) -> None:
        self.events.append(("started", description))

    def step_finished(self, description: str) -> None:
        self.events.append(("finished", description))

    def step_failed(self, description: str, error: BaseException) -> None:
        self.events.append(("failed", description))

    def warning(self, message: str) -> None:
        self.events.append(("warning", message))

    def info(self, message: str) -> None:
        self.events.append(("info", message))

    @property
    def warnings(self) -> List[str]:
        return [message for kind, message in self.events if kind == "warning"]


class StepClock:
    """Clock advancing one second per call, so snapshot ids never collide."""

    def __init__(self, start: datetime = datetime(2021, 3, 27, 20, 5, 14)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


# ============================================================================
# Helpers
# ============================================================================

def tree_snapshot(root: Path) -> Dict[str, tuple]:
    """Map relative path -> (kind, mode bits, content/link target) for a tree."""
    result: Dict[str, tuple] = {}
    for path in sorted(root.rglob("*")):
        rel = str(path.relative_to(root))
        mode = path.lstat().st_mode & 0o7777
        if path.is_symlink():
            result[rel] = ("link", os.readlink(path))
        elif path.is_dir():
            result[rel] = ("dir", mode)
        else:
            result[rel] = ("file", mode, path.read_bytes())
    return result


def populate_stack(installation_dir: Path, data_dir: Path) -> None:
    (installation_dir / "config").mkdir(parents=True)
    (installation_dir / "index.php").write_text("<?php require 'lib/base.php';\n")
    (installation_dir / "occ").write_text("#!/usr/bin/env php\n")
    (installation_dir / "occ").chmod(0o755)
    (installation_dir / "config" / "config.php").write_text("<?php $CONFIG = array();\n")
    (installation_dir / "config" / "config.php").chmod(0o640)

    (data_dir / "admin" / "files" / "Photos").mkdir(parents=True)
    (data_dir / "admin" / "files" / "notes.md").write_text("# Notes\n")
    (data_dir / "admin" / "files" / "Photos" / "cat.jpg").write_bytes(os.urandom(64 * 1024))
    (data_dir / ".ocdata").write_text("")
    (data_dir / "admin" / "latest").symlink_to("files/notes.md")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def stack_dirs(temp_dir: Path) -> Dict[str, Path]:
    """Installation and data directories with some content, and an empty snapshot root."""
    dirs = {
        "installation_dir": temp_dir / "www" / "nextcloud",
        "data_dir": temp_dir / "data",
        "snapshot_root": temp_dir / "backup",
    }
    for path in dirs.values():
        path.mkdir(parents=True)
    populate_stack(dirs["installation_dir"], dirs["data_dir"])
    return dirs


@pytest.fixture
def test_config(stack_dirs: Dict[str, Path]) -> StackConfig:
    """Configuration pointing at the temporary stack, owned by the current user."""
    return create_config(
        **stack_dirs,
        service_user=pwd.getpwuid(os.getuid()).pw_name,
        service_group=grp.getgrgid(os.getgid()).gr_name,
        database_engine=DatabaseEngine.MYSQL,
        keep_snapshots=3,
        require_privilege=False,
    )


@pytest.fixture
def fake_service() -> FakeService:
    return FakeService()


@pytest.fixture
def fake_database() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def collaborators(fake_service: FakeService, fake_database: FakeDatabase, reporter: RecordingReporter) -> Collaborators:
    """Collaborators wired to the fakes."""
    return Collaborators(
        service=fake_service,
        secrets=FakeSecrets(),
        reporter=reporter,
        adapter_factory=lambda config, credentials, runner: fake_database,
        clock=StepClock(),
    )


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(database="nextcloud", user="ncuser", password="s3cret")


class RecordingRunner:
    """CommandRunner that records argv/env and returns canned results."""

    def __init__(self, returncode: int = 0, stdout: str = "", create_output: bool = True):
        self.returncode = returncode
        self.stdout = stdout
        self.create_output = create_output
        self.calls: List[dict] = []

    async def __call__(self, argv, *, env=None, stdin_path=None, stdout_path=None, check=True):
        from appsnap.exceptions import CommandError
        from appsnap.shell import CommandResult

        argv = [str(a) for a in argv]
        self.calls.append({"argv": argv, "env": dict(env or {}), "stdin_path": stdin_path})

        # Dump tools write their output file themselves
        if self.create_output:
            for arg in argv:
                for prefix in ("--result-file=", "--file="):
                    if arg.startswith(prefix) and arg.endswith(".partial"):
                        Path(arg[len(prefix):]).write_text("-- dump\n")

        result = CommandResult(argv=argv, returncode=self.returncode, stdout=self.stdout, stderr="boom")
        if check and not result.ok:
            raise CommandError(f"Command {argv[0]!r} exited with status {self.returncode}", details={"argv": argv})
        return result


@pytest.fixture
def recording_runner() -> RecordingRunner:
    return RecordingRunner()
