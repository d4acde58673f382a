# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the command line interface.
"""

import logging
import os
from pathlib import Path

import pytest
import structlog
import yaml
from typer.testing import CliRunner

from appsnap.cli import app
from appsnap.exceptions import OperationCancelled

runner = CliRunner()


@pytest.fixture(autouse=True)
def reset_logging():
    """The CLI installs a stderr handler bound to the runner's stream."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    structlog.reset_defaults()


@pytest.fixture
def config_file(temp_dir, test_config) -> Path:
    path = temp_dir / "appsnap.yaml"
    path.write_text(yaml.safe_dump({
        "snapshot_root": str(test_config.snapshot_root),
        "installation_dir": str(test_config.installation_dir),
        "data_dir": str(test_config.data_dir),
        "service_user": test_config.service_user,
        "service_group": test_config.service_group,
        "database_engine": "mysql",
        "keep_snapshots": 3,
        "require_privilege": False,
    }))
    return path


@pytest.fixture
def fake_wiring(monkeypatch, collaborators):
    monkeypatch.setattr(
        "appsnap.cli.create_collaborators",
        lambda config, reporter=None, ask_stay_in_maintenance=None: collaborators,
    )
    return collaborators


def make_snapshot(root: Path, name: str, mtime: int, complete: bool = True) -> None:
    path = root / name
    path.mkdir()
    (path / "nextcloud-installation-directory.tar").write_bytes(b"x" * 2048)
    (path / "nextcloud-data-directory.tar").write_bytes(b"y" * 4096)
    if complete:
        (path / "nextcloud-db.dump").write_text("-- dump\n")
    os.utime(path, (mtime, mtime))


# ============================================================================
# Backup / restore
# ============================================================================

def test_backup_success(config_file, fake_wiring, test_config):
    result = runner.invoke(app, ["--config", str(config_file), "backup"])

    assert result.exit_code == 0, result.output
    assert "completed" in result.output
    snapshots = [p for p in Path(test_config.snapshot_root).iterdir() if p.is_dir()]
    assert len(snapshots) == 1


def test_partial_backup_exits_3(config_file, fake_wiring, fake_database):
    fake_database.fail_on.add("dump")

    result = runner.invoke(app, ["--config", str(config_file), "backup"])

    assert result.exit_code == 3
    assert "finished with errors" in result.output


def test_backup_then_restore(config_file, fake_wiring, test_config):
    backup = runner.invoke(app, ["--config", str(config_file), "backup"])
    assert backup.exit_code == 0, backup.output
    snapshot_id = next(p.name for p in Path(test_config.snapshot_root).iterdir() if p.is_dir())

    restore = runner.invoke(app, ["--config", str(config_file), "restore", snapshot_id])

    assert restore.exit_code == 0, restore.output
    assert f"Restore of {snapshot_id} completed" in restore.output


def test_partial_restore_exits_1(config_file, fake_wiring, fake_database, test_config):
    runner.invoke(app, ["--config", str(config_file), "backup"])
    snapshot_id = next(p.name for p in Path(test_config.snapshot_root).iterdir() if p.is_dir())
    fake_database.fail_on.add("import_dump")
    config_file.write_text(config_file.read_text() + "restore_continue_on_artifact_error: true\n")

    result = runner.invoke(app, ["--config", str(config_file), "restore", snapshot_id])

    assert result.exit_code == 1
    assert "import_database" in result.output


def test_restore_missing_snapshot_exits_1(config_file, fake_wiring, fake_service):
    result = runner.invoke(app, ["--config", str(config_file), "restore", "20990101_000000"])

    assert result.exit_code == 1
    assert "Error:" in result.output
    assert fake_service.calls == []


def test_cancelled_run_exits_130(config_file, fake_wiring, fake_service):
    def cancel():
        raise OperationCancelled("Operation cancelled by operator")

    fake_service.hooks["stop_service"] = cancel

    result = runner.invoke(app, ["--config", str(config_file), "backup"])

    assert result.exit_code == 130
    assert "Cancelled" in result.output
    assert fake_service.running
    assert not fake_service.maintenance


def test_missing_snapshot_root_exits_1(config_file, fake_wiring, test_config):
    Path(test_config.snapshot_root).rmdir()

    result = runner.invoke(app, ["--config", str(config_file), "backup"])

    assert result.exit_code == 1


# ============================================================================
# Usage errors and configuration
# ============================================================================

def test_restore_requires_snapshot_id(config_file):
    result = runner.invoke(app, ["--config", str(config_file), "restore"])
    assert result.exit_code == 2


def test_prune_rejects_negative_keep(config_file):
    result = runner.invoke(app, ["--config", str(config_file), "prune", "--keep", "-1"])
    assert result.exit_code == 2


def test_invalid_config_file_exits_1(temp_dir):
    path = temp_dir / "bad.yaml"
    path.write_text("database_engine: oracle\n")

    result = runner.invoke(app, ["--config", str(path), "snapshots"])

    assert result.exit_code == 1
    assert "Invalid database engine" in result.output


@pytest.mark.parametrize(
    "line,field",
    [
        ("keep_snapshots: -1\n", "keep_snapshots"),
        ("keep_snapshots: seven\n", "keep_snapshots"),
        ("database_port: abc\n", "database_port"),
    ],
)
def test_bad_config_value_is_reported(temp_dir, line, field):
    path = temp_dir / "bad.yaml"
    path.write_text(line)

    result = runner.invoke(app, ["--config", str(path), "snapshots"])

    assert result.exit_code == 1
    assert not isinstance(result.exception, (ValueError, TypeError))
    assert "Configuration validation failed" in result.output
    assert field in result.output


def test_config_from_environment(test_config):
    make_snapshot(Path(test_config.snapshot_root), "20210101_000000", 1_600_000_000)
    env = {
        "APPSNAP_SNAPSHOT_ROOT": str(test_config.snapshot_root),
        "APPSNAP_INSTALLATION_DIR": str(test_config.installation_dir),
        "APPSNAP_DATA_DIR": str(test_config.data_dir),
        "APPSNAP_REQUIRE_PRIVILEGE": "false",
    }

    result = runner.invoke(app, ["snapshots"], env=env)

    assert result.exit_code == 0, result.output
    assert "20210101_000000" in result.output


# ============================================================================
# Snapshots, prune, verify, history
# ============================================================================

def test_snapshots_lists_newest_first(config_file, test_config):
    root = Path(test_config.snapshot_root)
    make_snapshot(root, "20210101_000000", 1_600_000_000)
    make_snapshot(root, "20210102_000000", 1_600_100_000, complete=False)

    result = runner.invoke(app, ["--config", str(config_file), "snapshots"])

    assert result.exit_code == 0, result.output
    lines = [line for line in result.output.splitlines() if line.startswith("2021")]
    assert lines[0].startswith("20210102_000000")
    assert lines[0].endswith("INCOMPLETE")
    assert lines[1].endswith("complete")


def test_snapshots_empty(config_file):
    result = runner.invoke(app, ["--config", str(config_file), "snapshots"])
    assert result.exit_code == 0
    assert "No snapshots found." in result.output


def test_prune_dry_run(config_file, test_config):
    root = Path(test_config.snapshot_root)
    for i in range(4):
        make_snapshot(root, f"2021010{i + 1}_000000", 1_600_000_000 + i)

    result = runner.invoke(app, ["--config", str(config_file), "prune", "--keep", "2", "--dry-run"])

    assert result.exit_code == 0, result.output
    assert "Would delete 20210102_000000" in result.output
    assert "Would delete 20210101_000000" in result.output
    assert len(list(root.iterdir())) >= 4


def test_prune_uses_configured_keep(config_file, test_config):
    root = Path(test_config.snapshot_root)
    for i in range(5):
        make_snapshot(root, f"2021010{i + 1}_000000", 1_600_000_000 + i)

    result = runner.invoke(app, ["--config", str(config_file), "prune"])

    assert result.exit_code == 0, result.output
    remaining = sorted(p.name for p in root.iterdir() if p.is_dir())
    assert remaining == ["20210103_000000", "20210104_000000", "20210105_000000"]


def test_verify_ok_and_tampered(config_file, fake_wiring, test_config):
    runner.invoke(app, ["--config", str(config_file), "backup"])
    snapshot_dir = next(p for p in Path(test_config.snapshot_root).iterdir() if p.is_dir())

    ok = runner.invoke(app, ["--config", str(config_file), "verify", snapshot_dir.name])
    assert ok.exit_code == 0, ok.output
    assert "OK" in ok.output

    (snapshot_dir / "nextcloud-db.dump").write_text("-- tampered\n")
    bad = runner.invoke(app, ["--config", str(config_file), "verify", snapshot_dir.name])
    assert bad.exit_code == 1
    assert "failed verification" in bad.output


def test_history(config_file, fake_wiring):
    empty = runner.invoke(app, ["--config", str(config_file), "history"])
    assert "No runs recorded." in empty.output

    runner.invoke(app, ["--config", str(config_file), "backup"])
    result = runner.invoke(app, ["--config", str(config_file), "history"])

    assert result.exit_code == 0, result.output
    assert "backup" in result.output
    assert "done" in result.output
