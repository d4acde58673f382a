# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the archive engine.
"""

import io
import tarfile
from pathlib import Path

import pytest

from appsnap.archive import capture_directory, detect_compression, extract_archive, verify_archive
from appsnap.config import CompressionMode
from appsnap.exceptions import ArchiveError

from conftest import populate_stack, tree_snapshot


@pytest.fixture
def source_tree(temp_dir: Path) -> Path:
    install = temp_dir / "install"
    data = temp_dir / "source"
    populate_stack(install, data)
    return data


# ============================================================================
# Capture / extract
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("compression", list(CompressionMode))
async def test_capture_and_extract_preserve_tree(temp_dir, source_tree, compression):
    archive = temp_dir / f"data.tar{compression.suffix}"
    dest = temp_dir / "restored"
    dest.mkdir()

    captured = await capture_directory(source_tree, archive, compression)
    extracted = await extract_archive(archive, dest)

    assert captured.compression == compression
    assert extracted.compression == compression
    assert extracted.members == captured.members
    assert tree_snapshot(dest) == tree_snapshot(source_tree)
    assert (dest / "admin" / "latest").is_symlink()


@pytest.mark.asyncio
async def test_capture_leaves_no_partial_file(temp_dir, source_tree):
    archive = temp_dir / "data.tar"

    await capture_directory(source_tree, archive)

    assert archive.is_file()
    assert not (temp_dir / "data.tar.partial").exists()


@pytest.mark.asyncio
async def test_capture_refuses_existing_archive(temp_dir, source_tree):
    archive = temp_dir / "data.tar"
    archive.write_bytes(b"previous snapshot")

    with pytest.raises(ArchiveError, match="already exists"):
        await capture_directory(source_tree, archive)

    assert archive.read_bytes() == b"previous snapshot"


@pytest.mark.asyncio
async def test_capture_missing_source(temp_dir):
    with pytest.raises(ArchiveError, match="not found"):
        await capture_directory(temp_dir / "nope", temp_dir / "x.tar")
    assert not (temp_dir / "x.tar").exists()


@pytest.mark.asyncio
async def test_extract_requires_empty_destination(temp_dir, source_tree):
    archive = temp_dir / "data.tar"
    await capture_directory(source_tree, archive)
    dest = temp_dir / "restored"
    dest.mkdir()
    (dest / "keep.txt").write_text("x")

    with pytest.raises(ArchiveError, match="not empty"):
        await extract_archive(archive, dest)

    assert [p.name for p in dest.iterdir()] == ["keep.txt"]


@pytest.mark.asyncio
async def test_extract_missing_destination(temp_dir, source_tree):
    archive = temp_dir / "data.tar"
    await capture_directory(source_tree, archive)

    with pytest.raises(ArchiveError, match="does not exist"):
        await extract_archive(archive, temp_dir / "missing")


@pytest.mark.asyncio
async def test_extract_rejects_path_traversal(temp_dir):
    archive = temp_dir / "evil.tar"
    payload = b"pwned"
    with tarfile.open(archive, "w") as tar:
        info = tarfile.TarInfo("../escaped.txt")
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    dest = temp_dir / "restored"
    dest.mkdir()

    with pytest.raises(ArchiveError, match="Unsafe path"):
        await extract_archive(archive, dest)

    assert not (temp_dir / "escaped.txt").exists()


@pytest.mark.asyncio
@pytest.mark.parametrize("relative", [False, True])
async def test_extract_refuses_writing_through_symlink(temp_dir, relative):
    outside = temp_dir / "outside"
    outside.mkdir()
    archive = temp_dir / "evil.tar"
    payload = b"pwned"
    with tarfile.open(archive, "w") as tar:
        link = tarfile.TarInfo("./a")
        link.type = tarfile.SYMTYPE
        link.linkname = "../outside" if relative else str(outside)
        tar.addfile(link)
        info = tarfile.TarInfo("./a/x")
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    dest = temp_dir / "restored"
    dest.mkdir()

    with pytest.raises(ArchiveError, match="escapes the destination"):
        await extract_archive(archive, dest)

    assert not (outside / "x").exists()


@pytest.mark.asyncio
async def test_extract_refuses_hard_link_through_symlink(temp_dir):
    secret = temp_dir / "secret.txt"
    secret.write_text("host file")
    archive = temp_dir / "evil.tar"
    with tarfile.open(archive, "w") as tar:
        link = tarfile.TarInfo("./s")
        link.type = tarfile.SYMTYPE
        link.linkname = str(secret)
        tar.addfile(link)
        hard = tarfile.TarInfo("./h")
        hard.type = tarfile.LNKTYPE
        hard.linkname = "./s"
        tar.addfile(hard)
    dest = temp_dir / "restored"
    dest.mkdir()

    with pytest.raises(ArchiveError, match="escapes the destination"):
        await extract_archive(archive, dest)

    assert not (dest / "h").exists()


@pytest.mark.asyncio
async def test_extract_keeps_symlink_with_outside_target(temp_dir):
    archive = temp_dir / "links.tar"
    with tarfile.open(archive, "w") as tar:
        link = tarfile.TarInfo("./config-link")
        link.type = tarfile.SYMTYPE
        link.linkname = "/etc/hostname"
        tar.addfile(link)
    dest = temp_dir / "restored"
    dest.mkdir()

    await extract_archive(archive, dest)

    assert (dest / "config-link").is_symlink()
    assert (dest / "config-link").readlink() == Path("/etc/hostname")


# ============================================================================
# Verification
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("compression", list(CompressionMode))
async def test_verify_detects_truncation(temp_dir, source_tree, compression):
    archive = temp_dir / f"data.tar{compression.suffix}"
    await capture_directory(source_tree, archive, compression)

    info = await verify_archive(archive)
    assert info.members > 0
    assert info.content_bytes >= 64 * 1024

    content = archive.read_bytes()
    archive.write_bytes(content[: len(content) // 2])

    with pytest.raises(ArchiveError):
        await verify_archive(archive)


@pytest.mark.asyncio
async def test_verify_missing_archive(temp_dir):
    with pytest.raises(ArchiveError, match="not found"):
        await verify_archive(temp_dir / "missing.tar")


@pytest.mark.asyncio
async def test_verify_rejects_garbage(temp_dir):
    archive = temp_dir / "garbage.tar"
    archive.write_bytes(b"this is not a tar archive at all" * 10)

    with pytest.raises(ArchiveError):
        await verify_archive(archive)


@pytest.mark.asyncio
@pytest.mark.parametrize("compression", list(CompressionMode))
async def test_detect_compression(temp_dir, source_tree, compression):
    archive = temp_dir / f"data.tar{compression.suffix}"
    await capture_directory(source_tree, archive, compression)

    assert detect_compression(archive) == compression
