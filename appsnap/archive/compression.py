# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Compressed tar streams.

gzip is handled by tarfile itself; zstd wraps the file object in a
zstandard streaming compressor/decompressor. All archives are opened in
tarfile's stream modes ("w|", "r|") so multi-gigabyte data directories
are never seeked or buffered.
"""

import tarfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Iterator

import zstandard as zstd

from appsnap.config import CompressionMode

# zstd level used for directory archives (fast, still well compressed)
DEFAULT_ZSTD_LEVEL = 10

ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"


def detect_compression(path: Path) -> CompressionMode:
    """
    Sniff an archive's compression from its magic bytes.

    Used when restoring so a snapshot taken with a different compression
    setting than the current configuration still extracts.
    """
    with open(path, "rb") as f:
        head = f.read(4)
    if head.startswith(ZSTD_MAGIC):
        return CompressionMode.ZSTD
    if head.startswith(b"\x1f\x8b"):
        return CompressionMode.GZIP
    return CompressionMode.NONE


@contextmanager
def open_tar_writer(
    raw: BinaryIO,
    compression: CompressionMode,
    zstd_level: int = DEFAULT_ZSTD_LEVEL,
) -> Iterator[tarfile.TarFile]:
    """Open a streaming tar writer on top of a binary file object."""
    if compression == CompressionMode.ZSTD:
        cctx = zstd.ZstdCompressor(level=zstd_level)
        with cctx.stream_writer(raw, closefd=False) as compressor:
            with tarfile.open(fileobj=compressor, mode="w|") as tar:
                yield tar
    else:
        mode = "w|gz" if compression == CompressionMode.GZIP else "w|"
        with tarfile.open(fileobj=raw, mode=mode) as tar:
            yield tar


@contextmanager
def open_tar_reader(raw: BinaryIO, compression: CompressionMode) -> Iterator[tarfile.TarFile]:
    """Open a streaming tar reader on top of a binary file object."""
    if compression == CompressionMode.ZSTD:
        dctx = zstd.ZstdDecompressor()
        with dctx.stream_reader(raw, closefd=False) as decompressor:
            with tarfile.open(fileobj=decompressor, mode="r|") as tar:
                yield tar
    else:
        with tarfile.open(fileobj=raw, mode="r|*") as tar:
            yield tar
