# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Archive Engine - Capture, verify and extract directory archives.
"""

from appsnap.archive.compression import detect_compression
from appsnap.archive.engine import (
    ArchiveInfo,
    capture_directory,
    extract_archive,
    verify_archive,
)

__all__ = [
    "ArchiveInfo",
    "capture_directory",
    "extract_archive",
    "verify_archive",
    "detect_compression",
]
