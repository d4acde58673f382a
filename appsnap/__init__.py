# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap - Backup/restore coordinator for a web application stack.

Takes consistent point-in-time snapshots of an installation directory, a
data directory and a MySQL/PostgreSQL database while the application is
in maintenance mode, and restores them. The service is always started
again and maintenance mode always left, whatever happens in between.
Package name: appsnap.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from appsnap.builder import create_config

# Core functions
from appsnap.core import (
    Collaborators,
    create_collaborators,
    run_backup,
    run_restore,
    run_prune,
)

# Environment-based configuration and profiles (additional helpers)
from appsnap.env import (
    create_config_from_env,
    load_config_file,
    legacy_compatible,
    hardened,
)

from appsnap.run import CancellationToken, CoordinatorState, RunReport

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    "load_config_file",
    "legacy_compatible",
    "hardened",
    # Core orchestration functions
    "Collaborators",
    "create_collaborators",
    "run_backup",
    "run_restore",
    "run_prune",
    # Run state
    "CancellationToken",
    "CoordinatorState",
    "RunReport",
]
