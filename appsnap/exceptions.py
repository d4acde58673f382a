# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AppSnap Exceptions - Custom exceptions for the appsnap package.

Privilege and precondition failures are raised before anything is
mutated. Everything else may be raised from inside the maintenance
window, where the coordinator's guards still restart the service and
leave maintenance mode.
"""


class AppSnapError(Exception):
    """Base exception for all appsnap errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(AppSnapError):
    """Raised when configuration is invalid."""

    pass


class PrivilegeError(AppSnapError):
    """Raised when the process lacks the privilege to administer the stack."""

    pass


class PreconditionError(AppSnapError):
    """Raised when a run cannot start (snapshot collision, missing snapshot, ...)."""

    pass


class SecretError(PreconditionError):
    """Raised when a credential cannot be resolved from the secret provider."""

    pass


class ToolMissingError(AppSnapError):
    """Raised when a required external command is not installed."""

    pass


class DatabaseUnavailableError(ToolMissingError):
    """Raised when the database client tools or the server itself are unavailable."""

    pass


class ArchiveError(AppSnapError):
    """Raised when a directory archive cannot be captured, verified or extracted."""

    pass


class DatabaseError(AppSnapError):
    """Raised when a dump, drop, create or import fails."""

    pass


class ServiceControlError(AppSnapError):
    """Raised when the service or the maintenance flag cannot be toggled."""

    pass


class RestoreError(AppSnapError):
    """Raised when a live directory cannot be reset or re-owned during restore."""

    pass


class ConcurrentRunError(AppSnapError):
    """Raised when another run already holds the snapshot root."""

    pass


class CommandError(AppSnapError):
    """Raised when an external command exits with a non-zero status."""

    pass


class JournalError(AppSnapError):
    """Raised when the run journal cannot be written."""

    pass


class OperationCancelled(AppSnapError):
    """Raised at a checkpoint once the operator has requested cancellation."""

    pass


# Errors that a single backup/restore artifact step may produce. These are
# the only ones the continue-on-artifact-error policy is allowed to absorb.
ARTIFACT_ERRORS = (
    ArchiveError,
    DatabaseError,
    ToolMissingError,
    RestoreError,
)
