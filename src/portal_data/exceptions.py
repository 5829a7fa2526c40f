"""
Portal Data Exception Hierarchy

Provides structured exception types for the provider, transfer and template layers.
All portal_data-specific exceptions inherit from PortalDataError.

Every error carries an ``outcome`` describing what happened to stored data:

- ``aborted``: nothing was written (connectivity, validation, not found, rollback)
- ``partially_applied``: some tables or records were written before the failure

Usage:
    from src.portal_data.exceptions import ConnectivityError, PortalDataError

    try:
        await registry.switch(descriptor)
    except ConnectivityError as e:
        logger.error(f"Provider switch aborted: {e}")
"""

from __future__ import annotations

OUTCOME_SUCCEEDED = "succeeded"
OUTCOME_ABORTED = "aborted"
OUTCOME_PARTIAL = "partially_applied"


class PortalDataError(Exception):
    """
    Base exception for all portal data errors.

    Attributes:
        message: Human-readable error description
        code: Optional machine-readable error code for programmatic handling
    """

    outcome: str = OUTCOME_ABORTED

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        self.code = code
        super().__init__(message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(PortalDataError):
    """Configuration value is invalid or missing."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(
            f"Invalid configuration for '{field}': {reason}",
            code="CONFIG_INVALID",
        )
        self.field = field
        self.reason = reason


# =============================================================================
# Provider Errors
# =============================================================================


class ConnectivityError(PortalDataError):
    """Target provider is unreachable or misconfigured."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(
            f"Failed to connect to {provider} provider: {reason}",
            code="PROVIDER_CONNECTION",
        )
        self.provider = provider
        self.reason = reason


class SwitchInProgressError(PortalDataError):
    """Another provider switch is already running."""

    def __init__(self, target: str) -> None:
        super().__init__(
            f"Cannot switch to {target}: another provider switch is in progress",
            code="PROVIDER_SWITCH_BUSY",
        )
        self.target = target


class StorageQueryError(PortalDataError):
    """A provider call failed for a reason other than connectivity."""

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            f"Storage query failed for '{operation}': {reason}",
            code="STORAGE_QUERY",
        )
        self.operation = operation
        self.reason = reason


# =============================================================================
# Data Errors
# =============================================================================


class ValidationError(PortalDataError):
    """Malformed metadata or a record missing required fields."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(
            f"Invalid value for '{field}': {reason}",
            code="VALIDATION",
        )
        self.field = field
        self.reason = reason


class NotFoundError(PortalDataError):
    """A record id, template filename or entity kind does not exist."""

    def __init__(self, what: str, identifier: str | int) -> None:
        super().__init__(
            f"{what} not found: {identifier}",
            code="NOT_FOUND",
        )
        self.what = what
        self.identifier = identifier


# =============================================================================
# Import Errors
# =============================================================================


class TransactionAbortedError(PortalDataError):
    """A transactional import was rolled back; the store is unchanged."""

    def __init__(self, table: str | None, reason: str) -> None:
        where = f" at table '{table}'" if table else ""
        super().__init__(
            f"Import rolled back{where}: {reason}",
            code="IMPORT_ROLLED_BACK",
        )
        self.table = table
        self.reason = reason


class PartialImportError(PortalDataError):
    """
    A non-transactional import stopped part way.

    Attributes:
        completed: Tables that were fully replaced before the failure
        failed: Table whose replacement failed (its state is undefined)
    """

    outcome = OUTCOME_PARTIAL

    def __init__(
        self,
        completed: list[str],
        failed: str,
        reason: str,
        code: str = "IMPORT_PARTIAL",
    ) -> None:
        done = ", ".join(completed) if completed else "none"
        super().__init__(
            f"Import stopped at '{failed}' ({reason}); completed: {done}",
            code=code,
        )
        self.completed = list(completed)
        self.failed = failed
        self.reason = reason


class TemplateImportError(PartialImportError):
    """A template import failed after some kinds were reconciled."""

    def __init__(
        self,
        filename: str,
        completed: list[str],
        failed: str,
        reason: str,
        written: int,
    ) -> None:
        super().__init__(completed, failed, reason, code="TEMPLATE_IMPORT_PARTIAL")
        self.filename = filename
        self.written = written
        if written == 0:
            self.outcome = OUTCOME_ABORTED


__all__ = [
    "OUTCOME_SUCCEEDED",
    "OUTCOME_ABORTED",
    "OUTCOME_PARTIAL",
    # Base
    "PortalDataError",
    # Configuration
    "ConfigurationError",
    # Provider
    "ConnectivityError",
    "SwitchInProgressError",
    "StorageQueryError",
    # Data
    "ValidationError",
    "NotFoundError",
    # Import
    "TransactionAbortedError",
    "PartialImportError",
    "TemplateImportError",
]
