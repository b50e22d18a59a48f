"""
Exception classes for ghostsync.
"""

from typing import Any, Dict, Optional


class GhostSyncError(Exception):
    """Base exception for all ghostsync errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        result = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            result += f" [{details_str}]"
        if self.cause:
            result += f" (caused by: {self.cause})"
        return result


class ConfigurationError(GhostSyncError):
    """Raised when there's an error in configuration."""

    pass


class DatabaseError(GhostSyncError):
    """Raised when there's an error with database operations."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when there's an error establishing or maintaining database connections."""

    pass


class DatabaseConfigurationError(DatabaseError):
    """Raised when there's an error in database configuration."""

    pass


class SchemaError(DatabaseError):
    """Raised when the live schema cannot be introspected."""

    pass


class CatalogError(GhostSyncError):
    """Raised when a catalog store read or mutation fails."""

    def __init__(
        self,
        message: str,
        table_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        details = dict(details or {})
        if table_name:
            details["table"] = table_name
        super().__init__(message, details, cause)
        self.table_name = table_name


class OwnershipViolation(CatalogError):
    """Raised when the acting role does not own the relation being updated."""

    pass


class LeaseError(GhostSyncError):
    """Raised when the lease backend cannot be reached.

    A lease that is simply held by another pass is not an error.
    """

    pass
