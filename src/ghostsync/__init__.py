"""
ghostsync: catalog reconciliation for PostgreSQL tenant schemas.

Tables created, renamed or dropped directly in a tenant's database leave the
metadata catalog out of date. ghostsync detects those ghost tables and brings
the catalog back in line, one tenant at a time under a distributed lease.
"""

__version__ = "0.1.0"
__author__ = "ghostsync Contributors"

from .config import GhostSyncConfig
from .exceptions import (
    CatalogError,
    ConfigurationError,
    DatabaseError,
    GhostSyncError,
    LeaseError,
    OwnershipViolation,
)

__all__ = [
    "__version__",
    "GhostSyncConfig",
    "GhostSyncError",
    "ConfigurationError",
    "DatabaseError",
    "CatalogError",
    "OwnershipViolation",
    "LeaseError",
]
