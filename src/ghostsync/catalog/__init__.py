"""
Catalog package for ghostsync.

This package provides:
- The catalog store interface and its PostgreSQL implementation
- Catalog schema setup and integrity checks
"""

from .store import CatalogEntry, CatalogStore, PostgresCatalogStore
from .metadata import CatalogSchemaManager

__all__ = [
    "CatalogEntry",
    "CatalogStore",
    "PostgresCatalogStore",
    "CatalogSchemaManager",
]
