"""
Database integration package for ghostsync.

This package provides:
- Async PostgreSQL connection pooling
- Live schema introspection
"""

from .connection import DatabaseManager, ConnectionPool
from .introspection import SchemaIntrospector, PostgresSchemaIntrospector, LiveTable

__all__ = [
    "DatabaseManager",
    "ConnectionPool",
    "SchemaIntrospector",
    "PostgresSchemaIntrospector",
    "LiveTable",
]
