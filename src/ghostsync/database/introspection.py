"""
Live schema introspection for ghostsync.

Reports which tables currently exist in a tenant's schema and which of them
qualify for automatic catalog registration.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List

from ..classifier import CatalogWorthinessClassifier
from ..config import TenantConfig
from ..exceptions import SchemaError
from .connection import QUERY_ERRORS, DatabaseManager


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiveTable:
    """A table as it currently exists in the live store."""

    identifier: int
    name: str
    owner: str


class SchemaIntrospector(ABC):
    """Read-only view of a tenant's live tables."""

    @abstractmethod
    async def list_live_tables(self, tenant: TenantConfig) -> List[LiveTable]:
        """List the tenant's tables with their stable identifiers."""
        pass

    @abstractmethod
    async def list_catalog_worthy_tables(
        self, tenant: TenantConfig, excluded_names: Iterable[str]
    ) -> List[str]:
        """
        List names of tables that qualify for catalog registration.

        Args:
            tenant: Tenant to inspect
            excluded_names: Names already present in the catalog; never returned

        Returns:
            Table names, sorted
        """
        pass


class PostgresSchemaIntrospector(SchemaIntrospector):
    """Introspects PostgreSQL system catalogs through asyncpg."""

    LIVE_TABLES_QUERY = """
        SELECT
            c.oid::bigint AS identifier,
            c.relname AS name,
            pg_get_userbyid(c.relowner) AS owner
        FROM pg_class c
        JOIN pg_namespace n ON n.oid = c.relnamespace
        WHERE c.relkind = 'r'
        AND n.nspname = $1
        AND pg_get_userbyid(c.relowner) = $2
        ORDER BY c.relname
    """

    def __init__(self, databases: DatabaseManager, classifier: CatalogWorthinessClassifier):
        self.databases = databases
        self.classifier = classifier

    async def list_live_tables(self, tenant: TenantConfig) -> List[LiveTable]:
        pool = await self.databases.get_pool(tenant.database)
        try:
            rows = await pool.fetch(
                self.LIVE_TABLES_QUERY, tenant.database_schema, tenant.database_role
            )
        except QUERY_ERRORS as e:
            logger.error(f"Error listing live tables for tenant {tenant.name}: {e}")
            raise SchemaError(
                f"Failed to list live tables: {e}",
                details={"tenant": tenant.name, "schema": tenant.database_schema},
                cause=e,
            ) from e

        return [
            LiveTable(identifier=row["identifier"], name=row["name"], owner=row["owner"])
            for row in rows
        ]

    async def list_catalog_worthy_tables(
        self, tenant: TenantConfig, excluded_names: Iterable[str]
    ) -> List[str]:
        pool = await self.databases.get_pool(tenant.database)
        query, args = self.classifier.build_query(tenant, list(excluded_names))
        try:
            rows = await pool.fetch(query, *args)
        except QUERY_ERRORS as e:
            logger.error(f"Error searching catalog-worthy tables for tenant {tenant.name}: {e}")
            raise SchemaError(
                f"Failed to search catalog-worthy tables: {e}",
                details={"tenant": tenant.name, "schema": tenant.database_schema},
                cause=e,
            ) from e

        return [row["table_name"] for row in rows]
