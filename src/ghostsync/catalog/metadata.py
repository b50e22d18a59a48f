"""
Catalog schema management for ghostsync.

Creates the catalog schema and its tables, and checks that they are in
place before the resolver relies on them.
"""

import logging
from typing import Any, Dict, List

from ..database.connection import QUERY_ERRORS, ConnectionPool
from ..exceptions import SchemaError
from .store import quote_ident


logger = logging.getLogger(__name__)


class CatalogSchemaManager:
    """Manages the ghostsync catalog schema and tables."""

    def __init__(self, pool: ConnectionPool, schema_name: str = "ghostsync_catalog"):
        self.pool = pool
        self.schema_name = schema_name

        self.required_tables = {
            "user_tables": self._get_user_tables_ddl(),
            "synchronizations": self._get_synchronizations_ddl(),
        }

    async def setup_catalog_schema(self) -> Dict[str, Any]:
        """Set up the catalog schema. Safe to run repeatedly."""
        results = {
            "schema": self.schema_name,
            "tables_created": [],
            "errors": [],
        }

        try:
            await self.pool.execute(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(self.schema_name)}")
        except QUERY_ERRORS as e:
            logger.error(f"Catalog schema setup failed: {e}")
            raise SchemaError(f"Failed to create catalog schema: {e}") from e

        for table_name, ddl in self.required_tables.items():
            try:
                created = await self._create_table_if_not_exists(table_name, ddl)
                if created:
                    results["tables_created"].append(f"{self.schema_name}.{table_name}")
            except QUERY_ERRORS as e:
                error_msg = f"Failed to create table {table_name}: {e}"
                logger.error(error_msg)
                results["errors"].append(error_msg)

        logger.info(f"Catalog schema setup completed: {len(results['errors'])} errors")
        return results

    async def check_catalog_integrity(self) -> Dict[str, Any]:
        """Check that the catalog schema and tables exist."""
        integrity_report = {
            "schema_exists": False,
            "tables_exist": {},
            "missing_components": [],
            "is_healthy": True,
        }

        try:
            integrity_report["schema_exists"] = bool(
                await self.pool.fetchval(
                    "SELECT EXISTS (SELECT 1 FROM information_schema.schemata WHERE schema_name = $1)",
                    self.schema_name,
                )
            )
            if not integrity_report["schema_exists"]:
                integrity_report["missing_components"].append(f"schema:{self.schema_name}")
                integrity_report["is_healthy"] = False
                return integrity_report

            existing = set(await self._list_tables())
            for table_name in self.required_tables:
                exists = table_name in existing
                integrity_report["tables_exist"][table_name] = exists
                if not exists:
                    integrity_report["missing_components"].append(f"table:{table_name}")
                    integrity_report["is_healthy"] = False

            return integrity_report

        except QUERY_ERRORS as e:
            logger.error(f"Catalog integrity check failed: {e}")
            return {
                "error": str(e),
                "is_healthy": False,
            }

    async def _list_tables(self) -> List[str]:
        rows = await self.pool.fetch(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = $1 AND table_type = 'BASE TABLE'
            """,
            self.schema_name,
        )
        return [row["table_name"] for row in rows]

    async def _create_table_if_not_exists(self, table: str, ddl: str) -> bool:
        """Create table if it doesn't exist. Returns whether it was created."""
        check_sql = """
        SELECT EXISTS (
            SELECT 1 FROM information_schema.tables
            WHERE table_schema = $1 AND table_name = $2
        )
        """

        async with self.pool.acquire() as conn:
            exists = await conn.fetchval(check_sql, self.schema_name, table)
            if exists:
                logger.debug(f"Table {self.schema_name}.{table} already exists")
                return False
            await conn.execute(ddl)
            logger.info(f"Created table {self.schema_name}.{table}")
            return True

    def _get_user_tables_ddl(self) -> str:
        """Get DDL for the catalog entries table."""
        schema = quote_ident(self.schema_name)
        # Names are not unique: a stale entry may share a name with a renamed one
        # until the deletion phase removes it.
        return f"""
        CREATE TABLE IF NOT EXISTS {schema}.user_tables (
            id BIGSERIAL PRIMARY KEY,
            tenant VARCHAR(255) NOT NULL,
            name VARCHAR(255) NOT NULL,
            table_id BIGINT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_user_tables_tenant_name
        ON {schema}.user_tables(tenant, name);

        CREATE INDEX IF NOT EXISTS idx_user_tables_tenant_table_id
        ON {schema}.user_tables(tenant, table_id);
        """

    def _get_synchronizations_ddl(self) -> str:
        """Get DDL for the out-of-band synchronization registry."""
        schema = quote_ident(self.schema_name)
        return f"""
        CREATE TABLE IF NOT EXISTS {schema}.synchronizations (
            id BIGSERIAL PRIMARY KEY,
            tenant VARCHAR(255) NOT NULL,
            name VARCHAR(255),
            state VARCHAR(50) NOT NULL DEFAULT 'created',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_synchronizations_tenant
        ON {schema}.synchronizations(tenant);
        """
