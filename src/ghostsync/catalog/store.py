"""
Catalog store for ghostsync.

The catalog is the metadata record of a tenant's tables. It lives in its own
schema and is only ever mutated here; the live tables it describes are
never touched.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Set

import asyncpg

from ..config import TenantConfig
from ..database.connection import QUERY_ERRORS, DatabaseManager
from ..exceptions import CatalogError, OwnershipViolation


logger = logging.getLogger(__name__)

OWNERSHIP_ERROR_PATTERN = re.compile(r"must be owner of")


@dataclass(frozen=True)
class CatalogEntry:
    """A catalog record describing one tenant table."""

    entry_id: int
    tenant: str
    name: str
    identifier: Optional[int] = None


def quote_ident(name: str) -> str:
    """Quote a SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


def translate_error(error: Exception, message: str, table_name: Optional[str] = None) -> CatalogError:
    """Map a driver error onto the catalog error taxonomy."""
    if isinstance(error, asyncpg.InsufficientPrivilegeError) or OWNERSHIP_ERROR_PATTERN.search(
        str(error)
    ):
        return OwnershipViolation(f"{message}: {error}", table_name=table_name, cause=error)
    return CatalogError(f"{message}: {error}", table_name=table_name, cause=error)


class CatalogStore(ABC):
    """Reads and mutates catalog entries for a tenant."""

    @abstractmethod
    async def list_entries(self, tenant: TenantConfig) -> List[CatalogEntry]:
        pass

    @abstractmethod
    async def list_excluded_names(self, tenant: TenantConfig) -> Set[str]:
        """Names of tables currently targeted by an out-of-band sync."""
        pass

    @abstractmethod
    async def rename(self, entry: CatalogEntry, new_name: str) -> CatalogEntry:
        """
        Rename an entry.

        Raises:
            OwnershipViolation: If the acting role may not update the entry
            CatalogError: On any other failure
        """
        pass

    @abstractmethod
    async def delete(self, entry: CatalogEntry) -> None:
        """Remove an entry from the catalog; the live table is left alone."""
        pass

    @abstractmethod
    async def create(
        self, tenant: TenantConfig, name: str, identifier: Optional[int]
    ) -> CatalogEntry:
        pass


class PostgresCatalogStore(CatalogStore):
    """Catalog store backed by the ghostsync catalog schema."""

    def __init__(
        self,
        databases: DatabaseManager,
        database: str,
        schema_name: str = "ghostsync_catalog",
    ):
        self.databases = databases
        self.database = database
        self.schema_name = schema_name

    @property
    def _tables(self) -> str:
        return f"{quote_ident(self.schema_name)}.user_tables"

    @property
    def _synchronizations(self) -> str:
        return f"{quote_ident(self.schema_name)}.synchronizations"

    async def list_entries(self, tenant: TenantConfig) -> List[CatalogEntry]:
        query = f"""
            SELECT id, tenant, name, table_id
            FROM {self._tables}
            WHERE tenant = $1
            ORDER BY name, id
        """
        pool = await self.databases.get_pool(self.database)
        try:
            rows = await pool.fetch(query, tenant.name)
        except QUERY_ERRORS as e:
            raise translate_error(e, f"Failed to list catalog entries for {tenant.name}") from e

        return [
            CatalogEntry(
                entry_id=row["id"],
                tenant=row["tenant"],
                name=row["name"],
                identifier=row["table_id"],
            )
            for row in rows
        ]

    async def list_excluded_names(self, tenant: TenantConfig) -> Set[str]:
        query = f"""
            SELECT DISTINCT name
            FROM {self._synchronizations}
            WHERE tenant = $1 AND name IS NOT NULL
        """
        pool = await self.databases.get_pool(self.database)
        try:
            rows = await pool.fetch(query, tenant.name)
        except QUERY_ERRORS as e:
            raise translate_error(e, f"Failed to list synchronizations for {tenant.name}") from e

        return {row["name"] for row in rows}

    async def rename(self, entry: CatalogEntry, new_name: str) -> CatalogEntry:
        query = f"""
            UPDATE {self._tables}
            SET name = $1, updated_at = NOW()
            WHERE id = $2 AND tenant = $3
        """
        status = await self._execute(
            entry, query, new_name, entry.entry_id, entry.tenant,
            message=f"Failed to rename catalog entry '{entry.name}' to '{new_name}'",
        )
        if status == "UPDATE 0":
            raise CatalogError("Catalog entry no longer exists", table_name=entry.name)

        logger.debug(f"Renamed catalog entry {entry.entry_id}: '{entry.name}' -> '{new_name}'")

        return CatalogEntry(
            entry_id=entry.entry_id,
            tenant=entry.tenant,
            name=new_name,
            identifier=entry.identifier,
        )

    async def delete(self, entry: CatalogEntry) -> None:
        query = f"DELETE FROM {self._tables} WHERE id = $1 AND tenant = $2"
        await self._execute(
            entry, query, entry.entry_id, entry.tenant,
            message=f"Failed to delete catalog entry '{entry.name}'",
        )
        logger.debug(f"Deleted catalog entry {entry.entry_id} ('{entry.name}')")

    async def create(
        self, tenant: TenantConfig, name: str, identifier: Optional[int]
    ) -> CatalogEntry:
        query = f"""
            INSERT INTO {self._tables} (tenant, name, table_id, created_at, updated_at)
            VALUES ($1, $2, $3, NOW(), NOW())
            RETURNING id
        """
        pool = await self.databases.get_pool(self.database)
        try:
            entry_id = await pool.fetchval(query, tenant.name, name, identifier)
        except QUERY_ERRORS as e:
            raise translate_error(e, f"Failed to register table '{name}'", table_name=name) from e

        logger.debug(f"Registered table '{name}' as catalog entry {entry_id}")
        return CatalogEntry(entry_id=entry_id, tenant=tenant.name, name=name, identifier=identifier)

    async def _execute(self, entry: CatalogEntry, query: str, *args, message: str) -> str:
        pool = await self.databases.get_pool(self.database)
        try:
            return await pool.execute(query, *args)
        except QUERY_ERRORS as e:
            raise translate_error(e, message, table_name=entry.name) from e
