"""
Ghost tables resolver for ghostsync.

Tables can be created, renamed or dropped directly in a tenant's database,
bypassing the catalog. The resolver brings the catalog back in line with
what actually exists, one tenant at a time and under a per-tenant lease.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Literal, Tuple

from .catalog.store import CatalogEntry, CatalogStore
from .config import ResolverConfig, TenantConfig
from .database.introspection import LiveTable, SchemaIntrospector
from .exceptions import CatalogError, GhostSyncError, OwnershipViolation
from .lease import LeaseLock, hold, lease_key
from .telemetry import GHOST_TABLES_EVENT, TelemetrySink, event_payload


logger = logging.getLogger(__name__)


class ResolutionStatus(str, Enum):
    """Status of a resolver pass."""

    SUCCESS = "success"
    PARTIAL = "partial"
    SKIPPED = "skipped"


@dataclass
class ResolutionResult:
    """Result of one resolver pass for a tenant."""

    status: ResolutionStatus
    tenant: str
    renamed: List[Tuple[str, str]] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False
    execution_time_ms: float = 0.0

    @property
    def mutation_count(self) -> int:
        """Number of catalog mutations applied (or planned, in dry run)."""
        return len(self.renamed) + len(self.deleted) + len(self.created)

    @property
    def skipped(self) -> bool:
        return self.status == ResolutionStatus.SKIPPED


class GhostTablesResolver:
    """
    Reconciles a tenant's catalog with its live tables.

    A pass runs three phases in order:
    - rename: entries whose table identifier is live under another name
    - deletion: entries whose table no longer exists
    - creation: live tables the catalog doesn't know about yet

    Rename and creation only run when the tenant has live tables at all.
    """

    def __init__(
        self,
        lock: LeaseLock,
        introspector: SchemaIntrospector,
        store: CatalogStore,
        telemetry: TelemetrySink,
        ttl_ms: int = 2000,
        key_prefix: str = "ghostsync:tenants",
        dry_run: bool = False,
        null_identifier_cleanup: Literal["always", "with_orphans"] = "always",
    ):
        self.lock = lock
        self.introspector = introspector
        self.store = store
        self.telemetry = telemetry
        self.ttl_ms = ttl_ms
        self.key_prefix = key_prefix
        self.dry_run = dry_run
        self.null_identifier_cleanup = null_identifier_cleanup

    @classmethod
    def from_config(
        cls,
        config: ResolverConfig,
        lock: LeaseLock,
        introspector: SchemaIntrospector,
        store: CatalogStore,
        telemetry: TelemetrySink,
        ttl_ms: int = 2000,
        key_prefix: str = "ghostsync:tenants",
    ) -> "GhostTablesResolver":
        return cls(
            lock,
            introspector,
            store,
            telemetry,
            ttl_ms=ttl_ms,
            key_prefix=key_prefix,
            dry_run=config.dry_run,
            null_identifier_cleanup=config.null_identifier_cleanup,
        )

    async def run(self, tenant: TenantConfig) -> ResolutionResult:
        """
        Run one pass for a tenant.

        Args:
            tenant: Tenant to reconcile

        Returns:
            ResolutionResult; status is SKIPPED when the lease is held elsewhere

        Raises:
            GhostSyncError: If live tables or catalog entries cannot be read, or
                a rename fails for a reason other than ownership
        """
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        result = ResolutionResult(
            status=ResolutionStatus.SKIPPED, tenant=tenant.name, dry_run=self.dry_run
        )

        key = lease_key(tenant.name, self.key_prefix)
        async with hold(self.lock, key, self.ttl_ms) as lease:
            if lease is None:
                logger.info(f"Skipping tenant {tenant.name}: resolver already running")
                return result

            try:
                live_tables = await self.introspector.list_live_tables(tenant)
                entries = await self.store.list_entries(tenant)
            except GhostSyncError as e:
                logger.error(f"Resolver pass aborted for tenant {tenant.name}: {e}")
                raise

            has_live_tables = bool(live_tables)

            if has_live_tables:
                entries = await self._link_renamed_tables(tenant, live_tables, entries, result)

            entries = await self._link_deleted_tables(tenant, live_tables, entries, result)

            if has_live_tables:
                await self._link_created_tables(tenant, live_tables, entries, result)

        result.status = ResolutionStatus.PARTIAL if result.errors else ResolutionStatus.SUCCESS
        result.execution_time_ms = (loop.time() - start_time) * 1000

        logger.info(
            f"Resolver pass for tenant {tenant.name}: {result.status.value} "
            f"(renamed={len(result.renamed)}, deleted={len(result.deleted)}, "
            f"created={len(result.created)}, {result.execution_time_ms:.1f}ms)"
        )
        return result

    async def _link_renamed_tables(
        self,
        tenant: TenantConfig,
        live_tables: List[LiveTable],
        entries: List[CatalogEntry],
        result: ResolutionResult,
    ) -> List[CatalogEntry]:
        """Rename entries whose table is live under a different name."""
        live_by_id = {table.identifier: table for table in live_tables}
        live_names = {table.name for table in live_tables}

        updated = []
        for entry in entries:
            live = live_by_id.get(entry.identifier) if entry.identifier is not None else None
            if live is None or entry.name in live_names:
                updated.append(entry)
                continue

            self._report("rename", tenant, live.name, previous_name=entry.name)

            if self.dry_run:
                result.renamed.append((entry.name, live.name))
                updated.append(replace(entry, name=live.name))
                continue

            try:
                renamed = await self.store.rename(entry, live.name)
            except OwnershipViolation as e:
                logger.warning(f"Cannot rename '{entry.name}' to '{live.name}': {e}")
                result.errors.append(str(e))
                updated.append(entry)
                continue

            result.renamed.append((entry.name, live.name))
            updated.append(renamed)

        return updated

    async def _link_deleted_tables(
        self,
        tenant: TenantConfig,
        live_tables: List[LiveTable],
        entries: List[CatalogEntry],
        result: ResolutionResult,
    ) -> List[CatalogEntry]:
        """Delete entries whose table no longer exists."""
        # Sync jobs replace tables without touching the catalog.
        excluded = await self.store.list_excluded_names(tenant)

        live_ids = {table.identifier for table in live_tables}
        live_names = {table.name for table in live_tables}

        dropped = [
            entry
            for entry in entries
            if entry.identifier is not None
            and entry.identifier not in live_ids
            and entry.name not in excluded
        ]

        if self.null_identifier_cleanup == "always" or dropped:
            dropped.extend(
                entry
                for entry in entries
                if entry.identifier is None
                and entry.name not in live_names
                and entry.name not in excluded
            )

        if not dropped:
            return entries

        logger.info(f"Tenant {tenant.name}: {len(dropped)} catalog entries without a live table")

        removed = set()
        for entry in dropped:
            self._report("dropping table", tenant, entry.name)

            if not self.dry_run:
                try:
                    await self.store.delete(entry)
                except CatalogError as e:
                    logger.warning(f"Failed to delete catalog entry '{entry.name}': {e}")
                    self._report("dropping table failed", tenant, entry.name, error=str(e))
                    result.errors.append(str(e))
                    continue

            result.deleted.append(entry.name)
            removed.add(entry.entry_id)

        return [entry for entry in entries if entry.entry_id not in removed]

    async def _link_created_tables(
        self,
        tenant: TenantConfig,
        live_tables: List[LiveTable],
        entries: List[CatalogEntry],
        result: ResolutionResult,
    ) -> None:
        """Register live tables missing from the catalog."""
        catalog_names = {entry.name for entry in entries}
        missing = {table.name: table for table in live_tables if table.name not in catalog_names}
        if not missing:
            return

        worthy = await self.introspector.list_catalog_worthy_tables(tenant, sorted(catalog_names))

        for name in worthy:
            table = missing.get(name)
            if table is None:
                continue

            self._report("registering table", tenant, table.name)

            if not self.dry_run:
                try:
                    await self.store.create(tenant, table.name, table.identifier)
                except CatalogError as e:
                    logger.warning(f"Failed to register table '{table.name}': {e}")
                    self._report("registering table failed", tenant, table.name, error=str(e))
                    result.errors.append(str(e))
                    continue

            result.created.append(table.name)

    def _report(self, action: str, tenant: TenantConfig, table: str, **extra) -> None:
        self.telemetry.report(GHOST_TABLES_EVENT, event_payload(action, tenant.name, table, **extra))
