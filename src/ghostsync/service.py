"""
Resolver service for ghostsync.

Wires the resolver's collaborators from configuration and runs passes for
one tenant, every tenant, or every tenant on an interval.
"""

import asyncio
import logging
from typing import Dict, Optional, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from .catalog.store import PostgresCatalogStore
from .classifier import CatalogWorthinessClassifier
from .config import GhostSyncConfig
from .database.connection import DatabaseManager
from .database.introspection import PostgresSchemaIntrospector
from .exceptions import GhostSyncError
from .lease import InMemoryLeaseLock, LeaseLock, RedisLeaseLock
from .resolver import GhostTablesResolver, ResolutionResult
from .telemetry import LoggingTelemetrySink, RedisTelemetrySink, TelemetrySink

logger = logging.getLogger(__name__)


class GhostSyncService:
    """
    Runs resolver passes for the configured tenants.

    Owns the database pools and the Redis client; use it as an async context
    manager or call ``close()`` when done.
    """

    def __init__(self, config: GhostSyncConfig):
        self.config = config
        self.databases = DatabaseManager()
        self.redis_client: Optional[redis.Redis] = None
        self.lock: Optional[LeaseLock] = None
        self.telemetry: Optional[TelemetrySink] = None
        self.resolver: Optional[GhostTablesResolver] = None
        self.running = False

    async def start(self) -> None:
        """Build collaborators. Connections are opened lazily."""
        if self.resolver is not None:
            return

        for db_config in self.config.databases:
            self.databases.add_database(db_config.name, db_config.connection)

        if self.config.lease.backend == "redis" or self.config.telemetry.sink == "redis":
            self.redis_client = self._create_redis_client()

        if self.config.lease.backend == "redis":
            self.lock = RedisLeaseLock(self.redis_client)
        else:
            self.lock = InMemoryLeaseLock()

        if self.config.telemetry.sink == "redis":
            self.telemetry = RedisTelemetrySink(
                self.redis_client,
                list_name=self.config.telemetry.list_name,
                max_length=self.config.telemetry.max_length,
            )
        else:
            self.telemetry = LoggingTelemetrySink()

        classifier = CatalogWorthinessClassifier(self.config.classifier)
        self.resolver = GhostTablesResolver.from_config(
            self.config.resolver,
            lock=self.lock,
            introspector=PostgresSchemaIntrospector(self.databases, classifier),
            store=PostgresCatalogStore(
                self.databases,
                self.config.catalog.database,
                schema_name=self.config.catalog.schema_name,
            ),
            telemetry=self.telemetry,
            ttl_ms=self.config.lease.ttl_ms,
            key_prefix=self.config.lease.key_prefix,
        )
        logger.info(
            f"Resolver service ready ({len(self.config.tenants)} tenants, "
            f"databases={', '.join(self.databases.list_databases())}, "
            f"lease={self.config.lease.backend}, telemetry={self.config.telemetry.sink})"
        )

    def _create_redis_client(self) -> redis.Redis:
        connection = self.config.lease.connection
        return redis.Redis(
            host=connection.get("host", "localhost"),
            port=connection.get("port", 6379),
            db=connection.get("db", 0),
            password=connection.get("password"),
            decode_responses=True,
        )

    async def run_tenant(self, name: str) -> ResolutionResult:
        """Run one pass for the named tenant."""
        await self.start()
        tenant = self.config.get_tenant(name)
        return await self.resolver.run(tenant)

    async def run_all(self) -> Dict[str, Union[ResolutionResult, GhostSyncError]]:
        """Run one pass per tenant. A failing tenant doesn't stop the others."""
        await self.start()
        results: Dict[str, Union[ResolutionResult, GhostSyncError]] = {}

        for tenant in self.config.tenants:
            try:
                results[tenant.name] = await self.resolver.run(tenant)
            except GhostSyncError as e:
                logger.error(f"Resolver pass failed for tenant {tenant.name}: {e}")
                results[tenant.name] = e

        return results

    async def run_forever(self, interval_seconds: Optional[int] = None) -> None:
        """Run passes for every tenant until stopped."""
        interval = interval_seconds or self.config.resolver.interval_seconds
        self.running = True
        logger.info(f"Starting resolver loop (interval: {interval}s)")

        while self.running:
            await self.run_all()
            if isinstance(self.telemetry, RedisTelemetrySink):
                await self.telemetry.flush()
            await asyncio.sleep(interval)

        logger.info("Resolver loop stopped")

    def stop(self) -> None:
        self.running = False

    async def close(self) -> None:
        """Flush telemetry and close connections."""
        self.running = False

        if isinstance(self.telemetry, RedisTelemetrySink):
            await self.telemetry.flush()

        await self.databases.close_all()

        if self.redis_client is not None:
            try:
                await self.redis_client.aclose()
            except (OSError, RedisError) as e:
                logger.warning(f"Error closing Redis client: {e}")
            self.redis_client = None

    async def __aenter__(self) -> "GhostSyncService":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
