"""
Database connection management for ghostsync.

Provides async PostgreSQL connection pooling and a manager that keeps one
pool per configured database.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional, Any, AsyncIterator, List

import asyncpg

from ..config import DatabaseConnection
from ..exceptions import DatabaseConnectionError, DatabaseConfigurationError


logger = logging.getLogger(__name__)

# Errors the driver raises for a failed query or a broken connection.
# InterfaceError is not a PostgresError, and asyncio.TimeoutError is not an
# OSError before Python 3.11.
QUERY_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
)


def to_connection_kwargs(config: DatabaseConnection) -> Dict[str, Any]:
    """Convert a connection config to asyncpg connection kwargs."""
    kwargs = {
        "host": config.host,
        "port": config.port,
        "database": config.database,
        "user": config.user,
        "password": config.password,
        "command_timeout": config.command_timeout,
        "server_settings": {"application_name": "ghostsync"},
    }
    if config.ssl_mode:
        kwargs["ssl"] = config.ssl_mode
    return kwargs


class ConnectionPool:
    """Async PostgreSQL connection pool wrapper."""

    def __init__(self, config: DatabaseConnection):
        self.config = config
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self._pool is not None:
                return

            try:
                logger.info(
                    f"Initializing connection pool to {self.config.host}:{self.config.port}"
                    f"/{self.config.database} (min={self.config.min_size}, max={self.config.max_size})"
                )

                self._pool = await asyncpg.create_pool(
                    **to_connection_kwargs(self.config),
                    min_size=self.config.min_size,
                    max_size=self.config.max_size,
                )

                logger.info("Connection pool initialized successfully")

            except QUERY_ERRORS as e:
                logger.error(f"Failed to initialize connection pool: {e}")
                raise DatabaseConnectionError(f"Failed to initialize connection pool: {e}") from e

    async def close(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is not None:
                logger.info("Closing connection pool")
                await self._pool.close()
                self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection from the pool."""
        if self._pool is None:
            raise DatabaseConnectionError("Pool is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    async def execute(self, query: str, *args) -> str:
        """Execute a query and return status."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all results from a query."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchval(self, query: str, *args, column: int = 0) -> Any:
        """Fetch a single value from a query."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    @property
    def is_initialized(self) -> bool:
        """Check if pool is initialized."""
        return self._pool is not None


class DatabaseManager:
    """Manages one connection pool per configured database."""

    def __init__(self):
        self._pools: Dict[str, ConnectionPool] = {}
        self._lock = asyncio.Lock()

    def add_database(self, name: str, config: DatabaseConnection) -> None:
        """Register a database; the pool is created lazily."""
        if name in self._pools:
            raise DatabaseConfigurationError(f"Database '{name}' already exists")

        logger.info(f"Adding database connection '{name}'")
        self._pools[name] = ConnectionPool(config)

    async def get_pool(self, name: str) -> ConnectionPool:
        """Get a connection pool by name and ensure it's initialized."""
        if name not in self._pools:
            raise DatabaseConfigurationError(f"Database '{name}' not found")

        pool = self._pools[name]
        if not pool.is_initialized:
            await pool.initialize()

        return pool

    async def close_all(self) -> None:
        """Close all database connections."""
        async with self._lock:
            logger.info("Closing all database connections")
            for name, pool in self._pools.items():
                try:
                    await pool.close()
                except QUERY_ERRORS as e:
                    logger.error(f"Error closing pool '{name}': {e}")

            self._pools.clear()

    def list_databases(self) -> List[str]:
        """List all configured database names."""
        return list(self._pools.keys())

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close_all()
