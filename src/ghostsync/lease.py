"""
Time-bounded distributed leases for ghostsync.

A lease gives one reconciliation pass exclusive ownership of a tenant. It
expires on its own after its TTL, so a crashed holder cannot block the
tenant for longer than that. Failing to acquire a lease is a normal
outcome and is reported as ``None``, never as an exception.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.asyncio.lock import Lock
from redis.exceptions import LockNotOwnedError, RedisError

from .exceptions import LeaseError

logger = logging.getLogger(__name__)

LEASE_NAME = "ghost_tables_working"


@dataclass(frozen=True)
class Lease:
    """An acquired lease."""

    key: str
    ttl_ms: int
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    acquired_at: float = field(default_factory=time.monotonic)

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.ttl_ms / 1000.0


def lease_key(tenant_name: str, prefix: str = "ghostsync:tenants") -> str:
    """Build the lease key guarding a tenant's reconciliation."""
    return f"{prefix}:{tenant_name}:{LEASE_NAME}"


class LeaseLock(ABC):
    """Acquires and releases time-bounded exclusive leases."""

    @abstractmethod
    async def acquire(self, key: str, ttl_ms: int) -> Optional[Lease]:
        """
        Try to acquire a lease.

        Args:
            key: Lease key
            ttl_ms: Time-to-live in milliseconds

        Returns:
            The lease, or None if another holder has it

        Raises:
            LeaseError: If the lease backend cannot be reached
        """
        pass

    @abstractmethod
    async def release(self, lease: Lease) -> None:
        """Release a lease. Idempotent and safe after expiry."""
        pass


class RedisLeaseLock(LeaseLock):
    """
    Lease lock backed by a single Redis instance.

    Each lease maps onto a non-blocking redis-py ``Lock`` whose token is the
    lease token, so a release only deletes the key while it still holds
    that token.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    def _lock(self, lease: Lease) -> Lock:
        return self.client.lock(lease.key, timeout=lease.ttl_ms / 1000.0)

    async def acquire(self, key: str, ttl_ms: int) -> Optional[Lease]:
        lease = Lease(key=key, ttl_ms=ttl_ms)
        try:
            acquired = await self._lock(lease).acquire(blocking=False, token=lease.token)
        except RedisError as e:
            raise LeaseError(f"Failed to acquire lease {key}", cause=e) from e

        if not acquired:
            logger.debug(f"Lease {key} is held elsewhere")
            return None

        logger.debug(f"Acquired lease {key} for {ttl_ms}ms")
        return lease

    async def release(self, lease: Lease) -> None:
        try:
            await self._lock(lease).do_release(lease.token)
        except LockNotOwnedError:
            logger.debug(f"Lease {lease.key} had already expired or changed hands")
        except RedisError as e:
            # The lease expires on its own.
            logger.warning(f"Failed to release lease {lease.key}: {e}")


class InMemoryLeaseLock(LeaseLock):
    """Lease lock for a single process."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._leases: Dict[str, Tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, key: str, ttl_ms: int) -> Optional[Lease]:
        async with self._lock:
            now = self._clock()
            current = self._leases.get(key)
            if current is not None and current[1] > now:
                return None

            lease = Lease(key=key, ttl_ms=ttl_ms, acquired_at=now)
            self._leases[key] = (lease.token, lease.expires_at)
            return lease

    async def release(self, lease: Lease) -> None:
        async with self._lock:
            current = self._leases.get(lease.key)
            if current is not None and current[0] == lease.token:
                del self._leases[lease.key]

    def is_held(self, key: str) -> bool:
        current = self._leases.get(key)
        return current is not None and current[1] > self._clock()


@asynccontextmanager
async def hold(lock: LeaseLock, key: str, ttl_ms: int) -> AsyncIterator[Optional[Lease]]:
    """Hold a lease for the duration of the block, yielding None if unavailable."""
    lease = await lock.acquire(key, ttl_ms)
    try:
        yield lease
    finally:
        if lease is not None:
            await lock.release(lease)
