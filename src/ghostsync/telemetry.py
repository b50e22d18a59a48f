"""
Telemetry sinks for ghostsync.

Reporting is fire-and-forget: a sink never raises into the caller and
never makes it wait on I/O.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Set

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

GHOST_TABLES_EVENT = "ghost_tables"


class TelemetrySink(ABC):
    """Receives reconciliation events."""

    @abstractmethod
    def report(self, kind: str, payload: Mapping[str, Any]) -> None:
        pass


class LoggingTelemetrySink(TelemetrySink):
    """Writes events to the log."""

    def __init__(self, level: int = logging.DEBUG):
        self.level = level

    def report(self, kind: str, payload: Mapping[str, Any]) -> None:
        try:
            logger.log(self.level, f"{kind}: {json.dumps(dict(payload), sort_keys=True, default=str)}")
        except (TypeError, ValueError) as e:
            logger.warning(f"Dropped telemetry event {kind}: {e}")


class RedisTelemetrySink(TelemetrySink):
    """Pushes events onto a capped Redis list."""

    def __init__(self, client: redis.Redis, list_name: str = "ghostsync:telemetry", max_length: int = 10000):
        self.client = client
        self.list_name = list_name
        self.max_length = max_length
        self._pending: Set[asyncio.Task] = set()

    def report(self, kind: str, payload: Mapping[str, Any]) -> None:
        try:
            message = json.dumps(
                {"kind": kind, "payload": dict(payload), "timestamp": time.time()},
                default=str,
            )
            loop = asyncio.get_running_loop()
        except (TypeError, ValueError, RuntimeError) as e:
            logger.warning(f"Dropped telemetry event {kind}: {e}")
            return

        task = loop.create_task(self._publish(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, message: str) -> None:
        try:
            await self.client.lpush(self.list_name, message)
            await self.client.ltrim(self.list_name, 0, self.max_length - 1)
        except RedisError as e:
            logger.warning(f"Failed to publish telemetry event: {e}")

    async def flush(self) -> None:
        """Wait for events already reported to be published."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def event_payload(action: str, tenant: str, table: str, **extra: Any) -> Dict[str, Any]:
    """Build the payload of a ghost tables event."""
    payload = {"action": action, "tenant": tenant, "table": table}
    payload.update(extra)
    return payload
