"""
Pytest configuration and shared fixtures for ghostsync tests.

The fakes here stand in for the live schema, the catalog store and the
telemetry sink so resolver passes can be driven entirely in memory.
"""

import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple
from unittest.mock import AsyncMock, MagicMock

import pytest
import yaml
from click.testing import CliRunner

from ghostsync.catalog.store import CatalogEntry, CatalogStore
from ghostsync.classifier import CatalogWorthinessClassifier
from ghostsync.config import ClassifierConfig, GhostSyncConfig, TenantConfig
from ghostsync.database.introspection import LiveTable, SchemaIntrospector
from ghostsync.lease import InMemoryLeaseLock
from ghostsync.resolver import GhostTablesResolver
from ghostsync.telemetry import TelemetrySink


WORTHY_COLUMNS = ["cartodb_id", "the_geom", "the_geom_webmercator", "name"]
WORTHY_TRIGGERS = ["test_quota_per_row"]


# ============================================================================
# Fakes
# ============================================================================

@dataclass
class FakeTable:
    """A live table together with the metadata the classifier looks at."""

    identifier: int
    name: str
    owner: str = "tenant_owner"
    columns: List[str] = field(default_factory=lambda: list(WORTHY_COLUMNS))
    triggers: List[str] = field(default_factory=lambda: list(WORTHY_TRIGGERS))


class FakeIntrospector(SchemaIntrospector):
    """In-memory live schema."""

    def __init__(self, classifier: CatalogWorthinessClassifier):
        self.classifier = classifier
        self.tables: Dict[int, FakeTable] = {}
        self.calls: List[str] = []
        self.fail_with: Optional[Exception] = None

    def add(self, identifier: int, name: str, **kwargs) -> FakeTable:
        table = FakeTable(identifier=identifier, name=name, **kwargs)
        self.tables[identifier] = table
        return table

    def drop(self, name: str) -> None:
        self.tables = {k: t for k, t in self.tables.items() if t.name != name}

    def rename(self, old_name: str, new_name: str) -> None:
        for table in self.tables.values():
            if table.name == old_name:
                table.name = new_name

    async def list_live_tables(self, tenant: TenantConfig) -> List[LiveTable]:
        self.calls.append("list_live_tables")
        if self.fail_with is not None:
            raise self.fail_with
        return [
            LiveTable(identifier=t.identifier, name=t.name, owner=t.owner)
            for t in sorted(self.tables.values(), key=lambda t: t.name)
            if t.owner == tenant.database_role
        ]

    async def list_catalog_worthy_tables(
        self, tenant: TenantConfig, excluded_names: Iterable[str]
    ) -> List[str]:
        self.calls.append("list_catalog_worthy_tables")
        excluded = set(excluded_names)
        return sorted(
            t.name
            for t in self.tables.values()
            if t.name not in excluded
            and self.classifier.is_catalog_worthy(t.columns, t.triggers, t.owner, tenant)
        )


class FakeCatalogStore(CatalogStore):
    """In-memory catalog that records every call."""

    def __init__(self):
        self.entries: Dict[int, CatalogEntry] = {}
        self.excluded: Set[str] = set()
        self.calls: List[Tuple[str, Any]] = []
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.list_error: Optional[Exception] = None
        self._next_id = 1

    def add(self, tenant: str, name: str, identifier: Optional[int]) -> CatalogEntry:
        entry = CatalogEntry(entry_id=self._next_id, tenant=tenant, name=name, identifier=identifier)
        self.entries[entry.entry_id] = entry
        self._next_id += 1
        return entry

    def fail(self, operation: str, name: str, error: Exception) -> None:
        self.failures[(operation, name)] = error

    def names(self, tenant: str = "acme") -> List[str]:
        return sorted(e.name for e in self.entries.values() if e.tenant == tenant)

    @property
    def mutations(self) -> List[Tuple[str, Any]]:
        return [call for call in self.calls if call[0] in ("rename", "delete", "create")]

    def _check(self, operation: str, name: str) -> None:
        error = self.failures.get((operation, name))
        if error is not None:
            raise error

    async def list_entries(self, tenant: TenantConfig) -> List[CatalogEntry]:
        self.calls.append(("list_entries", tenant.name))
        if self.list_error is not None:
            raise self.list_error
        return sorted(
            (e for e in self.entries.values() if e.tenant == tenant.name),
            key=lambda e: (e.name, e.entry_id),
        )

    async def list_excluded_names(self, tenant: TenantConfig) -> Set[str]:
        self.calls.append(("list_excluded_names", tenant.name))
        return set(self.excluded)

    async def rename(self, entry: CatalogEntry, new_name: str) -> CatalogEntry:
        self.calls.append(("rename", (entry.name, new_name)))
        self._check("rename", entry.name)
        renamed = CatalogEntry(entry.entry_id, entry.tenant, new_name, entry.identifier)
        self.entries[entry.entry_id] = renamed
        return renamed

    async def delete(self, entry: CatalogEntry) -> None:
        self.calls.append(("delete", entry.name))
        self._check("delete", entry.name)
        self.entries.pop(entry.entry_id, None)

    async def create(
        self, tenant: TenantConfig, name: str, identifier: Optional[int]
    ) -> CatalogEntry:
        self.calls.append(("create", name))
        self._check("create", name)
        return self.add(tenant.name, name, identifier)


class RecordingTelemetrySink(TelemetrySink):
    """Keeps every reported event."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def report(self, kind: str, payload: Mapping[str, Any]) -> None:
        self.events.append((kind, dict(payload)))

    def actions(self) -> List[Tuple[str, str]]:
        return [(payload["action"], payload["table"]) for _, payload in self.events]


# ============================================================================
# Resolver Fixtures
# ============================================================================

@pytest.fixture
def tenant() -> TenantConfig:
    """Tenant used across resolver tests."""
    return TenantConfig(
        name="acme",
        database="catalog",
        database_schema="public",
        database_role="tenant_owner",
    )


@pytest.fixture
def classifier() -> CatalogWorthinessClassifier:
    return CatalogWorthinessClassifier(ClassifierConfig())


@pytest.fixture
def introspector(classifier) -> FakeIntrospector:
    return FakeIntrospector(classifier)


@pytest.fixture
def store() -> FakeCatalogStore:
    return FakeCatalogStore()


@pytest.fixture
def telemetry() -> RecordingTelemetrySink:
    return RecordingTelemetrySink()


@pytest.fixture
def lock() -> InMemoryLeaseLock:
    return InMemoryLeaseLock()


@pytest.fixture
def resolver(lock, introspector, store, telemetry) -> GhostTablesResolver:
    return GhostTablesResolver(lock, introspector, store, telemetry)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def mock_pool():
    """Mock ConnectionPool exposing the query helpers."""
    pool = MagicMock()
    pool.execute = AsyncMock(return_value="UPDATE 1")
    pool.fetch = AsyncMock(return_value=[])
    pool.fetchval = AsyncMock(return_value=None)
    return pool


@pytest.fixture
def mock_databases(mock_pool):
    """Mock DatabaseManager handing out ``mock_pool``."""
    databases = MagicMock()
    databases.get_pool = AsyncMock(return_value=mock_pool)
    return databases


@pytest.fixture
def mock_redis_lock():
    """Mock redis-py Lock handed out by ``mock_redis_client.lock()``."""
    lock = MagicMock()
    lock.acquire = AsyncMock(return_value=True)
    lock.do_release = AsyncMock(return_value=None)
    return lock


@pytest.fixture
def mock_redis_client(mock_redis_lock):
    """Mock Redis client for testing."""
    redis_mock = AsyncMock()
    redis_mock.lock = MagicMock(return_value=mock_redis_lock)
    redis_mock.lpush = AsyncMock(return_value=1)
    redis_mock.ltrim = AsyncMock(return_value=True)
    return redis_mock


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config_data() -> Dict[str, Any]:
    """Complete ghostsync configuration as loaded from YAML."""
    return {
        "service_name": "ghostsync-test",
        "databases": [
            {
                "name": "catalog",
                "connection": {
                    "host": "localhost",
                    "port": 5432,
                    "database": "ghostsync_test",
                    "user": "test_user",
                    "password": "test_password",
                },
            }
        ],
        "tenants": [
            {
                "name": "acme",
                "database": "catalog",
                "database_schema": "public",
                "database_role": "tenant_owner",
            },
            {
                "name": "globex",
                "database": "catalog",
                "database_schema": "globex",
                "database_role": "globex_owner",
            },
        ],
        "lease": {"backend": "memory", "ttl_ms": 2000},
        "telemetry": {"sink": "logging"},
    }


@pytest.fixture
def sample_config(sample_config_data) -> GhostSyncConfig:
    return GhostSyncConfig(**sample_config_data)


@pytest.fixture
def temp_config_file(sample_config_data):
    """Temporary configuration file for testing."""
    with tempfile.NamedTemporaryFile(mode="w", suffix=".yaml", delete=False) as f:
        yaml.dump(sample_config_data, f)
        path = f.name
    yield path
    os.unlink(path)


@pytest.fixture
def runner():
    """Click CLI runner."""
    return CliRunner()


# ============================================================================
# Environment Setup
# ============================================================================

@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Keep GHOSTSYNC_ variables from the outer environment out of tests."""
    for key in list(os.environ):
        if key.startswith("GHOSTSYNC_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("POSTGRES_HOST", "localhost")
    monkeypatch.setenv("POSTGRES_PASSWORD", "test_password")
