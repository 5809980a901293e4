"""Shared test fixtures and configuration."""

from collections.abc import Iterator
import sqlite3

import pytest

from search_mirror.adapters.memory_backend import InMemorySearchCluster
from search_mirror.adapters.record_store import SqliteRecordStore
from search_mirror.deployment_config import EntityIndexConfig, IndexRegistry
from search_mirror.search.connections import IndexConnections
from search_mirror.service_layer.indexable_service import IndexableService


SCHEMA = """
CREATE TABLE people (
    id INTEGER PRIMARY KEY,
    first_name VARCHAR(64),
    last_name VARCHAR(64),
    bio TEXT,
    age INTEGER
);
CREATE TABLE articles (
    id INTEGER PRIMARY KEY,
    title VARCHAR(255),
    body TEXT,
    status CHAR(8),
    views INTEGER
);
"""


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep host SEARCH_* variables out of Settings-driven tests."""
    for key in (
        "SEARCH_BACKEND_URL",
        "SEARCH_BACKEND_TIMEOUT",
        "SEARCH_BACKEND_REFRESH",
        "DEFAULT_RESULT_LIMIT",
        "REINDEX_PAGE_SIZE",
        "LOG_LEVEL",
        "LOG_JSON",
        "LOG_QUERIES",
    ):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def connection() -> Iterator[sqlite3.Connection]:
    conn = sqlite3.connect(":memory:")
    conn.executescript(SCHEMA)
    yield conn
    conn.close()


@pytest.fixture
def registry() -> IndexRegistry:
    return IndexRegistry(
        entities=[
            EntityIndexConfig(entity_type="Person", table="people", index="site"),
            EntityIndexConfig(entity_type="Article", table="articles", index="site"),
        ]
    )


@pytest.fixture
def store(connection, registry) -> SqliteRecordStore:
    return SqliteRecordStore.from_registry(connection, registry)


@pytest.fixture
def cluster() -> InMemorySearchCluster:
    return InMemorySearchCluster()


@pytest.fixture
def connections(registry, cluster) -> IndexConnections:
    return IndexConnections(registry, cluster.backend)


@pytest.fixture
def service(registry, store, connections) -> IndexableService:
    return IndexableService(registry, store, connections)


@pytest.fixture
def people(store) -> dict[str, int]:
    """A handful of saved Person rows, keyed by first name."""
    rows = [
        {"first_name": "Ada", "last_name": "Lovelace", "bio": "Wrote the first published algorithm", "age": 36},
        {"first_name": "Alan", "last_name": "Turing", "bio": "Broke ciphers and defined computability", "age": 41},
        {"first_name": "Grace", "last_name": "Hopper", "bio": "Built the first compiler", "age": 85},
    ]
    return {row["first_name"]: store.save("Person", row) for row in rows}
