"""
Shared fixtures for integration tests.

Services run against the in-memory store by default; the sqlite_app fixture
provides the same wiring over a temporary SQLite file.
"""

import os
import tempfile

import pytest

from planner.plangraph.config import ServerConfig, SqliteConfig, StoreBackend
from planner.plangraph.main import PlanGraph
from planner.plangraph.store import InMemoryKeyValueStore


@pytest.fixture
async def store():
    store = InMemoryKeyValueStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def app(store):
    """PlanGraph wired to the in-memory store."""
    return PlanGraph(ServerConfig(), store=store)


@pytest.fixture
async def sqlite_app():
    """PlanGraph wired to a temporary SQLite database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = ServerConfig(
            store_backend=StoreBackend.SQLITE,
            sqlite=SqliteConfig(path=os.path.join(tmpdir, "plangraph.db"), wal_mode=False),
        )
        app = PlanGraph(config)
        await app.start()
        yield app
        await app.stop()
