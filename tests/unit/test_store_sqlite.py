"""
Unit tests for the SQLite key-value store.
"""

import os
import tempfile

import pytest

from planner.plangraph.config import SqliteConfig
from planner.plangraph.errors import ConditionFailedError, StoreUnavailableError
from planner.plangraph.store import KeyValueStore, PutCondition, SqliteKeyValueStore


class TestSqliteKeyValueStore:
    """Tests for SqliteKeyValueStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def store(self, data_dir):
        """Create a connected store with a small page size."""
        store = SqliteKeyValueStore(
            SqliteConfig(path=os.path.join(data_dir, "kv.db"), wal_mode=False),
            page_size=2,
        )
        await store.connect()
        yield store
        await store.close()

    def test_implements_protocol(self, data_dir):
        store = SqliteKeyValueStore(SqliteConfig(path=os.path.join(data_dir, "kv.db")))
        assert isinstance(store, KeyValueStore)

    @pytest.mark.asyncio
    async def test_connect_creates_file(self, store, data_dir):
        assert store.is_connected
        assert store.get_db_path().exists()

    @pytest.mark.asyncio
    async def test_requires_connection(self, data_dir):
        store = SqliteKeyValueStore(SqliteConfig(path=os.path.join(data_dir, "kv.db")))

        with pytest.raises(StoreUnavailableError):
            await store.get("U#1", "HEAD")

    @pytest.mark.asyncio
    async def test_put_get_preserves_types(self, store):
        item = {"PK": "U#1", "SK": "NODE#a", "order": 3, "archived": False, "notes": None}

        await store.put(item)

        assert await store.get("U#1", "NODE#a") == item

    @pytest.mark.asyncio
    async def test_conditional_put(self, store):
        await store.put({"PK": "U#1", "SK": "HEAD", "headRevId": "r1"}, PutCondition.not_exists())

        with pytest.raises(ConditionFailedError):
            await store.put({"PK": "U#1", "SK": "HEAD", "headRevId": "r2"}, PutCondition.not_exists())
        await store.put(
            {"PK": "U#1", "SK": "HEAD", "headRevId": "r2"}, PutCondition.equals(headRevId="r1")
        )
        with pytest.raises(ConditionFailedError):
            await store.put(
                {"PK": "U#1", "SK": "HEAD", "headRevId": "r3"}, PutCondition.equals(headRevId="r1")
            )

        assert (await store.get("U#1", "HEAD"))["headRevId"] == "r2"

    @pytest.mark.asyncio
    async def test_query_pages_in_order(self, store):
        """Results span several pages and keep SK order both ways."""
        await store.batch_put([{"PK": "P", "SK": f"EDGE#p#{i:05d}#c{i}"} for i in range(5)])
        await store.put({"PK": "P", "SK": "NODE#p"})

        forward = [item["SK"] async for item in store.query("P", "EDGE#")]
        backward = [item["SK"] async for item in store.query("P", "EDGE#", ascending=False)]
        limited = [item["SK"] async for item in store.query("P", "EDGE#", limit=3)]

        assert forward == [f"EDGE#p#{i:05d}#c{i}" for i in range(5)]
        assert backward == list(reversed(forward))
        assert limited == forward[:3]

    @pytest.mark.asyncio
    async def test_query_without_prefix_returns_partition(self, store):
        await store.batch_put([{"PK": "P", "SK": "B"}, {"PK": "P", "SK": "A"}, {"PK": "Q", "SK": "C"}])

        assert [item["SK"] async for item in store.query("P")] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_prefix_is_literal(self, store):
        """SQL wildcard characters in the prefix match literally."""
        await store.batch_put([{"PK": "P", "SK": "a%b"}, {"PK": "P", "SK": "axb"}])

        assert [item["SK"] async for item in store.query("P", "a%")] == ["a%b"]

    @pytest.mark.asyncio
    async def test_data_survives_reconnect(self, data_dir):
        config = SqliteConfig(path=os.path.join(data_dir, "kv.db"), wal_mode=False)
        first = SqliteKeyValueStore(config)
        await first.connect()
        await first.put({"PK": "U#1", "SK": "HEAD", "headRevId": "r1"})
        await first.close()

        second = SqliteKeyValueStore(config)
        await second.connect()

        assert (await second.get("U#1", "HEAD"))["headRevId"] == "r1"
