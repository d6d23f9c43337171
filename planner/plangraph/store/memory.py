"""
In-memory key-value store implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests (including concurrent writers)
- Local development without external dependencies

Invariants:
    - All data is lost on process exit
    - Provides the same ordering and condition semantics as DynamoDB
    - Stored items are copied on the way in and out (no aliasing)

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with KeyValueStore protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Iterable, List, Optional
import logging

from ..errors import ConditionFailedError, StoreUnavailableError
from .base import Item, PutCondition, item_key

logger = logging.getLogger(__name__)


@dataclass
class _InjectedFailure:
    exception: Exception
    operation: str
    remaining_successes: int


class InMemoryKeyValueStore:
    """In-memory implementation of KeyValueStore for testing.

    Attributes:
        latency_s: Simulated latency awaited before every operation. Even 0
            yields to the event loop, so concurrent mutations interleave the
            way they would against a networked store.

    Thread safety:
        Uses an asyncio lock around every read-modify-write. Safe to use
        from multiple coroutines.

    Example:
        >>> store = InMemoryKeyValueStore()
        >>> await store.connect()
        >>> await store.put({"PK": "U#1", "SK": "NODE#a", "title": "x"})
        >>> await store.get("U#1", "NODE#a")
        {'PK': 'U#1', 'SK': 'NODE#a', 'title': 'x'}
    """

    def __init__(self, latency_s: float = 0.0) -> None:
        """Initialize in-memory store.

        Args:
            latency_s: Seconds to sleep before each operation
        """
        self.latency_s = latency_s
        self._partitions: Dict[str, Dict[str, Item]] = defaultdict(dict)
        self._connected = False
        self._lock = asyncio.Lock()
        self._failures: List[_InjectedFailure] = []
        self.put_count = 0
        self.conditional_failures = 0

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryKeyValueStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._partitions.clear()
        self._failures.clear()
        logger.debug("InMemoryKeyValueStore closed")

    async def get(self, pk: str, sk: str) -> Optional[Item]:
        await self._before("get")
        item = self._partitions.get(pk, {}).get(sk)
        return copy.deepcopy(item) if item is not None else None

    async def put(self, item: Item, condition: Optional[PutCondition] = None) -> None:
        await self._before("put")
        pk, sk = item_key(item)

        async with self._lock:
            if condition is not None:
                current = self._partitions.get(pk, {}).get(sk)
                if not condition.is_satisfied_by(current):
                    self.conditional_failures += 1
                    raise ConditionFailedError(
                        f"Condition {condition} failed for {pk}/{sk}", pk=pk, sk=sk
                    )
            self._partitions[pk][sk] = copy.deepcopy(item)
            self.put_count += 1

    async def batch_put(self, items: Iterable[Item]) -> None:
        await self._before("batch_put")
        async with self._lock:
            for item in items:
                pk, sk = item_key(item)
                self._partitions[pk][sk] = copy.deepcopy(item)
                self.put_count += 1

    async def query(
        self,
        pk: str,
        sk_prefix: str = "",
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Item]:
        await self._before("query")
        async with self._lock:
            partition = self._partitions.get(pk, {})
            keys = sorted(
                (sk for sk in partition if sk.startswith(sk_prefix)),
                reverse=not ascending,
            )
            if limit is not None:
                keys = keys[:limit]
            items = [copy.deepcopy(partition[sk]) for sk in keys]

        for item in items:
            yield item

    async def _before(self, operation: str) -> None:
        if not self._connected:
            raise StoreUnavailableError("Not connected")
        await asyncio.sleep(self.latency_s)

        for failure in self._failures:
            if failure.operation not in (operation, "*"):
                continue
            if failure.remaining_successes > 0:
                failure.remaining_successes -= 1
                continue
            self._failures.remove(failure)
            raise failure.exception

    # Testing helpers

    def inject_failure(
        self,
        exception: Exception,
        operation: str = "*",
        after: int = 0,
    ) -> None:
        """Make a future operation raise.

        Args:
            exception: Exception to raise
            operation: "get", "put", "batch_put", "query" or "*" for any
            after: Number of matching operations that still succeed first
        """
        self._failures.append(_InjectedFailure(exception, operation, after))

    def partition(self, pk: str) -> Dict[str, Item]:
        """Return a copy of one partition (testing helper)."""
        return copy.deepcopy(self._partitions.get(pk, {}))

    def partition_keys(self) -> List[str]:
        """List every partition key with at least one item (testing helper)."""
        return sorted(pk for pk, items in self._partitions.items() if items)

    def item_count(self) -> int:
        """Total items across all partitions (testing helper)."""
        return sum(len(items) for items in self._partitions.values())
