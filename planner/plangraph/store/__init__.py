"""
Key-value store abstraction for PlanGraph.

This module provides a pluggable store interface supporting:
- DynamoDB (production, single-table design)
- SQLite (single-process deployments)
- In-memory (testing)

The store knows nothing about revisions or nodes; it only offers keyed
items, conditional puts and ordered prefix queries within a partition.

Invariants:
    - Single-item writes are atomic; nothing spans items
    - Query order within a partition is lexicographic by sort key
    - Backend failures surface as StoreUnavailableError

How to change safely:
    - New backends must implement the KeyValueStore protocol
    - Run the store contract tests against every backend
"""

from .base import (
    Item,
    KeyValueStore,
    PutCondition,
    create_store,
    item_key,
)
from .dynamodb import DynamoDBKeyValueStore
from .memory import InMemoryKeyValueStore
from .sqlite import SqliteKeyValueStore

__all__ = [
    # Protocol and types
    "KeyValueStore",
    "Item",
    "PutCondition",
    "item_key",
    # Factory
    "create_store",
    # Implementations
    "DynamoDBKeyValueStore",
    "InMemoryKeyValueStore",
    "SqliteKeyValueStore",
]
