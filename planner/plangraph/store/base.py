"""
Base protocol and types for the key-value store abstraction.

The versioned repository only needs a small slice of a key-value store:
items addressed by (PK, SK), conditional puts, and ordered prefix queries
within one partition. This module defines that contract.

Invariants:
    - A single put is atomic; there are no multi-item transactions
    - query() yields items of one partition in lexicographic SK order
    - A failed conditional put raises ConditionFailedError and writes nothing
    - Transient backend failures surface as StoreUnavailableError

How to change safely:
    - Protocol changes require updating all implementations
    - Keep item values JSON-compatible (str, int, float, bool, None, list, dict)
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Dict,
    Iterable,
    Optional,
    Protocol,
    Tuple,
    runtime_checkable,
)
import logging

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

Item = Dict[str, Any]

PK = "PK"
SK = "SK"


def item_key(item: Item) -> Tuple[str, str]:
    """Return (PK, SK) of an item, rejecting items without both."""
    try:
        return item[PK], item[SK]
    except KeyError as e:
        raise ValueError(f"Item is missing key attribute {e}") from e


@dataclass(frozen=True)
class PutCondition:
    """Precondition for a conditional put.

    Either the item must not exist yet, or it must exist with the given
    attribute values. Mirrors DynamoDB's attribute_not_exists(PK) and
    "#attr = :value" condition expressions.

    Example:
        >>> PutCondition.not_exists()
        >>> PutCondition.equals(headRevId="9b7c...")
    """

    must_not_exist: bool = False
    expected: Tuple[Tuple[str, Any], ...] = ()

    @classmethod
    def not_exists(cls) -> PutCondition:
        return cls(must_not_exist=True)

    @classmethod
    def equals(cls, **expected: Any) -> PutCondition:
        if not expected:
            raise ValueError("equals() needs at least one attribute")
        return cls(expected=tuple(sorted(expected.items())))

    def is_satisfied_by(self, current: Optional[Item]) -> bool:
        """Evaluate the condition against the currently stored item."""
        if self.must_not_exist:
            return current is None
        if current is None:
            return False
        return all(current.get(name) == value for name, value in self.expected)

    def __str__(self) -> str:
        if self.must_not_exist:
            return "attribute_not_exists(PK)"
        return " AND ".join(f"{name} = {value!r}" for name, value in self.expected)


@runtime_checkable
class KeyValueStore(Protocol):
    """Protocol for key-value store backends.

    Durability contract:
        - put()/batch_put() return only after the backend acknowledged the write

    Ordering contract:
        - query() returns items sorted by SK within a single PK

    Example:
        >>> store = InMemoryKeyValueStore()
        >>> await store.connect()
        >>> await store.put({"PK": "U#1", "SK": "HEAD#VALUES", "headRevId": "r1"})
        >>> async for item in store.query("U#1", "REV#"):
        ...     print(item["SK"])
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            StoreUnavailableError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...

    @abstractmethod
    async def get(self, pk: str, sk: str) -> Optional[Item]:
        """Fetch one item, or None if absent."""
        ...

    @abstractmethod
    async def put(self, item: Item, condition: Optional[PutCondition] = None) -> None:
        """Write one item, replacing any existing item with the same key.

        Args:
            item: Item including PK and SK attributes
            condition: Optional precondition on the stored item

        Raises:
            ConditionFailedError: If the condition does not hold
            StoreUnavailableError: On backend failure
        """
        ...

    @abstractmethod
    async def batch_put(self, items: Iterable[Item]) -> None:
        """Unconditionally write many items. Not atomic across items."""
        ...

    @abstractmethod
    def query(
        self,
        pk: str,
        sk_prefix: str = "",
        ascending: bool = True,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Item]:
        """Iterate over the items of one partition whose SK starts with a prefix.

        Args:
            pk: Partition key
            sk_prefix: Sort key prefix ("" matches everything)
            ascending: Lexicographic SK order when True, reverse otherwise
            limit: Maximum number of items to yield

        Yields:
            Items lazily, fetched page by page where the backend pages
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_store(config: "ServerConfig") -> KeyValueStore:
    """Factory function to create a store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate KeyValueStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .dynamodb import DynamoDBKeyValueStore
    from .memory import InMemoryKeyValueStore
    from .sqlite import SqliteKeyValueStore

    if config.store_backend == StoreBackend.MEMORY:
        return InMemoryKeyValueStore()
    elif config.store_backend == StoreBackend.SQLITE:
        return SqliteKeyValueStore(config.sqlite)
    elif config.store_backend == StoreBackend.DYNAMODB:
        return DynamoDBKeyValueStore(config.dynamodb)
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
