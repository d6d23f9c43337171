"""
Snapshot materializer.

Every revision owns a partition holding a full copy of the scope's live
records. Writing copies each record under that partition; reading needs
nothing but the partition.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from ..config import DYNAMODB_MAX_BATCH
from ..keys import RepositoryScope
from ..store.base import PK, SK, Item, KeyValueStore

logger = logging.getLogger(__name__)


class SnapshotMaterializer:
    """Writes and reads revision-scoped snapshot partitions.

    Attributes:
        store: Backing key-value store
        batch_size: Records per batch_put call
    """

    def __init__(self, store: KeyValueStore, batch_size: int = DYNAMODB_MAX_BATCH) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.batch_size = batch_size

    async def write(self, scope: RepositoryScope, rev_id: str, records: Iterable[Item]) -> int:
        """Persist a snapshot under the revision's partition.

        Records must carry an SK; their PK is replaced by the snapshot
        partition key.

        Returns:
            Number of records written

        Raises:
            ValueError: If a record has no SK
            StoreUnavailableError: On backend failure (partition left partial)
        """
        pk = scope.snapshot_pk(rev_id)
        items: List[Item] = []
        for record in records:
            if SK not in record:
                raise ValueError(f"Snapshot record without {SK}: {record!r}")
            items.append({**record, PK: pk})

        for start in range(0, len(items), self.batch_size):
            await self.store.batch_put(items[start : start + self.batch_size])

        logger.debug(
            "Snapshot materialized",
            extra={"scope": str(scope), "rev_id": rev_id, "records": len(items)},
        )
        return len(items)

    async def read(self, scope: RepositoryScope, rev_id: str, prefix: str = "") -> List[Item]:
        """Load every record of a revision, in SK order."""
        return [item async for item in self.store.query(scope.snapshot_pk(rev_id), prefix)]
