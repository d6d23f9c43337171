"""
HEAD pointer.

One mutable record per scope naming the canonical revision. It is only ever
replaced through a compare-and-swap on the previously observed headRevId.

Invariants:
    - First advance requires the record to be absent
    - Later advances require headRevId == expected_rev_id
    - HEAD only moves after the revision's snapshot is fully written
"""

from __future__ import annotations

import logging

from ..errors import ConcurrencyConflictError, ConditionFailedError
from ..keys import RepositoryScope
from ..store.base import KeyValueStore, PutCondition
from .records import Head, Revision
from .revision_ids import utc_now_iso

logger = logging.getLogger(__name__)


class HeadPointer:
    """Reads and conditionally advances HEAD records."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def read(self, scope: RepositoryScope) -> Head | None:
        item = await self.store.get(scope.head_pk, scope.head_sk)
        return Head.from_item(item) if item else None

    async def advance(
        self,
        scope: RepositoryScope,
        revision: Revision,
        expected_rev_id: str | None,
    ) -> Head:
        """Point HEAD at a revision if nobody moved it in the meantime.

        Args:
            scope: Repository scope
            revision: Revision whose snapshot is fully materialized
            expected_rev_id: headRevId observed before the mutation, or None
                when the scope had no HEAD

        Returns:
            The new Head

        Raises:
            ConcurrencyConflictError: If HEAD no longer names expected_rev_id
            StoreUnavailableError: On backend failure
        """
        head = Head(
            head_rev_id=revision.rev_id,
            head_rev_ts=revision.timestamp,
            updated_at=utc_now_iso(),
        )
        if expected_rev_id is None:
            condition = PutCondition.not_exists()
        else:
            condition = PutCondition.equals(headRevId=expected_rev_id)

        try:
            await self.store.put(head.to_item(scope), condition)
        except ConditionFailedError as e:
            raise ConcurrencyConflictError(
                f"HEAD of {scope} moved while computing revision {revision.rev_id}",
                scope=str(scope),
                expected_rev_id=expected_rev_id,
            ) from e

        logger.debug(
            "HEAD advanced",
            extra={"scope": str(scope), "rev_id": revision.rev_id, "previous": expected_rev_id},
        )
        return head
