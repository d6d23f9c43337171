"""
Append-only commit log.

Each scope keeps its revisions in its own partition under sort keys that
start with the revision timestamp, so a forward partition scan is a
chronological history and a reverse scan is newest-first.

Invariants:
    - append() never overwrites (attribute_not_exists condition)
    - There is no delete or update operation
    - list_history() includes revisions abandoned by lost HEAD races;
      lineage() only follows parent links from a given revision
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from ..errors import ConditionFailedError, StoreError
from ..keys import RepositoryScope
from ..store.base import KeyValueStore, PutCondition
from .records import Head, Revision, RevisionSource
from .revision_ids import RevisionIdentifier

logger = logging.getLogger(__name__)


class CommitLog:
    """Revision records of every scope, stored in a KeyValueStore."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    async def append(
        self,
        scope: RepositoryScope,
        identifier: RevisionIdentifier,
        message: str,
        source: RevisionSource,
        parent: Head | None = None,
    ) -> Revision:
        """Write one revision record.

        Args:
            scope: Repository scope
            identifier: Fresh revision id and timestamp
            message: Commit message
            source: Workflow creating the revision
            parent: HEAD observed when the change was computed

        Returns:
            The stored Revision

        Raises:
            StoreError: If a record with the same key already exists
            StoreUnavailableError: On backend failure
        """
        revision = Revision(
            rev_id=identifier.rev_id,
            timestamp=identifier.timestamp,
            message=message,
            source=source,
            scope_kind=scope.kind,
            parent_rev_id=parent.head_rev_id if parent else None,
            parent_rev_ts=parent.head_rev_ts if parent else None,
        )

        try:
            await self.store.put(revision.to_item(scope), PutCondition.not_exists())
        except ConditionFailedError as e:
            raise StoreError(f"Revision {revision.rev_id} already recorded in {scope}") from e

        logger.debug(
            "Revision appended",
            extra={"scope": str(scope), "rev_id": revision.rev_id, "parent": revision.parent_rev_id},
        )
        return revision

    async def get(self, scope: RepositoryScope, rev_id: str, timestamp: str) -> Revision | None:
        item = await self.store.get(scope.revision_pk, scope.revision_sk(timestamp, rev_id))
        return Revision.from_item(item) if item else None

    async def find(self, scope: RepositoryScope, rev_id: str) -> Revision | None:
        """Look a revision up by id alone (scans the log)."""
        async for revision in self.list_history(scope, ascending=False):
            if revision.rev_id == rev_id:
                return revision
        return None

    async def list_history(
        self,
        scope: RepositoryScope,
        ascending: bool = False,
        limit: int | None = None,
    ) -> AsyncIterator[Revision]:
        """Yield every revision of a scope in sort-key order.

        Args:
            scope: Repository scope
            ascending: Oldest first when True, newest first otherwise
            limit: Maximum revisions to yield
        """
        async for item in self.store.query(
            scope.revision_pk,
            scope.revision_prefix,
            ascending=ascending,
            limit=limit,
        ):
            yield Revision.from_item(item)

    async def lineage(self, scope: RepositoryScope, start: Head | Revision) -> AsyncIterator[Revision]:
        """Walk parent links from a revision back to the root.

        Yields:
            The starting revision, then each ancestor, newest first
        """
        if isinstance(start, Head):
            rev_id, timestamp = start.head_rev_id, start.head_rev_ts
        else:
            rev_id, timestamp = start.rev_id, start.timestamp

        while rev_id is not None:
            if timestamp is not None:
                revision = await self.get(scope, rev_id, timestamp)
            else:
                # Records without parentRevTs are resolved by scanning the log
                revision = await self.find(scope, rev_id)
            if revision is None:
                logger.error(
                    "Lineage broken: revision record missing",
                    extra={"scope": str(scope), "rev_id": rev_id},
                )
                return
            yield revision
            rev_id, timestamp = revision.parent_rev_id, revision.parent_rev_ts
