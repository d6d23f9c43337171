"""
Versioned repository.

Runs the commit protocol shared by every mutation of every scope:

    read HEAD -> read snapshot -> mutate -> append revision
      -> materialize snapshot -> advance HEAD (CAS)

A lost CAS restarts the whole sequence from "read HEAD", so the mutation is
always recomputed against the winner's snapshot.

Invariants:
    - mutate() runs before anything is written; its exceptions leave no trace
    - HEAD names only revisions whose snapshot write completed
    - A failure after append leaves an orphaned revision, never a broken HEAD
    - Attempts are bounded by RepositoryConfig.max_commit_attempts

How to change safely:
    - Never write HEAD outside HeadPointer.advance()
    - mutate() must be free of side effects; it may run several times
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, List, Optional, Set, TypeVar

from ..config import RepositoryConfig
from ..errors import ConcurrencyConflictError
from ..keys import RepositoryScope
from ..store.base import Item, KeyValueStore
from .commit_log import CommitLog
from .head import HeadPointer
from .materializer import SnapshotMaterializer
from .records import Head, Revision, RevisionSource
from .revision_ids import RevisionIdentifier, new_revision, utc_now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ScopeState:
    """What a mutation sees: the HEAD it started from and its snapshot."""

    scope: RepositoryScope
    head: Optional[Head]
    records: List[Item] = field(default_factory=list)
    next_revision: Optional[RevisionIdentifier] = None

    @property
    def now(self) -> str:
        """Timestamp of the revision being computed (wall clock outside a commit)."""
        if self.next_revision is not None:
            return self.next_revision.timestamp
        return utc_now_iso()

    @property
    def is_empty(self) -> bool:
        return self.head is None


@dataclass
class Mutation(Generic[T]):
    """Outcome of a mutate callback.

    Attributes:
        records: Complete record set of the next snapshot
        message: Commit message
        source: Workflow creating the revision
        result: Value handed back to the caller (e.g. the created node)
    """

    records: List[Item]
    message: str
    source: RevisionSource
    result: T = None  # type: ignore[assignment]


@dataclass
class CommitResult(Generic[T]):
    """A committed mutation."""

    revision: Revision
    head: Head
    result: T
    attempts: int


MutateFn = Callable[[ScopeState], Awaitable[Mutation[Any]]]


class VersionedRepository:
    """Commit protocol over a KeyValueStore.

    Example:
        >>> repo = VersionedRepository(store)
        >>> async def add(state):
        ...     return Mutation(state.records + [record], "add", RevisionSource.WEEKLY_REVIEW)
        >>> await repo.commit(RepositoryScope.values("u1"), add)
    """

    def __init__(self, store: KeyValueStore, config: Optional[RepositoryConfig] = None) -> None:
        self.store = store
        self.config = config or RepositoryConfig()
        self.commit_log = CommitLog(store)
        self.head_pointer = HeadPointer(store)
        self.materializer = SnapshotMaterializer(store, self.config.snapshot_batch_size)

    async def read_head(self, scope: RepositoryScope) -> Optional[Head]:
        return await self.head_pointer.read(scope)

    async def read_state(self, scope: RepositoryScope) -> ScopeState:
        """Read HEAD and the snapshot it names (empty when there is no HEAD)."""
        head = await self.head_pointer.read(scope)
        if head is None:
            return ScopeState(scope=scope, head=None)
        records = await self.materializer.read(scope, head.head_rev_id)
        return ScopeState(scope=scope, head=head, records=records)

    async def read_snapshot(self, scope: RepositoryScope, rev_id: Optional[str] = None) -> List[Item]:
        """Load a snapshot; the HEAD snapshot unless rev_id is given."""
        if rev_id is None:
            return (await self.read_state(scope)).records
        return await self.materializer.read(scope, rev_id)

    async def commit(self, scope: RepositoryScope, mutate: MutateFn) -> CommitResult[Any]:
        """Apply a mutation as a new revision and make it HEAD.

        Args:
            scope: Repository scope
            mutate: Async callback computing the next snapshot from the
                current ScopeState. Called again after every lost race.

        Returns:
            CommitResult with the revision, the new HEAD and mutate's result

        Raises:
            ValidationError, ReferenceNotFoundError, InvalidStateTransitionError:
                Propagated from mutate(); nothing was written
            ConcurrencyConflictError: If every attempt lost the HEAD race
            StoreUnavailableError: On backend failure
        """
        attempts = self.config.max_commit_attempts
        for attempt in range(1, attempts + 1):
            state = await self.read_state(scope)
            identifier = new_revision(not_before=state.head.head_rev_ts if state.head else None)
            state.next_revision = identifier
            mutation = await mutate(state)
            expected = state.head.head_rev_id if state.head else None

            revision = await self.commit_log.append(
                scope, identifier, mutation.message, mutation.source, parent=state.head
            )

            try:
                await self.materializer.write(scope, revision.rev_id, mutation.records)
                head = await self.head_pointer.advance(scope, revision, expected)
            except ConcurrencyConflictError:
                logger.warning(
                    "HEAD moved during commit, retrying",
                    extra={
                        "scope": str(scope),
                        "orphaned_rev_id": revision.rev_id,
                        "attempt": attempt,
                        "max_attempts": attempts,
                    },
                )
                continue
            except Exception:
                logger.error(
                    "Commit failed after revision append; revision is orphaned",
                    extra={"scope": str(scope), "orphaned_rev_id": revision.rev_id},
                    exc_info=True,
                )
                raise

            logger.info(
                "Committed revision",
                extra={
                    "scope": str(scope),
                    "rev_id": revision.rev_id,
                    "parent_rev_id": expected,
                    "source": revision.source.value,
                    "records": len(mutation.records),
                    "attempt": attempt,
                },
            )
            return CommitResult(revision=revision, head=head, result=mutation.result, attempts=attempt)

        raise ConcurrencyConflictError(
            f"Gave up committing to {scope} after {attempts} attempts",
            scope=str(scope),
            attempts=attempts,
        )

    def history(
        self,
        scope: RepositoryScope,
        ascending: bool = False,
        limit: Optional[int] = None,
    ) -> AsyncIterator[Revision]:
        """Every revision in the commit log, orphans included."""
        return self.commit_log.list_history(scope, ascending=ascending, limit=limit)

    async def lineage(self, scope: RepositoryScope) -> List[Revision]:
        """Canonical revisions, HEAD first."""
        head = await self.head_pointer.read(scope)
        if head is None:
            return []
        return [revision async for revision in self.commit_log.lineage(scope, head)]

    async def orphans(self, scope: RepositoryScope) -> List[Revision]:
        """Revisions in the log that HEAD's lineage never reached, oldest first."""
        canonical: Set[str] = {revision.rev_id for revision in await self.lineage(scope)}
        return [
            revision
            async for revision in self.commit_log.list_history(scope, ascending=True)
            if revision.rev_id not in canonical
        ]
