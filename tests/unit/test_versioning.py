"""
Unit tests for the versioning core.

Tests cover:
- Revision id / timestamp generation
- Commit log append, history and lineage
- HEAD compare-and-swap
- Snapshot materialization
- The commit protocol and its retry loop
"""

import re

import pytest

from planner.plangraph.config import RepositoryConfig
from planner.plangraph.errors import (
    ConcurrencyConflictError,
    StoreError,
    StoreUnavailableError,
    ValidationError,
)
from planner.plangraph.keys import RepositoryScope, ScopeKind
from planner.plangraph.store import InMemoryKeyValueStore
from planner.plangraph.versioning import (
    CommitLog,
    HeadPointer,
    Mutation,
    RevisionSource,
    SnapshotMaterializer,
    VersionedRepository,
    new_revision,
)
from planner.plangraph.versioning.revision_ids import RevisionIdentifier, parse_timestamp

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")


@pytest.fixture
async def store():
    store = InMemoryKeyValueStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def scope():
    return RepositoryScope.values("u1")


class TestRevisionIds:
    """Tests for new_revision()."""

    def test_format(self):
        ident = new_revision()

        assert TIMESTAMP_RE.match(ident.timestamp)
        assert re.match(r"^[0-9a-f-]{36}$", ident.rev_id)

    def test_unique(self):
        assert len({new_revision().rev_id for _ in range(100)}) == 100

    def test_not_before_forces_later_timestamp(self):
        """A parent stamped in the future still sorts before its child."""
        parent = "2999-01-01T00:00:00.000Z"

        child = new_revision(not_before=parent)

        assert child.timestamp == "2999-01-01T00:00:00.001Z"
        assert child.timestamp > parent

    def test_parse_round_trip(self):
        ident = new_revision()

        assert parse_timestamp(ident.timestamp).tzinfo is not None


class TestCommitLog:
    """Tests for CommitLog."""

    @pytest.mark.asyncio
    async def test_append_and_history(self, store, scope):
        log = CommitLog(store)
        first = await log.append(
            scope, RevisionIdentifier("r1", "2024-01-01T00:00:00.000Z"), "one", RevisionSource.WEEKLY_REVIEW
        )
        await log.append(
            scope, RevisionIdentifier("r2", "2024-01-02T00:00:00.000Z"), "two", RevisionSource.DAILY_UPDATE
        )

        newest_first = [r.rev_id async for r in log.list_history(scope)]
        oldest_first = [r.rev_id async for r in log.list_history(scope, ascending=True)]

        assert newest_first == ["r2", "r1"]
        assert oldest_first == ["r1", "r2"]
        assert first.scope_kind is ScopeKind.VALUES
        assert first.parent_rev_id is None

    @pytest.mark.asyncio
    async def test_append_never_overwrites(self, store, scope):
        log = CommitLog(store)
        ident = RevisionIdentifier("r1", "2024-01-01T00:00:00.000Z")
        await log.append(scope, ident, "one", RevisionSource.WEEKLY_REVIEW)

        with pytest.raises(StoreError):
            await log.append(scope, ident, "again", RevisionSource.WEEKLY_REVIEW)

        assert (await log.get(scope, "r1", ident.timestamp)).message == "one"

    @pytest.mark.asyncio
    async def test_history_ignores_head_record(self, store, scope):
        log = CommitLog(store)
        await store.put({"PK": scope.head_pk, "SK": scope.head_sk, "headRevId": "r1", "headRevTs": "t"})

        assert [r async for r in log.list_history(scope)] == []

    @pytest.mark.asyncio
    async def test_find_by_id(self, store, scope):
        log = CommitLog(store)
        await log.append(scope, RevisionIdentifier("r1", "2024-01-01T00:00:00.000Z"), "one", RevisionSource.WEEKLY_REVIEW)

        assert (await log.find(scope, "r1")).message == "one"
        assert await log.find(scope, "nope") is None

    @pytest.mark.asyncio
    async def test_lineage_without_parent_timestamps(self, store, scope):
        """Revision records carrying only parentRevId still chain to the root."""
        for rev_id, ts, parent in [
            ("r1", "2024-01-01T00:00:00.000Z", None),
            ("r2", "2024-01-02T00:00:00.000Z", "r1"),
            ("r3", "2024-01-03T00:00:00.000Z", "r2"),
        ]:
            item = {
                "PK": scope.revision_pk,
                "SK": scope.revision_sk(ts, rev_id),
                "revId": rev_id,
                "revTs": ts,
                "message": rev_id,
                "source": RevisionSource.WEEKLY_REVIEW.value,
            }
            if parent is not None:
                item["parentRevId"] = parent
            await store.put(item)
        await store.put(
            {"PK": scope.head_pk, "SK": scope.head_sk, "headRevId": "r3", "headRevTs": "2024-01-03T00:00:00.000Z"}
        )
        repo = VersionedRepository(store)

        lineage = [r.rev_id for r in await repo.lineage(scope)]

        assert lineage == ["r3", "r2", "r1"]
        assert await repo.orphans(scope) == []


class TestHeadPointer:
    """Tests for HeadPointer."""

    @pytest.mark.asyncio
    async def test_first_advance_requires_absence(self, store, scope):
        log, head = CommitLog(store), HeadPointer(store)
        rev = await log.append(scope, new_revision(), "one", RevisionSource.WEEKLY_REVIEW)

        assert await head.read(scope) is None
        await head.advance(scope, rev, expected_rev_id=None)

        current = await head.read(scope)
        assert current.head_rev_id == rev.rev_id
        assert current.head_rev_ts == rev.timestamp

        with pytest.raises(ConcurrencyConflictError):
            await head.advance(scope, rev, expected_rev_id=None)

    @pytest.mark.asyncio
    async def test_advance_requires_expected_head(self, store, scope):
        log, head = CommitLog(store), HeadPointer(store)
        r1 = await log.append(scope, new_revision(), "one", RevisionSource.WEEKLY_REVIEW)
        r2 = await log.append(scope, new_revision(), "two", RevisionSource.WEEKLY_REVIEW)
        await head.advance(scope, r1, None)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await head.advance(scope, r2, expected_rev_id="someone-else")
        await head.advance(scope, r2, expected_rev_id=r1.rev_id)

        assert exc_info.value.expected_rev_id == "someone-else"
        assert (await head.read(scope)).head_rev_id == r2.rev_id


class TestSnapshotMaterializer:
    """Tests for SnapshotMaterializer."""

    @pytest.mark.asyncio
    async def test_write_in_batches_and_read_back(self, store, scope):
        materializer = SnapshotMaterializer(store, batch_size=3)
        records = [{"SK": f"NODE#{i:02d}", "title": str(i)} for i in range(7)]

        written = await materializer.write(scope, "r1", records)
        read = await materializer.read(scope, "r1")

        assert written == 7
        assert [r["SK"] for r in read] == [r["SK"] for r in records]
        assert all(r["PK"] == "U#u1#VALUES#r1" for r in read)

    @pytest.mark.asyncio
    async def test_batches_respect_size(self, store, scope):
        store.inject_failure(StoreUnavailableError("boom"), operation="batch_put", after=2)
        materializer = SnapshotMaterializer(store, batch_size=3)

        with pytest.raises(StoreUnavailableError):
            await materializer.write(scope, "r1", [{"SK": f"NODE#{i}"} for i in range(9)])

        # two full batches landed before the failure
        assert len(store.partition("U#u1#VALUES#r1")) == 6

    @pytest.mark.asyncio
    async def test_prefix_read(self, store, scope):
        materializer = SnapshotMaterializer(store)
        await materializer.write(scope, "r1", [{"SK": "NODE#a"}, {"SK": "EDGE#a#00000#b"}])

        assert [r["SK"] for r in await materializer.read(scope, "r1", "EDGE#")] == ["EDGE#a#00000#b"]

    def test_rejects_zero_batch(self, store):
        with pytest.raises(ValueError):
            SnapshotMaterializer(store, batch_size=0)

    @pytest.mark.asyncio
    async def test_rejects_records_without_sort_key(self, store, scope):
        with pytest.raises(ValueError):
            await SnapshotMaterializer(store).write(scope, "r1", [{"title": "x"}])


async def append_record(state):
    """Mutation adding one record to whatever the snapshot holds."""
    records = state.records + [{"SK": f"NODE#{len(state.records)}"}]
    return Mutation(records, f"add {len(records)}", RevisionSource.WEEKLY_REVIEW, result=len(records))


class TestVersionedRepository:
    """Tests for VersionedRepository.commit() and its read helpers."""

    @pytest.mark.asyncio
    async def test_commit_chain(self, store, scope):
        repo = VersionedRepository(store)

        first = await repo.commit(scope, append_record)
        second = await repo.commit(scope, append_record)

        assert first.result == 1 and second.result == 2
        assert second.revision.parent_rev_id == first.revision.rev_id
        assert second.revision.parent_rev_ts == first.revision.timestamp
        assert (await repo.read_head(scope)).head_rev_id == second.revision.rev_id
        assert len(await repo.read_snapshot(scope)) == 2
        assert len(await repo.read_snapshot(scope, first.revision.rev_id)) == 1
        assert [r.rev_id for r in await repo.lineage(scope)] == [
            second.revision.rev_id,
            first.revision.rev_id,
        ]

    @pytest.mark.asyncio
    async def test_mutation_sees_commit_timestamp(self, store, scope):
        repo = VersionedRepository(store)

        async def stamp(state):
            return Mutation([{"SK": "NODE#a", "createdAt": state.now}], "stamp", RevisionSource.WEEKLY_REVIEW)

        committed = await repo.commit(scope, stamp)

        records = await repo.read_snapshot(scope)
        assert records[0]["createdAt"] == committed.revision.timestamp

    @pytest.mark.asyncio
    async def test_mutate_errors_write_nothing(self, store, scope):
        repo = VersionedRepository(store)

        async def reject(state):
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            await repo.commit(scope, reject)

        assert store.item_count() == 0

    @pytest.mark.asyncio
    async def test_retries_after_lost_race(self, store, scope):
        """A HEAD moved by someone else is detected and the mutation recomputed."""
        repo = VersionedRepository(store)
        calls = []

        async def racing(state):
            calls.append(state.head)
            if len(calls) == 1:
                # Another writer commits while this mutation is in flight
                await VersionedRepository(store).commit(scope, append_record)
            return await append_record(state)

        committed = await repo.commit(scope, racing)

        assert committed.attempts == 2
        assert calls[0] is None and calls[1] is not None
        assert len(await repo.read_snapshot(scope)) == 2
        assert len(await repo.orphans(scope)) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, store, scope):
        repo = VersionedRepository(store, RepositoryConfig(max_commit_attempts=2))

        async def always_loses(state):
            await VersionedRepository(store).commit(scope, append_record)
            return await append_record(state)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await repo.commit(scope, always_loses)

        assert exc_info.value.attempts == 2

    @pytest.mark.asyncio
    async def test_failed_materialization_leaves_orphan(self, store, scope):
        repo = VersionedRepository(store)
        await repo.commit(scope, append_record)
        head_before = await repo.read_head(scope)
        store.inject_failure(StoreUnavailableError("boom"), operation="batch_put")

        with pytest.raises(StoreUnavailableError):
            await repo.commit(scope, append_record)

        assert await repo.read_head(scope) == head_before
        orphans = await repo.orphans(scope)
        assert len(orphans) == 1
        assert orphans[0].parent_rev_id == head_before.head_rev_id

    @pytest.mark.asyncio
    async def test_history_includes_orphans(self, store, scope):
        repo = VersionedRepository(store)
        await repo.commit(scope, append_record)
        store.inject_failure(StoreUnavailableError("boom"), operation="batch_put")
        with pytest.raises(StoreUnavailableError):
            await repo.commit(scope, append_record)

        history = [r async for r in repo.history(scope)]

        assert len(history) == 2
        assert len(await repo.lineage(scope)) == 1
