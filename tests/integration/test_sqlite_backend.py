"""
Integration tests running the services over the SQLite store.
"""

import asyncio

import pytest

from planner.plangraph.errors import ReferenceNotFoundError

USER = "user-1"
DAY = "2024-05-01"


class TestSqliteBackend:
    """The same flows as the in-memory tests, persisted to a file."""

    @pytest.mark.asyncio
    async def test_build_and_plan(self, sqlite_app):
        values = sqlite_app.values
        driver = await values.create_driver(USER, "Health")
        milestone = await values.create_milestone(USER, driver.id, "10k")
        action = await values.create_action(USER, driver.id, "Run", parent_milestone_id=milestone.id)
        await sqlite_app.plans.add_todo(USER, DAY, action.id, "urgent", estimated_pomodoros=2)

        snapshot = await values.get_current_snapshot(USER)
        plan = await sqlite_app.plans.get_daily_plan(USER, DAY)

        assert set(snapshot.nodes) == {driver.id, milestone.id, action.id}
        assert (await values.check_integrity(USER)).ok
        assert plan.todos[0].action_id == action.id
        assert plan.todos[0].estimated_pomodoros == 2

    @pytest.mark.asyncio
    async def test_history_and_old_snapshots(self, sqlite_app):
        values = sqlite_app.values
        driver = await values.create_driver(USER, "Health")
        await values.create_action(USER, driver.id, "Run")

        history = [r async for r in values.list_history(USER, ascending=True)]
        first = await values.get_snapshot_at(USER, history[0].rev_id)

        assert len(history) == 2
        assert history[1].parent_rev_id == history[0].rev_id
        assert list(first.nodes) == [driver.id]
        assert await values.orphans(USER) == []

    @pytest.mark.asyncio
    async def test_failed_reference_writes_nothing(self, sqlite_app):
        with pytest.raises(ReferenceNotFoundError):
            await sqlite_app.values.create_action(USER, "no-such-driver", "Run")

        assert [r async for r in sqlite_app.values.list_history(USER)] == []

    @pytest.mark.asyncio
    async def test_concurrent_writers(self, sqlite_app):
        values = sqlite_app.values
        driver = await values.create_driver(USER, "Home")

        await asyncio.gather(*(values.create_action(USER, driver.id, f"Task {i}") for i in range(3)))

        edges = (await values.get_current_snapshot(USER)).edges_under(driver.id)
        assert [e.order for e in edges] == [0, 1, 2]
