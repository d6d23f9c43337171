"""
Integration tests for the inspection CLI and application wiring.
"""

import json
import logging

import json_log_formatter
import pytest

from planner.plangraph.config import ObservabilityConfig, ServerConfig
from planner.plangraph.errors import StoreUnavailableError
from planner.plangraph.main import PlanGraphCLI, build_parser, run_command, setup_logging
from planner.plangraph.values import Edge, NodeKind

USER = "user-1"
DAY = "2024-05-01"


@pytest.fixture
def cli(app):
    return PlanGraphCLI(app.values, app.plans)


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


class TestCommands:
    """PlanGraphCLI commands."""

    @pytest.mark.asyncio
    async def test_empty_user(self, cli):
        assert await cli.log(USER) == ("No revisions", 0)
        assert await cli.tree(USER) == ("No drivers", 0)
        assert await cli.orphans(USER) == ("No orphaned revisions", 0)
        assert await cli.check(USER) == ("Snapshot is consistent", 0)

    @pytest.mark.asyncio
    async def test_log_newest_first(self, app, cli):
        driver = await app.values.create_driver(USER, "Health")
        await app.values.create_action(USER, driver.id, "Run")

        output, code = await cli.log(USER)
        limited, _ = await cli.log(USER, limit=1)

        lines = output.splitlines()
        assert code == 0
        assert "Added action: Run" in lines[0]
        assert "[daily_update]" in lines[0]
        assert "Added driver: Health" in lines[1]
        assert limited == lines[0]

    @pytest.mark.asyncio
    async def test_log_marks_orphans(self, app, cli, store):
        await app.values.create_driver(USER, "Health")
        store.inject_failure(StoreUnavailableError("down"), operation="batch_put")
        with pytest.raises(StoreUnavailableError):
            await app.values.create_driver(USER, "Work")

        output, _ = await cli.log(USER)
        orphans, _ = await cli.orphans(USER)

        assert output.splitlines()[0].endswith("(orphaned)")
        assert orphans.startswith("Found 1 orphaned revision(s):")
        assert "Added driver: Work" in orphans

    @pytest.mark.asyncio
    async def test_tree(self, app, cli):
        driver = await app.values.create_driver(USER, "Health")
        milestone = await app.values.create_milestone(USER, driver.id, "10k")
        await app.values.create_action(USER, driver.id, "Run", parent_milestone_id=milestone.id)

        output, _ = await cli.tree(USER)

        lines = output.splitlines()
        assert lines[0].startswith("Health [DRIVER")
        assert lines[1].startswith("  10k [MILESTONE")
        assert lines[2].startswith("    Run [ACTION")
        assert lines[2].endswith("planned")

    @pytest.mark.asyncio
    async def test_snapshot_json(self, app, cli):
        driver = await app.values.create_driver(USER, "Health")
        first_rev = (await app.values.get_current_snapshot(USER)).rev_id
        await app.values.create_action(USER, driver.id, "Run")

        head, _ = await cli.snapshot(USER)
        old, _ = await cli.snapshot(USER, first_rev)

        assert len(json.loads(head)["nodes"]) == 2
        assert json.loads(old)["revId"] == first_rev
        assert len(json.loads(old)["nodes"]) == 1

    @pytest.mark.asyncio
    async def test_check_reports_problems(self, app, cli, store):
        """A snapshot written behind the services' back fails the check."""
        driver = await app.values.create_driver(USER, "Health")
        rev_id = (await app.values.get_current_snapshot(USER)).rev_id
        bad_edge = Edge(driver.id, 3, "ghost", NodeKind.ACTION).to_item()
        bad_edge["PK"] = f"U#{USER}#VALUES#{rev_id}"
        await store.put(bad_edge)

        output, code = await cli.check(USER)

        assert code == 1
        assert output.startswith("Integrity check FAILED with")
        assert "child not found" in output

    @pytest.mark.asyncio
    async def test_plan_json(self, app, cli):
        driver = await app.values.create_driver(USER, "Health")
        action = await app.values.create_action(USER, driver.id, "Run")
        await app.plans.add_todo(USER, DAY, action.id, "urgent")

        output, code = await cli.plan(USER, DAY)

        data = json.loads(output)
        assert code == 0
        assert data["todos"] == [{"actionId": action.id, "order": 0, "classification": "urgent"}]


class TestParser:
    """build_parser() and run_command()."""

    def test_parse_commands(self):
        parser = build_parser()

        args = parser.parse_args(["log", USER, "-n", "5"])
        assert (args.command, args.user, args.limit) == ("log", USER, 5)

        args = parser.parse_args(["orphans", USER, "--date", DAY])
        assert args.date == DAY

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    @pytest.mark.asyncio
    async def test_run_command_dispatch(self, app, cli):
        await app.values.create_driver(USER, "Health")

        output, code = await run_command(cli, build_parser().parse_args(["tree", USER]))

        assert code == 0
        assert output.startswith("Health")


class TestSetupLogging:
    """setup_logging() formatter selection."""

    def test_json_format(self, restore_logging):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="DEBUG", log_format="json")))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("botocore").level == logging.WARNING

    def test_text_format(self, restore_logging):
        setup_logging(ServerConfig(observability=ObservabilityConfig(log_format="text")))

        formatter = logging.getLogger().handlers[0].formatter
        assert not isinstance(formatter, json_log_formatter.JSONFormatter)
