"""
PlanGraph application wiring and admin CLI.

This module provides:
- setup_logging(): JSON or text logging from configuration
- PlanGraph: builds the store, repository and services from ServerConfig
- PlanGraphCLI / main(): read-only inspection commands

Usage:
    plangraph log <user>                 # commit log, newest first
    plangraph snapshot <user> [--rev R]  # JSON dump of a snapshot
    plangraph tree <user>                # indented hierarchy
    plangraph check <user> [--rev R]     # integrity check, exit 1 on problems
    plangraph orphans <user> [--date D]  # revisions never made canonical
    plangraph plan <user> <date>         # daily plan as JSON

Invariants:
    - The CLI never writes; orphans are reported, not removed
    - Configuration comes from the environment only (see config.py)

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep JSON output stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional, Sequence, Tuple

import json_log_formatter

from .config import ServerConfig
from .daily import DailyPlanService
from .errors import PlanGraphError
from .store import KeyValueStore, create_store
from .values import ActionNode, NodeWithChildren, ValuesGraphService
from .versioning import VersionedRepository

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)


class PlanGraph:
    """Application container.

    Attributes:
        config: Configuration
        store: Key-value store backend
        repository: Versioned repository over the store
        values: Values-graph operations
        plans: Daily-plan operations

    Example:
        >>> app = PlanGraph(ServerConfig.from_env())
        >>> await app.start()
        >>> await app.values.create_driver("u1", "Health")
        >>> await app.stop()
    """

    def __init__(self, config: Optional[ServerConfig] = None, store: Optional[KeyValueStore] = None) -> None:
        self.config = config or ServerConfig.from_env()
        self.store = store or create_store(self.config)
        self.repository = VersionedRepository(self.store, self.config.repository)
        self.values = ValuesGraphService(
            self.repository, max_title_length=self.config.repository.max_title_length
        )
        self.plans = DailyPlanService(self.repository, self.values)

    async def start(self) -> None:
        """Connect the store."""
        await self.store.connect()
        logger.info(
            "PlanGraph started", extra={"store_backend": self.config.store_backend.value}
        )

    async def stop(self) -> None:
        await self.store.close()
        logger.info("PlanGraph stopped")


def _render_tree(trees: List[NodeWithChildren]) -> List[str]:
    lines: List[str] = []

    def walk(entry: NodeWithChildren, depth: int) -> None:
        node = entry.node
        label = f"{'  ' * depth}{node.title} [{node.kind.value} {node.id}]"
        if isinstance(node, ActionNode):
            label += f" {node.state}"
        if node.archived:
            label += " (archived)"
        lines.append(label)
        for child in entry.children:
            walk(child, depth + 1)

    for tree in trees:
        walk(tree, 0)
    return lines


class PlanGraphCLI:
    """Read-only inspection of a user's repositories.

    Each command returns (output, exit_code) so it can be tested without a
    subprocess.

    Example:
        >>> cli = PlanGraphCLI(app.values, app.plans)
        >>> output, code = await cli.check("u1")
    """

    def __init__(self, values: ValuesGraphService, plans: DailyPlanService) -> None:
        self.values = values
        self.plans = plans

    async def log(self, user_id: str, limit: Optional[int] = None) -> Tuple[str, int]:
        """List the commit log, newest first, marking orphaned revisions."""
        orphaned = {r.rev_id for r in await self.values.orphans(user_id)}
        lines = []
        async for revision in self.values.list_history(user_id):
            marker = " (orphaned)" if revision.rev_id in orphaned else ""
            lines.append(
                f"{revision.timestamp} {revision.rev_id} [{revision.source.value}] "
                f"{revision.message}{marker}"
            )
            if limit is not None and len(lines) >= limit:
                break
        return ("\n".join(lines) if lines else "No revisions"), 0

    async def snapshot(self, user_id: str, rev_id: Optional[str] = None) -> Tuple[str, int]:
        if rev_id is None:
            snapshot = await self.values.get_current_snapshot(user_id)
        else:
            snapshot = await self.values.get_snapshot_at(user_id, rev_id)
        return json.dumps(snapshot.to_dict(), indent=2, sort_keys=True), 0

    async def tree(self, user_id: str) -> Tuple[str, int]:
        lines = _render_tree(await self.values.get_tree(user_id))
        return ("\n".join(lines) if lines else "No drivers"), 0

    async def check(self, user_id: str, rev_id: Optional[str] = None) -> Tuple[str, int]:
        """Run the integrity check; exit code 1 when problems are found."""
        report = await self.values.check_integrity(user_id, rev_id)
        if report.ok:
            return "Snapshot is consistent", 0
        lines = [f"Integrity check FAILED with {len(report.problems)} problem(s):"]
        lines.extend(f"  - {problem}" for problem in report.problems)
        return "\n".join(lines), 1

    async def orphans(self, user_id: str, date: Optional[str] = None) -> Tuple[str, int]:
        if date is None:
            orphaned = await self.values.orphans(user_id)
        else:
            orphaned = await self.plans.orphans(user_id, date)
        if not orphaned:
            return "No orphaned revisions", 0
        lines = [f"Found {len(orphaned)} orphaned revision(s):"]
        lines.extend(f"  {r.timestamp} {r.rev_id} {r.message}" for r in orphaned)
        return "\n".join(lines), 0

    async def plan(self, user_id: str, date: str) -> Tuple[str, int]:
        plan = await self.plans.get_daily_plan(user_id, date)
        return json.dumps(plan.to_dict(), indent=2, sort_keys=True), 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PlanGraph repository inspection tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # log command
    log_parser = subparsers.add_parser("log", help="Show the commit log")
    log_parser.add_argument("user", help="User id")
    log_parser.add_argument("--limit", "-n", type=int, help="Maximum revisions to show")

    # snapshot command
    snapshot_parser = subparsers.add_parser("snapshot", help="Dump a snapshot as JSON")
    snapshot_parser.add_argument("user", help="User id")
    snapshot_parser.add_argument("--rev", help="Revision id (default: HEAD)")

    # tree command
    tree_parser = subparsers.add_parser("tree", help="Show the driver hierarchy")
    tree_parser.add_argument("user", help="User id")

    # check command
    check_parser = subparsers.add_parser("check", help="Check snapshot integrity")
    check_parser.add_argument("user", help="User id")
    check_parser.add_argument("--rev", help="Revision id (default: HEAD)")

    # orphans command
    orphans_parser = subparsers.add_parser("orphans", help="List revisions never made HEAD")
    orphans_parser.add_argument("user", help="User id")
    orphans_parser.add_argument("--date", help="Inspect a daily plan instead of the values graph")

    # plan command
    plan_parser = subparsers.add_parser("plan", help="Dump a daily plan as JSON")
    plan_parser.add_argument("user", help="User id")
    plan_parser.add_argument("date", help="Date (YYYY-MM-DD)")

    return parser


async def run_command(cli: PlanGraphCLI, args: argparse.Namespace) -> Tuple[str, int]:
    """Dispatch parsed arguments to a CLI command."""
    if args.command == "log":
        return await cli.log(args.user, args.limit)
    elif args.command == "snapshot":
        return await cli.snapshot(args.user, args.rev)
    elif args.command == "tree":
        return await cli.tree(args.user)
    elif args.command == "check":
        return await cli.check(args.user, args.rev)
    elif args.command == "orphans":
        return await cli.orphans(args.user, args.date)
    elif args.command == "plan":
        return await cli.plan(args.user, args.date)
    raise ValueError(f"Unknown command: {args.command}")


async def _run(config: ServerConfig, args: argparse.Namespace) -> int:
    app = PlanGraph(config)
    await app.start()
    try:
        output, code = await run_command(PlanGraphCLI(app.values, app.plans), args)
    except PlanGraphError as e:
        logger.error(f"Command failed: {e.message}", extra={"error_code": e.code})
        print(f"Error: {e.message}", file=sys.stderr)
        return 2
    finally:
        await app.stop()
    print(output)
    return code


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()
    sys.exit(asyncio.run(_run(config, args)))


if __name__ == "__main__":
    main()
