"""
Persisted key layout for the single-table design.

Every record lives under a partition key (PK) and a sort key (SK). The
layout is shared by all store backends and must stay byte-compatible with
data already written:

    U#<user>                         HEAD#VALUES
    U#<user>                         REV#VALUES#<iso_ts>#<rev_id>
    U#<user>#VALUES#<rev_id>         NODE#<node_id>
    U#<user>#VALUES#<rev_id>         EDGE#<parent_id>#<order:05>#<child_id>

    U#<user>#PLAN#<date>             HEAD
    U#<user>#PLAN#<date>             REV#<iso_ts>#<rev_id>
    U#<user>#PLAN#<date>#<rev_id>    TODO#<order:03>#A#<action_id>
    U#<user>#PLAN#<date>#<rev_id>    BLOCK#<start_iso>#<block_id>

Invariants:
    - Revision sort keys embed the timestamp before the id (chronological scans)
    - Edge sort keys keep one parent's children contiguous and order-sorted
    - Ids never contain '#'
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

NODE_PREFIX = "NODE#"
EDGE_PREFIX = "EDGE#"
TODO_PREFIX = "TODO#"
BLOCK_PREFIX = "BLOCK#"

EDGE_ORDER_WIDTH = 5
TODO_ORDER_WIDTH = 3

_EDGE_RE = re.compile(r"^EDGE#([^#]+)#(\d+)#(.+)$")
_NODE_RE = re.compile(r"^NODE#(.+)$")
_TODO_RE = re.compile(r"^TODO#(\d+)#A#(.+)$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ScopeKind(Enum):
    """Kinds of versioned repository."""

    VALUES = "VALUES"
    PLAN = "PLAN"


def user_pk(user_id: str) -> str:
    return f"U#{user_id}"


def values_head_sk() -> str:
    return "HEAD#VALUES"


def values_revision_sk(timestamp: str, rev_id: str) -> str:
    return f"REV#VALUES#{timestamp}#{rev_id}"


def values_snapshot_pk(user_id: str, rev_id: str) -> str:
    return f"U#{user_id}#VALUES#{rev_id}"


def node_sk(node_id: str) -> str:
    return f"{NODE_PREFIX}{node_id}"


def edge_sk(parent_node_id: str, order: int, child_node_id: str) -> str:
    """Sort key for an edge; order is zero-padded so it sorts numerically."""
    return f"{EDGE_PREFIX}{parent_node_id}#{order:0{EDGE_ORDER_WIDTH}d}#{child_node_id}"


def edge_prefix_for_parent(parent_node_id: str) -> str:
    return f"{EDGE_PREFIX}{parent_node_id}#"


def daily_plan_pk(user_id: str, date: str) -> str:
    return f"U#{user_id}#PLAN#{date}"


def daily_plan_head_sk() -> str:
    return "HEAD"


def daily_plan_revision_sk(timestamp: str, rev_id: str) -> str:
    return f"REV#{timestamp}#{rev_id}"


def daily_plan_snapshot_pk(user_id: str, date: str, rev_id: str) -> str:
    return f"U#{user_id}#PLAN#{date}#{rev_id}"


def todo_sk(order: int, action_id: str) -> str:
    return f"{TODO_PREFIX}{order:0{TODO_ORDER_WIDTH}d}#A#{action_id}"


def block_sk(start_time_iso: str, block_id: str) -> str:
    return f"{BLOCK_PREFIX}{start_time_iso}#{block_id}"


def parse_node_id(sk: str) -> str | None:
    match = _NODE_RE.match(sk)
    return match.group(1) if match else None


def parse_edge(sk: str) -> tuple[str, int, str] | None:
    """Split an edge sort key into (parent_id, order, child_id)."""
    match = _EDGE_RE.match(sk)
    if not match:
        return None
    return match.group(1), int(match.group(2)), match.group(3)


def parse_todo_action_id(sk: str) -> str | None:
    match = _TODO_RE.match(sk)
    return match.group(2) if match else None


def is_valid_date(value: str) -> bool:
    return bool(_DATE_RE.match(value))


def _check_key_part(name: str, value: str) -> None:
    if not value or "#" in value:
        raise ValueError(f"{name} must be non-empty and must not contain '#': {value!r}")


@dataclass(frozen=True)
class RepositoryScope:
    """Namespace of one versioned repository.

    A scope knows where its HEAD record, its commit log and its snapshot
    partitions live. It is the only thing the versioning layer needs to know
    about the key layout.

    Attributes:
        kind: VALUES (one per user) or PLAN (one per user and date)
        user_id: Owning user
        date: Plan date (YYYY-MM-DD) for PLAN scopes
    """

    kind: ScopeKind
    user_id: str
    date: str | None = None

    @classmethod
    def values(cls, user_id: str) -> RepositoryScope:
        _check_key_part("user_id", user_id)
        return cls(kind=ScopeKind.VALUES, user_id=user_id)

    @classmethod
    def daily_plan(cls, user_id: str, date: str) -> RepositoryScope:
        _check_key_part("user_id", user_id)
        if not is_valid_date(date):
            raise ValueError(f"date must be in YYYY-MM-DD format: {date!r}")
        return cls(kind=ScopeKind.PLAN, user_id=user_id, date=date)

    @property
    def head_pk(self) -> str:
        if self.kind is ScopeKind.VALUES:
            return user_pk(self.user_id)
        return daily_plan_pk(self.user_id, self.date or "")

    @property
    def head_sk(self) -> str:
        if self.kind is ScopeKind.VALUES:
            return values_head_sk()
        return daily_plan_head_sk()

    @property
    def revision_pk(self) -> str:
        # Revisions share the HEAD partition in both layouts
        return self.head_pk

    @property
    def revision_prefix(self) -> str:
        if self.kind is ScopeKind.VALUES:
            return "REV#VALUES#"
        return "REV#"

    def revision_sk(self, timestamp: str, rev_id: str) -> str:
        if self.kind is ScopeKind.VALUES:
            return values_revision_sk(timestamp, rev_id)
        return daily_plan_revision_sk(timestamp, rev_id)

    def snapshot_pk(self, rev_id: str) -> str:
        if self.kind is ScopeKind.VALUES:
            return values_snapshot_pk(self.user_id, rev_id)
        return daily_plan_snapshot_pk(self.user_id, self.date or "", rev_id)

    def __str__(self) -> str:
        if self.kind is ScopeKind.VALUES:
            return f"values:{self.user_id}"
        return f"plan:{self.user_id}:{self.date}"
