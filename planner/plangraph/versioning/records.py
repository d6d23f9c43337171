"""
Revision and HEAD records.

Both are plain dataclasses that convert to and from store items. Attribute
names on the wire (revId, revTs, headRevId, ...) are part of the persisted
format and match what the original deployment stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ..keys import RepositoryScope, ScopeKind


class RevisionSource(str, Enum):
    """Enumerate the workflows that create a revision."""

    WEEKLY_REVIEW = "weekly_review"
    DAILY_UPDATE = "daily_update"
    COMPLETION = "completion"


@dataclass(frozen=True)
class Revision:
    """An immutable commit-log entry.

    Attributes:
        rev_id: Unique revision token
        timestamp: Sortable ISO-8601 creation time
        parent_rev_id: Revision HEAD named when this one was computed
        parent_rev_ts: Timestamp of the parent (allows direct lookups)
        message: Human-readable description of the change
        source: Workflow that produced the change
        scope_kind: VALUES or PLAN
    """

    rev_id: str
    timestamp: str
    message: str
    source: RevisionSource
    scope_kind: ScopeKind
    parent_rev_id: Optional[str] = None
    parent_rev_ts: Optional[str] = None

    def to_item(self, scope: RepositoryScope) -> Dict[str, Any]:
        item: Dict[str, Any] = {
            "PK": scope.revision_pk,
            "SK": scope.revision_sk(self.timestamp, self.rev_id),
            "revId": self.rev_id,
            "revTs": self.timestamp,
            "message": self.message,
            "source": self.source.value,
            "scopeKind": self.scope_kind.value,
        }
        if self.parent_rev_id is not None:
            item["parentRevId"] = self.parent_rev_id
        if self.parent_rev_ts is not None:
            item["parentRevTs"] = self.parent_rev_ts
        return item

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> Revision:
        return cls(
            rev_id=item["revId"],
            timestamp=item["revTs"],
            message=item.get("message", ""),
            source=RevisionSource(item["source"]),
            scope_kind=ScopeKind(item.get("scopeKind", ScopeKind.VALUES.value)),
            parent_rev_id=item.get("parentRevId"),
            parent_rev_ts=item.get("parentRevTs"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revId": self.rev_id,
            "timestamp": self.timestamp,
            "parentRevId": self.parent_rev_id,
            "message": self.message,
            "source": self.source.value,
        }


@dataclass(frozen=True)
class Head:
    """The canonical revision of a scope."""

    head_rev_id: str
    head_rev_ts: str
    updated_at: str

    def to_item(self, scope: RepositoryScope) -> Dict[str, Any]:
        return {
            "PK": scope.head_pk,
            "SK": scope.head_sk,
            "headRevId": self.head_rev_id,
            "headRevTs": self.head_rev_ts,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> Head:
        return cls(
            head_rev_id=item["headRevId"],
            head_rev_ts=item["headRevTs"],
            updated_at=item.get("updatedAt", item["headRevTs"]),
        )
