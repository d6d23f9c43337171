"""
Node and edge model of the values graph.

A values snapshot is a flat set of records: one per node (Driver, Milestone
or Action) and one per parent->child edge. Nodes are a closed tagged variant
selected by the "nodeType" attribute; edges reference nodes by id only.

Invariants:
    - Drivers are roots and never appear as an edge child
    - Milestones and Actions always carry driverId
    - Edge order is zero-based and dense per parent, in creation order
    - Archived nodes stay in the snapshot (archived=True, deletedAt set)

How to change safely:
    - New optional attributes must default to absent in from_item()
    - Never rename persisted attribute names (camelCase on the wire)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Type

from ..keys import EDGE_PREFIX, NODE_PREFIX, edge_sk, node_sk
from ..store.base import SK, Item


class NodeKind(str, Enum):
    """Kinds of node in the values graph."""

    DRIVER = "DRIVER"
    MILESTONE = "MILESTONE"
    ACTION = "ACTION"


@dataclass
class Node:
    """Attributes shared by every node kind.

    Attributes:
        id: Node id (UUID4)
        user_id: Owning user
        title: Trimmed title, 1-200 characters
        created_at: ISO-8601 creation time
        notes: Optional free text
        archived: Tombstone flag
        deleted_at: When the node was archived
        updated_at: When a field was last edited
    """

    KIND: ClassVar[NodeKind]

    id: str
    user_id: str
    title: str
    created_at: str
    notes: Optional[str] = None
    archived: bool = False
    deleted_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def kind(self) -> NodeKind:
        return self.KIND

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "nodeType": self.KIND.value,
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "createdAt": self.created_at,
            "archived": self.archived,
        }
        optional = {
            "notes": self.notes,
            "deletedAt": self.deleted_at,
            "updatedAt": self.updated_at,
        }
        optional.update(self._extra_attributes())
        data.update({k: v for k, v in optional.items() if v is not None})
        return data

    def to_item(self) -> Item:
        return {SK: node_sk(self.id), **self.to_dict()}

    def _extra_attributes(self) -> Dict[str, Any]:
        return {}

    @classmethod
    def _common_kwargs(cls, item: Item) -> Dict[str, Any]:
        return {
            "id": item["id"],
            "user_id": item.get("userId", ""),
            "title": item["title"],
            "created_at": item["createdAt"],
            "notes": item.get("notes"),
            "archived": bool(item.get("archived", False)),
            "deleted_at": item.get("deletedAt"),
            "updated_at": item.get("updatedAt"),
        }

    @classmethod
    def from_item(cls, item: Item) -> Node:
        return cls(**cls._common_kwargs(item))


@dataclass
class DriverNode(Node):
    """Top-level strategic intent."""

    KIND: ClassVar[NodeKind] = NodeKind.DRIVER


@dataclass
class MilestoneNode(Node):
    """Intermediate decomposition under a driver, optionally nested."""

    KIND: ClassVar[NodeKind] = NodeKind.MILESTONE

    driver_id: str = ""
    parent_milestone_id: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def parent_id(self) -> str:
        return self.parent_milestone_id or self.driver_id

    def _extra_attributes(self) -> Dict[str, Any]:
        return {
            "driverId": self.driver_id,
            "parentMilestoneId": self.parent_milestone_id,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_item(cls, item: Item) -> MilestoneNode:
        return cls(
            **cls._common_kwargs(item),
            driver_id=item["driverId"],
            parent_milestone_id=item.get("parentMilestoneId"),
            completed_at=item.get("completedAt"),
        )


@dataclass
class ActionNode(Node):
    """Leaf unit of executable work."""

    KIND: ClassVar[NodeKind] = NodeKind.ACTION

    driver_id: str = ""
    parent_milestone_id: Optional[str] = None
    estimated_minutes: Optional[int] = None
    trigger: Optional[str] = None
    state: str = "planned"
    completed_at: Optional[str] = None

    @property
    def parent_id(self) -> str:
        return self.parent_milestone_id or self.driver_id

    def _extra_attributes(self) -> Dict[str, Any]:
        return {
            "driverId": self.driver_id,
            "parentMilestoneId": self.parent_milestone_id,
            "estimatedMinutes": self.estimated_minutes,
            "trigger": self.trigger,
            "state": self.state,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_item(cls, item: Item) -> ActionNode:
        minutes = item.get("estimatedMinutes")
        return cls(
            **cls._common_kwargs(item),
            driver_id=item["driverId"],
            parent_milestone_id=item.get("parentMilestoneId"),
            estimated_minutes=int(minutes) if minutes is not None else None,
            trigger=item.get("trigger"),
            state=item.get("state", "planned"),
            completed_at=item.get("completedAt"),
        )


_NODE_CLASSES: Dict[NodeKind, Type[Node]] = {
    NodeKind.DRIVER: DriverNode,
    NodeKind.MILESTONE: MilestoneNode,
    NodeKind.ACTION: ActionNode,
}


def node_from_item(item: Item) -> Node:
    """Build the right Node subclass from a stored record.

    Raises:
        ValueError: If nodeType is missing or unknown
    """
    try:
        kind = NodeKind(item.get("nodeType"))
    except ValueError as e:
        raise ValueError(f"Unknown nodeType in record {item.get(SK)!r}") from e
    return _NODE_CLASSES[kind].from_item(item)


@dataclass(frozen=True)
class Edge:
    """Ordered parent->child relationship."""

    parent_node_id: str
    order: int
    child_node_id: str
    child_node_type: NodeKind

    @property
    def sort_key(self) -> str:
        return edge_sk(self.parent_node_id, self.order, self.child_node_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parentNodeId": self.parent_node_id,
            "childNodeId": self.child_node_id,
            "childNodeType": self.child_node_type.value,
            "order": self.order,
        }

    def to_item(self) -> Item:
        return {SK: self.sort_key, **self.to_dict()}

    @classmethod
    def from_item(cls, item: Item) -> Edge:
        return cls(
            parent_node_id=item["parentNodeId"],
            order=int(item["order"]),
            child_node_id=item["childNodeId"],
            child_node_type=NodeKind(item["childNodeType"]),
        )


@dataclass
class Snapshot:
    """The node and edge sets of one values revision.

    Attributes:
        nodes: Nodes by id
        edges: Edges in sort-key order (grouped by parent, then order)
        rev_id: Revision the snapshot was read from (None for an empty graph)
    """

    nodes: Dict[str, Node] = field(default_factory=dict)
    edges: List[Edge] = field(default_factory=list)
    rev_id: Optional[str] = None

    @classmethod
    def from_items(cls, items: Iterable[Item], rev_id: Optional[str] = None) -> Snapshot:
        snapshot = cls(rev_id=rev_id)
        for item in items:
            sk = item.get(SK, "")
            if sk.startswith(NODE_PREFIX):
                node = node_from_item(item)
                snapshot.nodes[node.id] = node
            elif sk.startswith(EDGE_PREFIX):
                snapshot.edges.append(Edge.from_item(item))
        snapshot.edges.sort(key=lambda e: e.sort_key)
        return snapshot

    def to_items(self) -> List[Item]:
        items = [node.to_item() for node in self.nodes.values()]
        items.extend(edge.to_item() for edge in self.edges)
        return items

    def copy(self) -> Snapshot:
        """Copy with fresh node objects, safe to edit."""
        return Snapshot.from_items(self.to_items(), rev_id=self.rev_id)

    def get(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def edges_under(self, parent_node_id: str) -> List[Edge]:
        return sorted(
            (e for e in self.edges if e.parent_node_id == parent_node_id),
            key=lambda e: e.order,
        )

    def children_of(self, parent_node_id: str) -> List[Node]:
        """Resolve a parent's edges to nodes in ascending order."""
        return [
            self.nodes[e.child_node_id]
            for e in self.edges_under(parent_node_id)
            if e.child_node_id in self.nodes
        ]

    def drivers(self, include_archived: bool = True) -> List[DriverNode]:
        """Drivers in creation order."""
        drivers = [
            node
            for node in self.nodes.values()
            if isinstance(node, DriverNode) and (include_archived or not node.archived)
        ]
        return sorted(drivers, key=lambda d: (d.created_at, d.id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revId": self.rev_id,
            "nodes": [node.to_dict() for node in self.nodes.values()],
            "edges": [edge.to_dict() for edge in self.edges],
        }


@dataclass
class NodeWithChildren:
    """A node with its ordered subtree."""

    node: Node
    children: List[NodeWithChildren] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node.to_dict(),
            "children": [child.to_dict() for child in self.children],
        }
