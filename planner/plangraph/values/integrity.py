"""
Structural checks over a values snapshot.

The mutation path guarantees these properties for every canonical revision;
the checker exists to verify stored data (CLI "check", tests) without
trusting the writer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Set, Union, cast

from .models import ActionNode, DriverNode, MilestoneNode, NodeKind, Snapshot


@dataclass
class IntegrityReport:
    """Problems found in one snapshot."""

    problems: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def add(self, problem: str) -> None:
        self.problems.append(problem)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "problems": list(self.problems)}


def check_integrity(snapshot: Snapshot) -> IntegrityReport:
    """Check references, edges and edge ordering of a snapshot.

    Reports:
        - Milestones/actions whose driverId is not a driver
        - Parent milestones that are missing, not milestones, or under another driver
        - Edges whose endpoints are missing or whose childNodeType is wrong
        - Drivers used as edge children
        - Non-milestone/driver edge parents
        - Edge orders under a parent that are not exactly 0..n-1
        - Milestones/actions with no edge from their parent
    """
    report = IntegrityReport()
    nodes = snapshot.nodes

    for node in nodes.values():
        if not isinstance(node, (MilestoneNode, ActionNode)):
            continue
        label = f"{node.kind.value} {node.id}"
        if not isinstance(nodes.get(node.driver_id), DriverNode):
            report.add(f"{label}: driver {node.driver_id} not found")
        if node.parent_milestone_id is not None:
            parent = nodes.get(node.parent_milestone_id)
            if not isinstance(parent, MilestoneNode):
                report.add(f"{label}: parent milestone {node.parent_milestone_id} not found")
            elif parent.driver_id != node.driver_id:
                report.add(
                    f"{label}: parent milestone {parent.id} belongs to driver {parent.driver_id}"
                )

    linked: Set[str] = set()
    orders: Dict[str, List[int]] = {}
    for edge in snapshot.edges:
        parent = nodes.get(edge.parent_node_id)
        child = nodes.get(edge.child_node_id)
        where = f"edge {edge.parent_node_id}->{edge.child_node_id}"

        if parent is None:
            report.add(f"{where}: parent not found")
        elif parent.kind is NodeKind.ACTION:
            report.add(f"{where}: actions cannot have children")

        if child is None:
            report.add(f"{where}: child not found")
        elif child.kind is NodeKind.DRIVER:
            report.add(f"{where}: drivers cannot be children")
        elif child.kind is not edge.child_node_type:
            report.add(
                f"{where}: childNodeType {edge.child_node_type.value} but node is {child.kind.value}"
            )
        else:
            linked.add(child.id)
            owner = cast(Union[MilestoneNode, ActionNode], child).parent_id
            if owner != edge.parent_node_id:
                report.add(f"{where}: child's parent is {owner}")

        orders.setdefault(edge.parent_node_id, []).append(edge.order)

    for parent_id, seen in orders.items():
        if sorted(seen) != list(range(len(seen))):
            report.add(f"children of {parent_id}: orders {sorted(seen)} are not 0..{len(seen) - 1}")

    for node in nodes.values():
        if isinstance(node, (MilestoneNode, ActionNode)) and node.id not in linked:
            report.add(f"{node.kind.value} {node.id}: no edge from parent {node.parent_id}")

    return report
