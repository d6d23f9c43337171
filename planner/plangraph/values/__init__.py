"""
Values graph: drivers, milestones and actions.

    Driver (why)
      ├── Milestone (when)      edges ordered 0..n-1 per parent
      │     ├── Milestone
      │     └── Action (what)
      └── Action

Invariants:
    - Every milestone and action resolves to an existing driver
    - Edge order under a parent is dense and follows creation order
    - Archived nodes are kept forever as tombstones

How to change safely:
    - Add node attributes as optional fields on the dataclasses in models.py
    - Add mutations to ValuesGraphService through its _commit() helper
"""

from .integrity import IntegrityReport, check_integrity
from .models import (
    ActionNode,
    DriverNode,
    Edge,
    MilestoneNode,
    Node,
    NodeKind,
    NodeWithChildren,
    Snapshot,
    node_from_item,
)
from .service import ValuesGraphService
from .state_machine import (
    ActionState,
    get_valid_next_states,
    is_terminal,
    is_valid_transition,
    validate_transition,
)

__all__ = [
    "ActionNode",
    "ActionState",
    "DriverNode",
    "Edge",
    "IntegrityReport",
    "MilestoneNode",
    "Node",
    "NodeKind",
    "NodeWithChildren",
    "Snapshot",
    "ValuesGraphService",
    "check_integrity",
    "get_valid_next_states",
    "is_terminal",
    "is_valid_transition",
    "node_from_item",
    "validate_transition",
]
