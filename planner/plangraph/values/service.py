"""
Values-graph operations.

ValuesGraphService is what API handlers call. Each mutation is expressed as
a pure function of the current snapshot and handed to the versioned
repository, which commits it as a new revision.

Invariants:
    - Reference and state checks run against the snapshot the mutation read
    - A failed check raises before anything is written
    - New edges get order = number of existing edges under the same parent
    - Nodes are never removed; archive_node() only sets the tombstone

How to change safely:
    - Keep mutate callbacks free of I/O other than what ScopeState provides
    - Any new mutation must go through _commit() so retries recompute it
"""

from __future__ import annotations

import logging
import uuid
from typing import AsyncIterator, Callable, List, Optional, Tuple, Union, cast

from ..errors import ReferenceNotFoundError, ValidationError
from ..keys import RepositoryScope
from ..versioning import Mutation, Revision, RevisionSource, ScopeState, VersionedRepository
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
)
from .state_machine import ActionState, validate_transition
from .validation import (
    MAX_TITLE_LENGTH,
    clean_estimated_minutes,
    clean_notes,
    clean_title,
    clean_trigger,
    require_id,
)

logger = logging.getLogger(__name__)

# A change maps (snapshot, commit timestamp) to (new snapshot, message, source, result)
Change = Callable[[Snapshot, str], Tuple[Snapshot, str, RevisionSource, Node]]


def _scope(user_id: str) -> RepositoryScope:
    require_id(user_id, "userId")
    return RepositoryScope.values(user_id)


def _require_kind(snapshot: Snapshot, node_id: str, kind: NodeKind) -> Node:
    node = snapshot.get(node_id)
    if node is None or node.kind is not kind:
        label = kind.value.capitalize()
        raise ReferenceNotFoundError(
            f"{label} not found: {node_id}", node_id=node_id, expected_kind=kind.value
        )
    return node


def _require_node(snapshot: Snapshot, node_id: str) -> Node:
    node = snapshot.get(node_id)
    if node is None:
        raise ReferenceNotFoundError(f"Node not found: {node_id}", node_id=node_id)
    return node


def _require_live(node: Node) -> None:
    if node.archived:
        raise ValidationError(
            f"{node.kind.value.capitalize()} {node.id} is archived", field_name="archived"
        )


class ValuesGraphService:
    """Drivers, milestones and actions of each user, versioned.

    Example:
        >>> service = ValuesGraphService(VersionedRepository(store))
        >>> driver = await service.create_driver("u1", "Health")
        >>> await service.create_action("u1", driver.id, "Run 5k", estimated_minutes=30)
    """

    def __init__(self, repository: VersionedRepository, max_title_length: int = MAX_TITLE_LENGTH) -> None:
        self.repository = repository
        self.max_title_length = max_title_length

    async def _commit(self, user_id: str, change: Change) -> Node:
        scope = _scope(user_id)

        async def mutate(state: ScopeState) -> Mutation[Node]:
            current = Snapshot.from_items(
                state.records, rev_id=state.head.head_rev_id if state.head else None
            )
            updated, message, source, result = change(current, state.now)
            return Mutation(
                records=updated.to_items(), message=message, source=source, result=result
            )

        committed = await self.repository.commit(scope, mutate)
        return committed.result

    async def _attach(
        self,
        user_id: str,
        driver_id: str,
        parent_milestone_id: Optional[str],
        build: Callable[[str], Union[MilestoneNode, ActionNode]],
        source: RevisionSource,
    ) -> Node:
        """Commit a new milestone or action together with its parent edge."""

        def change(snapshot: Snapshot, now: str) -> Tuple[Snapshot, str, RevisionSource, Node]:
            driver = _require_kind(snapshot, driver_id, NodeKind.DRIVER)
            _require_live(driver)
            if parent_milestone_id is not None:
                parent = cast(MilestoneNode, _require_kind(snapshot, parent_milestone_id, NodeKind.MILESTONE))
                _require_live(parent)
                if parent.driver_id != driver_id:
                    raise ValidationError(
                        f"Milestone {parent_milestone_id} belongs to another driver",
                        field_name="parentMilestoneId",
                    )

            node = build(now)
            parent_id = parent_milestone_id or driver_id
            snapshot.nodes[node.id] = node
            snapshot.edges.append(
                Edge(
                    parent_node_id=parent_id,
                    order=len(snapshot.edges_under(parent_id)),
                    child_node_id=node.id,
                    child_node_type=node.kind,
                )
            )
            return snapshot, f"Added {node.kind.value.lower()}: {node.title}", source, node

        return await self._commit(user_id, change)

    # Creation

    async def create_driver(self, user_id: str, title: str, notes: Optional[str] = None) -> DriverNode:
        """Add a top-level driver.

        Raises:
            ValidationError: If title or notes are out of bounds
            ConcurrencyConflictError: If HEAD kept moving
        """
        title = clean_title(title, self.max_title_length)
        notes = clean_notes(notes)
        driver_id = str(uuid.uuid4())

        def change(snapshot: Snapshot, now: str) -> Tuple[Snapshot, str, RevisionSource, Node]:
            driver = DriverNode(
                id=driver_id, user_id=user_id, title=title, created_at=now, notes=notes
            )
            snapshot.nodes[driver.id] = driver
            return snapshot, f"Added driver: {title}", RevisionSource.WEEKLY_REVIEW, driver

        node = await self._commit(user_id, change)
        logger.info("Driver created", extra={"user_id": user_id, "node_id": node.id})
        return cast(DriverNode, node)

    async def create_milestone(
        self,
        user_id: str,
        driver_id: str,
        title: str,
        notes: Optional[str] = None,
        parent_milestone_id: Optional[str] = None,
    ) -> MilestoneNode:
        """Add a milestone under a driver or under another milestone of it.

        Raises:
            ValidationError: On bad fields or a parent from another driver
            ReferenceNotFoundError: If the driver or parent milestone is missing
        """
        title = clean_title(title, self.max_title_length)
        notes = clean_notes(notes)
        require_id(driver_id, "driverId")
        milestone_id = str(uuid.uuid4())

        def build(now: str) -> MilestoneNode:
            return MilestoneNode(
                id=milestone_id,
                user_id=user_id,
                title=title,
                created_at=now,
                notes=notes,
                driver_id=driver_id,
                parent_milestone_id=parent_milestone_id,
            )

        node = await self._attach(
            user_id, driver_id, parent_milestone_id, build, RevisionSource.WEEKLY_REVIEW
        )
        logger.info("Milestone created", extra={"user_id": user_id, "node_id": node.id})
        return cast(MilestoneNode, node)

    async def create_action(
        self,
        user_id: str,
        driver_id: str,
        title: str,
        parent_milestone_id: Optional[str] = None,
        notes: Optional[str] = None,
        estimated_minutes: Optional[int] = None,
        trigger: Optional[str] = None,
    ) -> ActionNode:
        """Add an action under a driver or milestone.

        Raises:
            ValidationError: On bad fields or a parent from another driver
            ReferenceNotFoundError: If the driver or parent milestone is missing
        """
        title = clean_title(title, self.max_title_length)
        notes = clean_notes(notes)
        trigger = clean_trigger(trigger)
        estimated_minutes = clean_estimated_minutes(estimated_minutes)
        require_id(driver_id, "driverId")
        action_id = str(uuid.uuid4())

        def build(now: str) -> ActionNode:
            return ActionNode(
                id=action_id,
                user_id=user_id,
                title=title,
                created_at=now,
                notes=notes,
                driver_id=driver_id,
                parent_milestone_id=parent_milestone_id,
                estimated_minutes=estimated_minutes,
                trigger=trigger,
            )

        node = await self._attach(
            user_id, driver_id, parent_milestone_id, build, RevisionSource.DAILY_UPDATE
        )
        logger.info("Action created", extra={"user_id": user_id, "node_id": node.id})
        return cast(ActionNode, node)

    # Edits

    async def update_node(
        self,
        user_id: str,
        node_id: str,
        title: Optional[str] = None,
        notes: Optional[str] = None,
        estimated_minutes: Optional[int] = None,
        trigger: Optional[str] = None,
    ) -> Node:
        """Edit fields of a node. None leaves a field unchanged; "" clears notes/trigger.

        Raises:
            ValidationError: On bad fields, archived nodes, or action-only
                fields given for a driver or milestone
            ReferenceNotFoundError: If the node is missing
        """
        new_title = clean_title(title, self.max_title_length) if title is not None else None
        new_notes = clean_notes(notes)
        new_trigger = clean_trigger(trigger)
        new_minutes = clean_estimated_minutes(estimated_minutes)

        def change(snapshot: Snapshot, now: str) -> Tuple[Snapshot, str, RevisionSource, Node]:
            node = _require_node(snapshot, node_id)
            _require_live(node)
            if not isinstance(node, ActionNode) and (
                estimated_minutes is not None or trigger is not None
            ):
                raise ValidationError(
                    "estimatedMinutes and trigger only apply to actions", field_name="nodeType"
                )

            if new_title is not None:
                node.title = new_title
            if notes is not None:
                node.notes = new_notes
            if isinstance(node, ActionNode):
                if trigger is not None:
                    node.trigger = new_trigger
                if estimated_minutes is not None:
                    node.estimated_minutes = new_minutes
            node.updated_at = now

            source = (
                RevisionSource.DAILY_UPDATE
                if isinstance(node, ActionNode)
                else RevisionSource.WEEKLY_REVIEW
            )
            return snapshot, f"Updated {node.kind.value.lower()}: {node.title}", source, node

        return await self._commit(user_id, change)

    async def archive_node(self, user_id: str, node_id: str) -> Node:
        """Tombstone a node. It stays in this and every later snapshot.

        Raises:
            ValidationError: If the node is already archived
            ReferenceNotFoundError: If the node is missing
        """

        def change(snapshot: Snapshot, now: str) -> Tuple[Snapshot, str, RevisionSource, Node]:
            node = _require_node(snapshot, node_id)
            _require_live(node)
            node.archived = True
            node.deleted_at = now
            node.updated_at = now
            return (
                snapshot,
                f"Archived {node.kind.value.lower()}: {node.title}",
                RevisionSource.WEEKLY_REVIEW,
                node,
            )

        node = await self._commit(user_id, change)
        logger.info(
            "Node archived",
            extra={"user_id": user_id, "node_id": node_id, "node_type": node.kind.value},
        )
        return node

    async def transition_action(
        self, user_id: str, action_id: str, new_state: Union[ActionState, str]
    ) -> ActionNode:
        """Move an action through its state machine.

        Raises:
            ValidationError: If new_state is not a known state or the action is archived
            InvalidStateTransitionError: If the state machine forbids the move
            ReferenceNotFoundError: If the action is missing
        """
        try:
            target = ActionState(new_state)
        except ValueError as e:
            raise ValidationError(f"Unknown action state '{new_state}'", field_name="state") from e

        def change(snapshot: Snapshot, now: str) -> Tuple[Snapshot, str, RevisionSource, Node]:
            action = cast(ActionNode, _require_kind(snapshot, action_id, NodeKind.ACTION))
            _require_live(action)
            current = ActionState(action.state)
            validate_transition(current, target)

            action.state = target.value
            action.updated_at = now
            if target is ActionState.COMPLETED:
                action.completed_at = now
                source = RevisionSource.COMPLETION
            else:
                source = RevisionSource.DAILY_UPDATE
            message = f"Action {action.title}: {current.value} -> {target.value}"
            return snapshot, message, source, action

        return cast(ActionNode, await self._commit(user_id, change))

    async def complete_milestone(self, user_id: str, milestone_id: str) -> MilestoneNode:
        """Mark a milestone completed.

        Raises:
            ValidationError: If archived or already completed
            ReferenceNotFoundError: If the milestone is missing
        """

        def change(snapshot: Snapshot, now: str) -> Tuple[Snapshot, str, RevisionSource, Node]:
            milestone = cast(MilestoneNode, _require_kind(snapshot, milestone_id, NodeKind.MILESTONE))
            _require_live(milestone)
            if milestone.completed_at is not None:
                raise ValidationError(
                    f"Milestone {milestone_id} is already completed", field_name="completedAt"
                )
            milestone.completed_at = now
            milestone.updated_at = now
            return (
                snapshot,
                f"Completed milestone: {milestone.title}",
                RevisionSource.COMPLETION,
                milestone,
            )

        return cast(MilestoneNode, await self._commit(user_id, change))

    # Reads

    async def get_current_snapshot(self, user_id: str) -> Snapshot:
        """Snapshot named by HEAD; empty when the user has no revisions."""
        state = await self.repository.read_state(_scope(user_id))
        return Snapshot.from_items(
            state.records, rev_id=state.head.head_rev_id if state.head else None
        )

    async def get_snapshot_at(self, user_id: str, rev_id: str) -> Snapshot:
        """Snapshot of any recorded revision, canonical or orphaned.

        Raises:
            ReferenceNotFoundError: If the revision is not in the commit log
        """
        scope = _scope(user_id)
        revision = await self.repository.commit_log.find(scope, rev_id)
        if revision is None:
            raise ReferenceNotFoundError(
                f"Revision not found: {rev_id}", node_id=rev_id, expected_kind="REVISION"
            )
        records = await self.repository.read_snapshot(scope, rev_id)
        return Snapshot.from_items(records, rev_id=rev_id)

    async def get_node(self, user_id: str, node_id: str) -> Node:
        """Raises ReferenceNotFoundError when the node is not in the HEAD snapshot."""
        return _require_node(await self.get_current_snapshot(user_id), node_id)

    async def get_children(self, user_id: str, node_id: str) -> List[Node]:
        """Ordered children of a driver or milestone; [] for leaves and unknown ids."""
        snapshot = await self.get_current_snapshot(user_id)
        return snapshot.children_of(node_id)

    async def list_drivers(self, user_id: str, include_archived: bool = False) -> List[DriverNode]:
        snapshot = await self.get_current_snapshot(user_id)
        return snapshot.drivers(include_archived=include_archived)

    async def get_tree(self, user_id: str, include_archived: bool = True) -> List[NodeWithChildren]:
        """Every driver with its nested milestones and actions."""
        snapshot = await self.get_current_snapshot(user_id)

        def subtree(node: Node) -> NodeWithChildren:
            children = [
                subtree(child)
                for child in snapshot.children_of(node.id)
                if include_archived or not child.archived
            ]
            return NodeWithChildren(node=node, children=children)

        return [subtree(d) for d in snapshot.drivers(include_archived=include_archived)]

    def list_history(self, user_id: str, ascending: bool = False) -> AsyncIterator[Revision]:
        """Commit log of the user's values graph, newest first by default."""
        return self.repository.history(_scope(user_id), ascending=ascending)

    async def lineage(self, user_id: str) -> List[Revision]:
        return await self.repository.lineage(_scope(user_id))

    async def orphans(self, user_id: str) -> List[Revision]:
        return await self.repository.orphans(_scope(user_id))

    async def check_integrity(self, user_id: str, rev_id: Optional[str] = None) -> IntegrityReport:
        if rev_id is None:
            snapshot = await self.get_current_snapshot(user_id)
        else:
            snapshot = await self.get_snapshot_at(user_id, rev_id)
        return check_integrity(snapshot)
