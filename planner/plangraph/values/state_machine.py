"""
Action state machine.

    planned     -> in-progress, deferred
    in-progress -> completed, deferred, planned
    completed   -> rolled-over
    deferred    -> planned
    rolled-over -> (terminal)
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List

from ..errors import InvalidStateTransitionError


class ActionState(str, Enum):
    """Lifecycle states of an action."""

    PLANNED = "planned"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    DEFERRED = "deferred"
    ROLLED_OVER = "rolled-over"


STATE_TRANSITIONS: Dict[ActionState, List[ActionState]] = {
    ActionState.PLANNED: [ActionState.IN_PROGRESS, ActionState.DEFERRED],
    ActionState.IN_PROGRESS: [ActionState.COMPLETED, ActionState.DEFERRED, ActionState.PLANNED],
    ActionState.COMPLETED: [ActionState.ROLLED_OVER],
    ActionState.DEFERRED: [ActionState.PLANNED],
    ActionState.ROLLED_OVER: [],
}


def get_valid_next_states(state: ActionState) -> List[ActionState]:
    return list(STATE_TRANSITIONS[state])


def is_valid_transition(from_state: ActionState, to_state: ActionState) -> bool:
    return to_state in STATE_TRANSITIONS[from_state]


def is_terminal(state: ActionState) -> bool:
    return not STATE_TRANSITIONS[state]


def validate_transition(from_state: ActionState, to_state: ActionState) -> None:
    """Raise unless from_state may move to to_state.

    Raises:
        InvalidStateTransitionError: With the allowed targets in the message
    """
    if not is_valid_transition(from_state, to_state):
        raise InvalidStateTransitionError(
            from_state.value,
            to_state.value,
            allowed=[s.value for s in STATE_TRANSITIONS[from_state]],
        )
