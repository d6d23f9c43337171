"""
Unit tests for the action state machine.
"""

import pytest

from planner.plangraph.errors import InvalidStateTransitionError
from planner.plangraph.values.state_machine import (
    ActionState,
    get_valid_next_states,
    is_terminal,
    is_valid_transition,
    validate_transition,
)


class TestActionStateMachine:
    """Tests for transition rules."""

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (ActionState.PLANNED, ActionState.IN_PROGRESS),
            (ActionState.PLANNED, ActionState.DEFERRED),
            (ActionState.IN_PROGRESS, ActionState.COMPLETED),
            (ActionState.IN_PROGRESS, ActionState.DEFERRED),
            (ActionState.IN_PROGRESS, ActionState.PLANNED),
            (ActionState.COMPLETED, ActionState.ROLLED_OVER),
            (ActionState.DEFERRED, ActionState.PLANNED),
        ],
    )
    def test_allowed(self, from_state, to_state):
        assert is_valid_transition(from_state, to_state)
        validate_transition(from_state, to_state)

    @pytest.mark.parametrize(
        "from_state,to_state",
        [
            (ActionState.PLANNED, ActionState.COMPLETED),
            (ActionState.COMPLETED, ActionState.PLANNED),
            (ActionState.DEFERRED, ActionState.IN_PROGRESS),
            (ActionState.ROLLED_OVER, ActionState.PLANNED),
            (ActionState.PLANNED, ActionState.PLANNED),
        ],
    )
    def test_forbidden(self, from_state, to_state):
        assert not is_valid_transition(from_state, to_state)
        with pytest.raises(InvalidStateTransitionError):
            validate_transition(from_state, to_state)

    def test_error_lists_valid_targets(self):
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_transition(ActionState.PLANNED, ActionState.COMPLETED)

        assert exc_info.value.allowed == ["in-progress", "deferred"]

    def test_terminal(self):
        assert is_terminal(ActionState.ROLLED_OVER)
        assert not is_terminal(ActionState.COMPLETED)
        assert get_valid_next_states(ActionState.ROLLED_OVER) == []

    def test_next_states_are_copies(self):
        states = get_valid_next_states(ActionState.PLANNED)
        states.clear()

        assert get_valid_next_states(ActionState.PLANNED) == [
            ActionState.IN_PROGRESS,
            ActionState.DEFERRED,
        ]
