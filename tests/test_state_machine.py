"""Unit tests for payment session state-machine guardrails."""

import pytest

from fitpay.common.errors import ErrorKind, InvalidSessionTransition
from fitpay.common.state_machine import is_terminal, validate_transition


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition("ACTIVE", "COMPLETED")
    validate_transition("ACTIVE", "EXPIRED")


def test_invalid_transition():
    """Leaving a terminal state must raise to protect saga correctness."""

    with pytest.raises(InvalidSessionTransition) as exc_info:
        validate_transition("COMPLETED", "FAILED")
    assert exc_info.value.kind is ErrorKind.STATE


def test_unknown_state_has_no_transitions():
    """An unknown state cannot transition anywhere."""
    with pytest.raises(InvalidSessionTransition):
        validate_transition("PENDING", "ACTIVE")


@pytest.mark.parametrize("state", ["COMPLETED", "FAILED", "EXPIRED"])
def test_terminal_states(state):
    """Completed, failed and expired sessions are terminal."""
    assert is_terminal(state)
    assert not is_terminal("ACTIVE")
