"""Payment session state machine transitions enforced by the session service."""

from fitpay.common.errors import InvalidSessionTransition

ACTIVE = "ACTIVE"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
EXPIRED = "EXPIRED"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    ACTIVE: {COMPLETED, FAILED, EXPIRED},
    COMPLETED: set(),
    FAILED: set(),
    EXPIRED: set(),
}

TERMINAL_STATES = frozenset(state for state, targets in ALLOWED_TRANSITIONS.items() if not targets)


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidSessionTransition(f"Invalid transition: {current} -> {new}")


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES
