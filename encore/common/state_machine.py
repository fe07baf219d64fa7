"""Scheduled notification lifecycle enforced by the delivery pipeline."""

PENDING = "PENDING"
SENT = "SENT"
FAILED = "FAILED"
CANCELLED = "CANCELLED"
ALL_STATUSES = (PENDING, SENT, FAILED, CANCELLED)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {SENT, FAILED, CANCELLED},
    SENT: set(),
    FAILED: set(),
    CANCELLED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def is_terminal(status: str) -> bool:
    """True when no transition leaves `status`."""

    return status in ALLOWED_TRANSITIONS and not ALLOWED_TRANSITIONS[status]
