"""Order, payment and webhook reconciliation state transitions."""

ORDER_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

PAYMENT_STATUS_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"paid", "failed"},
    "failed": {"paid"},
    "paid": set(),
}

RECONCILIATION_TRANSITIONS: dict[str, set[str]] = {
    "AWAITING_PAYMENT": {"CONFIRMED", "FAILED"},
    "CONFIRMED": set(),
    "FAILED": set(),
}


def validate_transition(current: str, new: str, transitions: dict[str, set[str]] = ORDER_STATUS_TRANSITIONS) -> None:
    """Raise when a transition is not allowed by the given state machine."""

    if new not in transitions.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")


def is_terminal(state: str, transitions: dict[str, set[str]] = RECONCILIATION_TRANSITIONS) -> bool:
    return state in transitions and not transitions[state]
