"""Unit tests for order, payment and reconciliation state-machine guardrails."""

import pytest

from ikhaya.common.state_machine import (
    PAYMENT_STATUS_TRANSITIONS,
    RECONCILIATION_TRANSITIONS,
    is_terminal,
    validate_transition,
)


def test_valid_transition():
    """Sanity check: a legal transition should pass."""

    validate_transition("confirmed", "processing")


def test_invalid_transition():
    """Illegal transition must raise so an order cannot skip fulfilment steps."""

    with pytest.raises(ValueError):
        validate_transition("confirmed", "delivered")


def test_paid_is_final():
    with pytest.raises(ValueError):
        validate_transition("paid", "failed", PAYMENT_STATUS_TRANSITIONS)


def test_reconciliation_terminal_states():
    validate_transition("AWAITING_PAYMENT", "FAILED", RECONCILIATION_TRANSITIONS)
    with pytest.raises(ValueError):
        validate_transition("FAILED", "CONFIRMED", RECONCILIATION_TRANSITIONS)
    assert is_terminal("CONFIRMED")
    assert is_terminal("FAILED")
    assert not is_terminal("AWAITING_PAYMENT")
