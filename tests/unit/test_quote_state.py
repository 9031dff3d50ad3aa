"""
Unit tests for quotedesk/services/quote_state.py

Tests: transition table, terminal states, expiry detection, assert_transition.
"""

import uuid
from datetime import datetime, timedelta

import pytest

from quotedesk.models.quote_request import QuoteRequest, QuoteStatus
from quotedesk.services.errors import InvalidStateError
from quotedesk.services.quote_state import (
    TRANSITIONS,
    assert_transition,
    can_transition,
    is_expired,
    is_terminal,
)

NOW = datetime(2026, 3, 2, 9, 0, 0)


def _quote(status: str = QuoteStatus.DRAFT, expiry_date=None) -> QuoteRequest:
    return QuoteRequest(
        id=uuid.uuid4(),
        organization_id=uuid.uuid4(),
        quote_number="QR-03-2026-0001",
        title="Brake service",
        status=status,
        created_by_id=uuid.uuid4(),
        expiry_date=expiry_date,
    )


@pytest.mark.parametrize(
    "current,target",
    [
        (QuoteStatus.DRAFT, QuoteStatus.SENT),
        (QuoteStatus.SENT, QuoteStatus.RECEIVED),
        (QuoteStatus.SENT, QuoteStatus.UNDER_REVIEW),
        (QuoteStatus.RECEIVED, QuoteStatus.UNDER_REVIEW),
        (QuoteStatus.RECEIVED, QuoteStatus.CONVERTED_TO_ORDER),
        (QuoteStatus.UNDER_REVIEW, QuoteStatus.APPROVED),
        (QuoteStatus.UNDER_REVIEW, QuoteStatus.REJECTED),
        (QuoteStatus.APPROVED, QuoteStatus.CONVERTED_TO_ORDER),
    ],
)
def test_allowed_transitions(current, target):
    assert can_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        (QuoteStatus.DRAFT, QuoteStatus.RECEIVED),
        (QuoteStatus.DRAFT, QuoteStatus.CONVERTED_TO_ORDER),
        (QuoteStatus.SENT, QuoteStatus.APPROVED),
        (QuoteStatus.UNDER_REVIEW, QuoteStatus.CONVERTED_TO_ORDER),
        (QuoteStatus.APPROVED, QuoteStatus.REJECTED),
        (QuoteStatus.REJECTED, QuoteStatus.UNDER_REVIEW),
        (QuoteStatus.CONVERTED_TO_ORDER, QuoteStatus.CONVERTED_TO_ORDER),
    ],
)
def test_illegal_transitions(current, target):
    assert not can_transition(current, target)


def test_every_non_terminal_state_can_expire():
    for status in QuoteStatus.ALL:
        if status in QuoteStatus.TERMINAL:
            assert TRANSITIONS[status] == frozenset()
        else:
            assert can_transition(status, QuoteStatus.EXPIRED)


def test_terminal_states():
    assert is_terminal(QuoteStatus.REJECTED)
    assert is_terminal(QuoteStatus.EXPIRED)
    assert is_terminal(QuoteStatus.CONVERTED_TO_ORDER)
    assert not is_terminal(QuoteStatus.APPROVED)


def test_is_expired_uses_expiry_date():
    assert is_expired(_quote(expiry_date=NOW - timedelta(seconds=1)), NOW)
    assert is_expired(_quote(expiry_date=NOW), NOW)
    assert not is_expired(_quote(expiry_date=NOW + timedelta(days=1)), NOW)
    assert not is_expired(_quote(expiry_date=None), NOW)


def test_terminal_quote_is_never_reported_expired():
    quote = _quote(QuoteStatus.CONVERTED_TO_ORDER, expiry_date=NOW - timedelta(days=5))
    assert not is_expired(quote, NOW)


def test_assert_transition_rejects_illegal_move():
    with pytest.raises(InvalidStateError) as exc:
        assert_transition(_quote(QuoteStatus.DRAFT), QuoteStatus.APPROVED, NOW)
    assert exc.value.code == "INVALID_STATE"
    assert exc.value.status_code == 409


def test_assert_transition_rejects_elapsed_quote():
    quote = _quote(QuoteStatus.SENT, expiry_date=NOW - timedelta(hours=1))
    with pytest.raises(InvalidStateError) as exc:
        assert_transition(quote, QuoteStatus.RECEIVED, NOW)
    assert exc.value.code == "QUOTE_EXPIRED"


def test_elapsed_quote_may_still_expire():
    quote = _quote(QuoteStatus.SENT, expiry_date=NOW - timedelta(hours=1))
    assert_transition(quote, QuoteStatus.EXPIRED, NOW)
