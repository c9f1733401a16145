"""Unit tests for rating eligibility and dispute rules."""

import pytest

from app.core.exceptions import AuthorizationError, TransactionConflict, ValidationError
from app.domain.condition import ItemCondition, is_worse
from app.domain.dispute_state import (
    assert_dispute_transition,
    can_add_evidence,
    can_resolve_dispute,
    lender_percent_for,
)
from app.domain.payment_state import PaymentStatus, assert_payment_transition, payment_status_for_intent
from app.domain.rating_gate import assert_can_rate, assess_eligibility, direction, validate_rating_value


@pytest.mark.parametrize("value", [0, 6, -1, 2.5, "5", True, None])
def test_invalid_rating_values(value):
    with pytest.raises(ValidationError):
        validate_rating_value(value)


@pytest.mark.parametrize("value", [1, 3, 5])
def test_valid_rating_values(value):
    assert validate_rating_value(value) == value


def test_rating_requires_returned_item():
    allowed, reason = assess_eligibility("picked_up", is_party=True, already_rated=False)

    assert allowed is False
    assert "returned" in reason


def test_second_rating_conflicts():
    with pytest.raises(TransactionConflict):
        assert_can_rate("returned", is_party=True, already_rated=True)


def test_outsider_cannot_rate():
    with pytest.raises(AuthorizationError):
        assert_can_rate("returned", is_party=False, already_rated=False)


def test_rating_allowed_after_completion():
    assert_can_rate("completed", is_party=True, already_rated=False)


def test_borrower_rating_is_lender_rating():
    assert direction(rater_is_borrower=True) is True
    assert direction(rater_is_borrower=False) is False


def test_condition_ordering():
    assert is_worse(ItemCondition.WORN, ItemCondition.GOOD) is True
    assert is_worse("good", "good") is False
    assert is_worse("like_new", "fair") is False
    assert is_worse("worn", None) is False


def test_lender_percent_for_outcomes():
    assert lender_percent_for("lender") == 100
    assert lender_percent_for("borrower") == 0
    assert lender_percent_for("split") == 50
    assert lender_percent_for("split", 70) == 70


def test_split_percent_out_of_range():
    with pytest.raises(ValidationError):
        lender_percent_for("split", 120)


def test_resolved_dispute_is_final():
    assert can_resolve_dispute("resolved", None)[0] is False
    assert can_resolve_dispute("open", 40)[0] is False
    assert can_resolve_dispute("under_review", None) == (True, None)
    assert can_add_evidence("resolved")[0] is False

    with pytest.raises(TransactionConflict):
        assert_dispute_transition("resolved", "open")


def test_payment_transitions():
    assert_payment_transition("authorized", "captured")
    assert_payment_transition("captured", "refunded")

    with pytest.raises(TransactionConflict):
        assert_payment_transition("released", "captured")


def test_intent_status_mapping():
    assert payment_status_for_intent("requires_capture") == PaymentStatus.AUTHORIZED
    assert payment_status_for_intent("succeeded") == PaymentStatus.CAPTURED
    assert payment_status_for_intent("requires_action") is None
    assert payment_status_for_intent(None) is None
