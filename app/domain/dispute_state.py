"""Dispute state machine.

States: open → under_review → resolved
"""

from enum import Enum

from app.core.exceptions import TransactionConflict, ValidationError


class DisputeStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"


class ResolutionOutcome(str, Enum):
    """Who keeps the deposit."""

    LENDER = "lender"
    BORROWER = "borrower"
    SPLIT = "split"


DISPUTE_TRANSITIONS: dict[str, set[str]] = {
    "open": {"under_review", "resolved"},
    "under_review": {"resolved", "open"},  # Can reopen if more info needed
    "resolved": set(),  # Terminal state
}

DEFAULT_SPLIT_PERCENT = 50


def assert_dispute_transition(current_status: str, new_status: str) -> None:
    """Validate dispute state transition."""
    allowed = DISPUTE_TRANSITIONS.get(current_status, set())
    if new_status not in allowed:
        raise TransactionConflict(
            f"Invalid dispute transition: {current_status} → {new_status}",
            current_status=current_status,
        )


def can_resolve_dispute(status: str, lender_percent: int | None) -> tuple[bool, str | None]:
    """Check if dispute can be resolved."""
    if status == "resolved" or lender_percent is not None:
        return False, "Dispute is already resolved"
    return True, None


def can_add_evidence(status: str) -> tuple[bool, str | None]:
    """Check if evidence can still be attached."""
    if status == "resolved":
        return False, "Cannot add evidence to a resolved dispute"
    return True, None


def lender_percent_for(outcome: str | ResolutionOutcome, lender_percent: int | None = None) -> int:
    """Share of the deposit awarded to the lender for an outcome.

    ``lender`` awards everything, ``borrower`` nothing, and ``split`` the
    given percent (50 when omitted).
    """
    outcome = ResolutionOutcome(outcome)
    if outcome == ResolutionOutcome.LENDER:
        return 100
    if outcome == ResolutionOutcome.BORROWER:
        return 0

    percent = DEFAULT_SPLIT_PERCENT if lender_percent is None else lender_percent
    if not 0 <= percent <= 100:
        raise ValidationError("lender_percent must be between 0 and 100")
    return percent
