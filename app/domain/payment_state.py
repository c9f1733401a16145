"""Payment state machine.

States: none → authorized → captured → refunded, with authorized → released
when the hold is cancelled before capture.
"""

from enum import Enum

from app.core.exceptions import TransactionConflict


class PaymentStatus(str, Enum):
    """Authoritative payment state of a borrow transaction."""

    NONE = "none"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    RELEASED = "released"
    REFUNDED = "refunded"


PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.NONE: {PaymentStatus.AUTHORIZED, PaymentStatus.CAPTURED, PaymentStatus.RELEASED},
    PaymentStatus.AUTHORIZED: {PaymentStatus.CAPTURED, PaymentStatus.RELEASED},
    PaymentStatus.CAPTURED: {PaymentStatus.REFUNDED},
    PaymentStatus.RELEASED: set(),
    PaymentStatus.REFUNDED: set(),
}

# Processor intent status -> payment status
INTENT_STATUS_MAP: dict[str, PaymentStatus] = {
    "requires_capture": PaymentStatus.AUTHORIZED,
    "succeeded": PaymentStatus.CAPTURED,
    "canceled": PaymentStatus.RELEASED,
}

# Intent statuses meaning the borrower has not finished the payment sheet
AWAITING_CUSTOMER_STATUSES = {
    "requires_payment_method",
    "requires_confirmation",
    "requires_action",
}


def assert_payment_transition(current: str, target: str) -> None:
    if current == target:
        return
    allowed = PAYMENT_TRANSITIONS.get(PaymentStatus(current), set())
    if PaymentStatus(target) not in allowed:
        raise TransactionConflict(
            f"Invalid payment transition: {current} → {target}",
            current_status=str(current),
        )


def payment_status_for_intent(intent_status: str | None) -> PaymentStatus | None:
    """Map a processor intent status; None when it implies no settled state."""
    if intent_status is None:
        return None
    return INTENT_STATUS_MAP.get(intent_status)
