"""Borrow transaction state machine.

Primary path: pending → approved | paid → picked_up → return_pending →
returned → completed. Branches: pending → cancelled (decline or borrower
cancel) and a worse-condition return → disputed. ``completed``,
``cancelled`` and ``disputed`` are terminal.

``apply_event`` is pure: it takes a snapshot of the persisted transaction
and an event, and returns either a ``Transition`` (target state plus the
side effects and notifications the caller must carry out), a ``NoOp`` (the
request is already satisfied) or a ``Rejected``. It never touches the
database or the payment processor.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from app.core.exceptions import TransactionConflict
from app.domain.condition import ItemCondition, is_worse
from app.domain.payment_state import (
    AWAITING_CUSTOMER_STATUSES,
    PaymentStatus,
    assert_payment_transition,
)


class TransactionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    PICKED_UP = "picked_up"
    RETURN_PENDING = "return_pending"
    RETURNED = "returned"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PartyRole(str, Enum):
    BORROWER = "borrower"
    LENDER = "lender"

    @property
    def counterpart(self) -> "PartyRole":
        return PartyRole.LENDER if self == PartyRole.BORROWER else PartyRole.BORROWER


class Effect(str, Enum):
    """Side effects a transition requires, executed in order."""

    CAPTURE_PAYMENT = "capture_payment"
    RELEASE_HOLD = "release_hold"
    SETTLE_RETURN = "settle_return"
    OPEN_DISPUTE = "open_dispute"
    MARK_LISTING_UNAVAILABLE = "mark_listing_unavailable"
    MARK_LISTING_AVAILABLE = "mark_listing_available"


class NotificationType(str, Enum):
    BORROW_REQUEST = "borrow_request"
    REQUEST_APPROVED = "request_approved"
    REQUEST_DECLINED = "request_declined"
    REQUEST_CANCELLED = "request_cancelled"
    PAYMENT_AUTHORIZED = "payment_authorized"
    PICKUP_CONFIRMED = "pickup_confirmed"
    RETURN_MARKED = "return_marked"
    RETURN_CONFIRMED = "return_confirmed"
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_RESOLVED = "dispute_resolved"
    RATING_RECEIVED = "rating_received"


TRANSACTION_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.PENDING: {
        TransactionStatus.APPROVED,
        TransactionStatus.PAID,
        TransactionStatus.CANCELLED,
    },
    TransactionStatus.APPROVED: {TransactionStatus.PAID, TransactionStatus.PICKED_UP},
    TransactionStatus.PAID: {TransactionStatus.PICKED_UP},
    TransactionStatus.PICKED_UP: {
        TransactionStatus.RETURN_PENDING,
        TransactionStatus.RETURNED,
        TransactionStatus.DISPUTED,
    },
    TransactionStatus.RETURN_PENDING: {TransactionStatus.RETURNED, TransactionStatus.DISPUTED},
    TransactionStatus.RETURNED: {TransactionStatus.COMPLETED},
    TransactionStatus.DISPUTED: set(),
    TransactionStatus.CANCELLED: set(),
    TransactionStatus.COMPLETED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSACTION_TRANSITIONS.items() if not targets)


def assert_transaction_transition(current: str, target: str) -> None:
    """Allow staying put or moving along a listed edge."""
    if current == target:
        return
    allowed = TRANSACTION_TRANSITIONS.get(TransactionStatus(current), set())
    if TransactionStatus(target) not in allowed:
        raise TransactionConflict(
            f"Invalid transaction transition: {current} → {target}",
            current_status=str(current),
        )


@dataclass(frozen=True)
class TransactionSnapshot:
    """The persisted fields the machine decides on."""

    status: TransactionStatus
    payment_status: PaymentStatus
    requires_payment: bool
    has_payment_intent: bool = False
    has_deposit: bool = False
    condition_at_pickup: ItemCondition | None = None

    @classmethod
    def from_model(cls, txn) -> "TransactionSnapshot":
        return cls(
            status=TransactionStatus(txn.status),
            payment_status=PaymentStatus(txn.payment_status),
            requires_payment=txn.requires_payment,
            has_payment_intent=bool(txn.stripe_payment_intent_id),
            has_deposit=(txn.deposit_amount or 0) > 0,
            condition_at_pickup=ItemCondition(txn.condition_at_pickup) if txn.condition_at_pickup else None,
        )


# Events


@dataclass(frozen=True)
class Approve:
    actor: PartyRole


@dataclass(frozen=True)
class Decline:
    actor: PartyRole


@dataclass(frozen=True)
class ConfirmPayment:
    actor: PartyRole
    intent_status: str | None = None


@dataclass(frozen=True)
class ConfirmPickup:
    actor: PartyRole


@dataclass(frozen=True)
class MarkReturned:
    actor: PartyRole


@dataclass(frozen=True)
class ConfirmReturn:
    actor: PartyRole
    condition: ItemCondition


@dataclass(frozen=True)
class RatingSubmitted:
    actor: PartyRole
    ratings_count: int
    required_ratings: int = 2


@dataclass(frozen=True)
class Cancel:
    actor: PartyRole


Event = Approve | Decline | ConfirmPayment | ConfirmPickup | MarkReturned | ConfirmReturn | RatingSubmitted | Cancel


# Outcomes


@dataclass(frozen=True)
class Notify:
    recipient: PartyRole
    type: NotificationType


@dataclass(frozen=True)
class Transition:
    status: TransactionStatus
    payment_status: PaymentStatus
    effects: tuple[Effect, ...] = ()
    notifications: tuple[Notify, ...] = ()


@dataclass(frozen=True)
class NoOp:
    """Nothing to do; the request is already satisfied."""

    reason: str
    requires_payment: bool = False


class RejectionKind(str, Enum):
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class Rejected:
    kind: RejectionKind
    reason: str


Outcome = Transition | NoOp | Rejected


def _move(
    snapshot: TransactionSnapshot,
    status: TransactionStatus,
    payment_status: PaymentStatus | None = None,
    effects: tuple[Effect, ...] = (),
    notifications: tuple[Notify, ...] = (),
) -> Transition:
    payment_status = snapshot.payment_status if payment_status is None else payment_status
    assert_transaction_transition(snapshot.status, status)
    assert_payment_transition(snapshot.payment_status, payment_status)
    return Transition(status, payment_status, effects, notifications)


def _forbidden(role: PartyRole, action: str) -> Rejected:
    return Rejected(RejectionKind.FORBIDDEN, f"Only the {role.value} can {action}")


def _conflict(snapshot: TransactionSnapshot, action: str) -> Rejected:
    return Rejected(
        RejectionKind.CONFLICT,
        f"Cannot {action} a transaction that is {snapshot.status.value}",
    )


def _approve(s: TransactionSnapshot, event: Approve) -> Outcome:
    if event.actor != PartyRole.LENDER:
        return _forbidden(PartyRole.LENDER, "approve")
    if s.status in (TransactionStatus.APPROVED, TransactionStatus.PAID):
        return NoOp("Transaction already approved")
    if s.status != TransactionStatus.PENDING:
        return _conflict(s, "approve")

    approved = (Notify(PartyRole.BORROWER, NotificationType.REQUEST_APPROVED),)
    if not s.requires_payment:
        return _move(s, TransactionStatus.APPROVED, effects=(Effect.MARK_LISTING_UNAVAILABLE,), notifications=approved)
    if s.payment_status == PaymentStatus.AUTHORIZED:
        return _move(
            s,
            TransactionStatus.PAID,
            PaymentStatus.CAPTURED,
            effects=(Effect.CAPTURE_PAYMENT, Effect.MARK_LISTING_UNAVAILABLE),
            notifications=approved,
        )
    # Hold not in place yet: borrower pays now via confirm-payment
    return _move(s, TransactionStatus.APPROVED, notifications=approved)


def _release(s: TransactionSnapshot, notify: Notify) -> Transition:
    effects = (Effect.RELEASE_HOLD,) if s.has_payment_intent else ()
    payment_status = PaymentStatus.RELEASED if s.payment_status == PaymentStatus.AUTHORIZED else None
    return _move(s, TransactionStatus.CANCELLED, payment_status, effects=effects, notifications=(notify,))


def _decline(s: TransactionSnapshot, event: Decline) -> Outcome:
    if event.actor != PartyRole.LENDER:
        return _forbidden(PartyRole.LENDER, "decline")
    if s.status != TransactionStatus.PENDING:
        return _conflict(s, "decline")
    return _release(s, Notify(PartyRole.BORROWER, NotificationType.REQUEST_DECLINED))


def _cancel(s: TransactionSnapshot, event: Cancel) -> Outcome:
    if event.actor != PartyRole.BORROWER:
        return _forbidden(PartyRole.BORROWER, "cancel")
    if s.status != TransactionStatus.PENDING:
        return _conflict(s, "cancel")
    return _release(s, Notify(PartyRole.LENDER, NotificationType.REQUEST_CANCELLED))


def _confirm_payment(s: TransactionSnapshot, event: ConfirmPayment) -> Outcome:
    if event.actor != PartyRole.BORROWER:
        return _forbidden(PartyRole.BORROWER, "confirm payment")
    if s.status in TERMINAL_STATUSES:
        return _conflict(s, "confirm payment for")
    if not s.requires_payment:
        return NoOp("No payment required")
    if s.status not in (TransactionStatus.PENDING, TransactionStatus.APPROVED):
        return NoOp("Payment already settled")
    if event.intent_status in AWAITING_CUSTOMER_STATUSES:
        return NoOp("Payment not completed", requires_payment=True)

    authorized = (Notify(PartyRole.LENDER, NotificationType.PAYMENT_AUTHORIZED),)
    if s.status == TransactionStatus.PENDING:
        if s.payment_status == PaymentStatus.AUTHORIZED:
            return NoOp("Payment already authorized")
        if event.intent_status == "requires_capture":
            return _move(s, TransactionStatus.PENDING, PaymentStatus.AUTHORIZED, notifications=authorized)
        return NoOp("Payment processing")

    if event.intent_status == "requires_capture":
        return _move(
            s,
            TransactionStatus.PAID,
            PaymentStatus.CAPTURED,
            effects=(Effect.CAPTURE_PAYMENT, Effect.MARK_LISTING_UNAVAILABLE),
            notifications=authorized,
        )
    if event.intent_status == "succeeded":
        return _move(
            s,
            TransactionStatus.PAID,
            PaymentStatus.CAPTURED,
            effects=(Effect.MARK_LISTING_UNAVAILABLE,),
            notifications=authorized,
        )
    return NoOp("Payment processing")


def _confirm_pickup(s: TransactionSnapshot, event: ConfirmPickup) -> Outcome:
    if event.actor != PartyRole.LENDER:
        return _forbidden(PartyRole.LENDER, "confirm pickup")
    if s.status == TransactionStatus.PICKED_UP:
        return NoOp("Pickup already confirmed")
    if s.status not in (TransactionStatus.APPROVED, TransactionStatus.PAID):
        return _conflict(s, "confirm pickup for")

    effects: tuple[Effect, ...] = ()
    payment_status = None
    if s.requires_payment:
        if s.payment_status == PaymentStatus.AUTHORIZED:
            effects = (Effect.CAPTURE_PAYMENT,)
            payment_status = PaymentStatus.CAPTURED
        elif s.payment_status != PaymentStatus.CAPTURED:
            return Rejected(RejectionKind.CONFLICT, "Payment has not been completed")

    return _move(
        s,
        TransactionStatus.PICKED_UP,
        payment_status,
        effects=effects,
        notifications=(Notify(PartyRole.BORROWER, NotificationType.PICKUP_CONFIRMED),),
    )


def _mark_returned(s: TransactionSnapshot, event: MarkReturned) -> Outcome:
    if event.actor != PartyRole.BORROWER:
        return _forbidden(PartyRole.BORROWER, "mark the item returned")
    if s.status == TransactionStatus.RETURN_PENDING:
        return NoOp("Return already marked")
    if s.status != TransactionStatus.PICKED_UP:
        return _conflict(s, "mark returned")
    return _move(
        s,
        TransactionStatus.RETURN_PENDING,
        notifications=(Notify(PartyRole.LENDER, NotificationType.RETURN_MARKED),),
    )


def _confirm_return(s: TransactionSnapshot, event: ConfirmReturn) -> Outcome:
    if event.actor != PartyRole.LENDER:
        return _forbidden(PartyRole.LENDER, "confirm return")
    if s.status not in (TransactionStatus.PICKED_UP, TransactionStatus.RETURN_PENDING):
        return _conflict(s, "confirm return for")

    if is_worse(event.condition, s.condition_at_pickup):
        return _move(
            s,
            TransactionStatus.DISPUTED,
            effects=(Effect.OPEN_DISPUTE, Effect.MARK_LISTING_AVAILABLE),
            notifications=(Notify(PartyRole.BORROWER, NotificationType.DISPUTE_OPENED),),
        )

    effects: tuple[Effect, ...] = (Effect.MARK_LISTING_AVAILABLE,)
    payment_status = None
    if s.payment_status == PaymentStatus.CAPTURED:
        effects = (Effect.SETTLE_RETURN, Effect.MARK_LISTING_AVAILABLE)
        if s.has_deposit:
            payment_status = PaymentStatus.REFUNDED
    return _move(
        s,
        TransactionStatus.RETURNED,
        payment_status,
        effects=effects,
        notifications=(Notify(PartyRole.BORROWER, NotificationType.RETURN_CONFIRMED),),
    )


def _rating_submitted(s: TransactionSnapshot, event: RatingSubmitted) -> Outcome:
    if s.status not in (TransactionStatus.RETURNED, TransactionStatus.COMPLETED):
        return _conflict(s, "rate")

    received = (Notify(event.actor.counterpart, NotificationType.RATING_RECEIVED),)
    if s.status == TransactionStatus.RETURNED and event.ratings_count >= event.required_ratings:
        return _move(s, TransactionStatus.COMPLETED, notifications=received)
    return _move(s, s.status, notifications=received)


_HANDLERS: dict[type, Callable[[TransactionSnapshot, Event], Outcome]] = {
    Approve: _approve,
    Decline: _decline,
    ConfirmPayment: _confirm_payment,
    ConfirmPickup: _confirm_pickup,
    MarkReturned: _mark_returned,
    ConfirmReturn: _confirm_return,
    RatingSubmitted: _rating_submitted,
    Cancel: _cancel,
}


def apply_event(snapshot: TransactionSnapshot, event: Event) -> Outcome:
    """Decide the outcome of ``event`` against ``snapshot``."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown transaction event: {type(event).__name__}")
    return handler(snapshot, event)
