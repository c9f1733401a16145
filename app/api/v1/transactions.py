"""Borrow transaction endpoints."""

from collections.abc import Awaitable, Callable
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.api.deps import CurrentUser, DbSession
from app.core.idempotency import run_idempotent
from app.core.middleware import rating_limiter, transaction_limiter
from app.domain.transaction_state import TransactionStatus
from app.models.transaction import BorrowTransaction
from app.models.user import User
from app.schemas.transaction import (
    AccessCheckResponse,
    ActionRequest,
    ActionResponse,
    PaymentSheetResponse,
    PaymentStatusResponse,
    PickupRequest,
    RateRequest,
    ReturnRequest,
    TransactionCreate,
    TransactionListResponse,
    TransactionResponse,
)
from app.services.notification_service import notification_service
from app.services.transaction_service import ActionResult, transaction_service

router = APIRouter()


async def _to_response(db, txn: BorrowTransaction, user: User) -> TransactionResponse:
    response = TransactionResponse.model_validate(txn)
    response.my_rating = await transaction_service.my_rating(db, txn.id, user.id)
    response.is_borrower = txn.borrower_id == user.id
    response.is_lender = txn.lender_id == user.id
    return response


async def _action_body(db, result: ActionResult, user: User) -> dict:
    body = ActionResponse(
        transaction=await _to_response(db, result.transaction, user),
        noop=result.noop,
        message=result.message,
        requires_payment=result.requires_payment,
        payment_sheet=PaymentSheetResponse(**result.credentials.to_dict()) if result.credentials else None,
    )
    return body.model_dump(mode="json")


async def _run_action(
    operation: str,
    transaction_id: UUID,
    user: User,
    db,
    background_tasks: BackgroundTasks,
    call: Callable[[], Awaitable[ActionResult]],
    params: dict[str, Any] | None = None,
) -> dict:
    """Run an action once per (transaction, action, user) and dispatch its notifications."""

    async def action() -> dict:
        result = await call()
        if result.notifications:
            background_tasks.add_task(notification_service.dispatch_all, result.notifications)
        return await _action_body(db, result, user)

    return await run_idempotent(
        f"transaction_{operation}",
        transaction_id,
        action,
        params={"user_id": str(user.id), **(params or {})},
    )


@router.get("/access-check", response_model=AccessCheckResponse)
async def check_access(
    listing_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> dict:
    """Whether the current user may request a listing, and why not."""
    decision = await transaction_service.check_access(db, listing_id, current_user)
    return decision.to_dict()


@router.post(
    "/",
    response_model=ActionResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(transaction_limiter)],
)
async def create_transaction(
    data: TransactionCreate,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
) -> dict:
    """Request to borrow a listing.

    Paid rentals get a payment hold; ``payment_sheet`` carries what the
    client needs to confirm it when no payment method was supplied.
    """
    result = await transaction_service.create(
        db,
        current_user,
        listing_id=data.listing_id,
        start_date=data.start_date,
        end_date=data.end_date,
        message=data.message,
        payment_method_id=data.payment_method_id,
    )
    background_tasks.add_task(notification_service.dispatch_all, result.notifications)
    return await _action_body(db, result, current_user)


@router.get("/", response_model=TransactionListResponse)
async def list_transactions(
    current_user: CurrentUser,
    db: DbSession,
    role: Annotated[str | None, Query(pattern="^(borrower|lender)$")] = None,
    status_filter: Annotated[TransactionStatus | None, Query(alias="status")] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> dict:
    """Get current user's transactions."""
    items, total = await transaction_service.list_for_user(
        db,
        current_user,
        role=role,
        status=status_filter.value if status_filter else None,
        page=page,
        page_size=page_size,
    )
    return {
        "items": [await _to_response(db, txn, current_user) for txn in items],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> TransactionResponse:
    """Get transaction details."""
    txn = await transaction_service.get_for_party(db, transaction_id, current_user)
    return await _to_response(db, txn, current_user)


@router.get("/{transaction_id}/payment-status", response_model=PaymentStatusResponse)
async def get_payment_status(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> dict:
    """Live payment status from the processor."""
    return await transaction_service.payment_status(db, transaction_id, current_user)


@router.post(
    "/{transaction_id}/approve",
    response_model=ActionResponse,
    dependencies=[Depends(transaction_limiter)],
)
async def approve_transaction(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
    data: ActionRequest | None = None,
) -> dict:
    """Lender approves the request; an authorized hold is captured."""
    message = data.message if data else None
    return await _run_action(
        "approve",
        transaction_id,
        current_user,
        db,
        background_tasks,
        lambda: transaction_service.approve(db, transaction_id, current_user, message),
    )


@router.post(
    "/{transaction_id}/decline",
    response_model=ActionResponse,
    dependencies=[Depends(transaction_limiter)],
)
async def decline_transaction(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
    data: ActionRequest | None = None,
) -> dict:
    """Lender declines the request; the hold is released."""
    message = data.message if data else None
    return await _run_action(
        "decline",
        transaction_id,
        current_user,
        db,
        background_tasks,
        lambda: transaction_service.decline(db, transaction_id, current_user, message),
    )


@router.post(
    "/{transaction_id}/cancel",
    response_model=ActionResponse,
    dependencies=[Depends(transaction_limiter)],
)
async def cancel_transaction(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
) -> dict:
    """Borrower withdraws a pending request."""
    return await _run_action(
        "cancel",
        transaction_id,
        current_user,
        db,
        background_tasks,
        lambda: transaction_service.cancel(db, transaction_id, current_user),
    )


@router.post(
    "/{transaction_id}/confirm-payment",
    response_model=ActionResponse,
    dependencies=[Depends(transaction_limiter)],
)
async def confirm_payment(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
) -> dict:
    """Borrower finished the payment sheet; re-check the hold.

    Not stored for replay: an unfinished sheet answers with fresh
    credentials and the next call must query the processor again.
    """
    result = await transaction_service.confirm_payment(db, transaction_id, current_user)
    if result.notifications:
        background_tasks.add_task(notification_service.dispatch_all, result.notifications)
    return await _action_body(db, result, current_user)


@router.post(
    "/{transaction_id}/pickup",
    response_model=ActionResponse,
    dependencies=[Depends(transaction_limiter)],
)
async def confirm_pickup(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
    data: PickupRequest | None = None,
) -> dict:
    """Lender hands the item over."""
    condition = data.condition.value if data and data.condition else None
    return await _run_action(
        "confirm_pickup",
        transaction_id,
        current_user,
        db,
        background_tasks,
        lambda: transaction_service.confirm_pickup(db, transaction_id, current_user, condition),
    )


@router.post(
    "/{transaction_id}/mark-returned",
    response_model=ActionResponse,
    dependencies=[Depends(transaction_limiter)],
)
async def mark_returned(
    transaction_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
) -> dict:
    """Borrower reports the item as given back."""
    return await _run_action(
        "mark_returned",
        transaction_id,
        current_user,
        db,
        background_tasks,
        lambda: transaction_service.mark_returned(db, transaction_id, current_user),
    )


@router.post(
    "/{transaction_id}/return",
    response_model=ActionResponse,
    dependencies=[Depends(transaction_limiter)],
)
async def confirm_return(
    transaction_id: UUID,
    data: ReturnRequest,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
) -> dict:
    """Lender inspects the returned item; a worse condition opens a dispute."""
    return await _run_action(
        "confirm_return",
        transaction_id,
        current_user,
        db,
        background_tasks,
        lambda: transaction_service.confirm_return(
            db, transaction_id, current_user, data.condition.value, data.notes
        ),
    )


@router.post(
    "/{transaction_id}/rate",
    response_model=ActionResponse,
    dependencies=[Depends(rating_limiter)],
)
async def rate_transaction(
    transaction_id: UUID,
    data: RateRequest,
    current_user: CurrentUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
) -> dict:
    """Rate the other party once the item is back."""
    return await _run_action(
        "rate",
        transaction_id,
        current_user,
        db,
        background_tasks,
        lambda: transaction_service.rate(db, transaction_id, current_user, data.rating, data.comment),
        params={"rating": data.rating},
    )
