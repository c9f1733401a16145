"""Borrow transaction Pydantic schemas."""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.domain.condition import ItemCondition


class TransactionCreate(BaseModel):
    """Schema for creating a borrow request."""

    listing_id: UUID
    start_date: date
    end_date: date
    message: str | None = Field(None, max_length=500)
    payment_method_id: str | None = Field(None, max_length=255)


class ActionRequest(BaseModel):
    """Optional note attached to approve or decline."""

    message: str | None = Field(None, max_length=500)


class PickupRequest(BaseModel):
    """Condition recorded at pickup; defaults to the listing's condition."""

    condition: ItemCondition | None = None


class ReturnRequest(BaseModel):
    """Condition recorded by the lender when the item comes back."""

    condition: ItemCondition
    notes: str | None = Field(None, max_length=1000)


class RateRequest(BaseModel):
    """Rating of the other party."""

    rating: int = Field(..., ge=1, le=5)
    comment: str | None = Field(None, max_length=1000)


class PaymentSheetResponse(BaseModel):
    """Credentials for the mobile payment sheet."""

    client_secret: str | None = None
    ephemeral_key: str | None = None
    customer_id: str | None = None


class TransactionResponse(BaseModel):
    """Schema for transaction response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    listing_id: UUID
    borrower_id: UUID
    lender_id: UUID

    status: str
    payment_status: str

    start_date: date
    end_date: date
    rental_days: int

    daily_rate: Decimal
    rental_fee: Decimal
    deposit_amount: Decimal
    platform_fee: Decimal
    lender_payout: Decimal
    total_amount: Decimal

    condition_at_pickup: str | None = None
    condition_at_return: str | None = None
    condition_notes: str | None = None
    borrower_message: str | None = None
    lender_response: str | None = None

    actual_pickup_at: datetime | None = None
    actual_return_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    # Viewer projection
    my_rating: int | None = None
    is_borrower: bool = False
    is_lender: bool = False


class TransactionListResponse(BaseModel):
    """Paginated transaction list."""

    items: list[TransactionResponse]
    total: int
    page: int
    page_size: int


class ActionResponse(BaseModel):
    """Result of a state-changing action.

    ``noop`` is true when the request was already satisfied; the transaction
    is returned unchanged.
    """

    transaction: TransactionResponse
    noop: bool = False
    message: str | None = None
    requires_payment: bool = False
    payment_sheet: PaymentSheetResponse | None = None


class AccessCheckResponse(BaseModel):
    """Access gate decision for a listing."""

    can_access: bool
    reason: str | None = None
    required_tier: str | None = None


class PaymentStatusResponse(BaseModel):
    """Live payment status used to reconcile after a failure."""

    transaction_id: UUID
    status: str
    payment_status: str
    intent_status: str | None = None
    requires_payment: bool
