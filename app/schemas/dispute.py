"""Dispute Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.domain.dispute_state import ResolutionOutcome


class DisputeResolve(BaseModel):
    """Schema for resolving a dispute."""

    outcome: ResolutionOutcome
    lender_percent: int | None = Field(None, ge=0, le=100)
    notes: str | None = Field(None, max_length=2000)


class EvidenceCreate(BaseModel):
    """Evidence urls to attach."""

    urls: list[str] = Field(..., min_length=1, max_length=10)


class DisputeResponse(BaseModel):
    """Schema for dispute response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    transaction_id: UUID
    opened_by_id: UUID
    reason: str
    evidence_urls: list[str] = []
    status: str

    resolution_outcome: str | None = None
    lender_percent: int | None = None
    deposit_to_lender: Decimal | None = None
    deposit_to_borrower: Decimal | None = None
    organizer_fee: Decimal | None = None
    resolution_notes: str | None = None
    resolved_by_id: UUID | None = None
    resolved_at: datetime | None = None

    created_at: datetime
    updated_at: datetime


class DisputeListResponse(BaseModel):
    """Paginated dispute list."""

    items: list[DisputeResponse]
    total: int
    page: int
    page_size: int
