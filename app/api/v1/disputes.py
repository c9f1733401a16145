"""Dispute endpoints."""

from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Query

from app.api.deps import AdminUser, CurrentUser, DbSession
from app.core.idempotency import run_idempotent
from app.domain.dispute_state import DisputeStatus
from app.models.admin import Dispute
from app.schemas.dispute import DisputeListResponse, DisputeResolve, DisputeResponse, EvidenceCreate
from app.services.dispute_service import dispute_service
from app.services.notification_service import notification_service

router = APIRouter()


@router.get("/", response_model=DisputeListResponse)
async def list_disputes(
    current_user: CurrentUser,
    db: DbSession,
    status: DisputeStatus | None = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
) -> dict:
    """List disputes: every dispute for admins, the user's own otherwise."""
    items, total = await dispute_service.list_disputes(
        db, current_user, status=status.value if status else None, page=page, page_size=page_size
    )
    return {"items": items, "total": total, "page": page, "page_size": page_size}


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> Dispute:
    """Get dispute details."""
    return await dispute_service.get(db, dispute_id, current_user)


@router.post("/{dispute_id}/review", response_model=DisputeResponse)
async def start_review(
    dispute_id: UUID,
    admin: AdminUser,
    db: DbSession,
) -> Dispute:
    """Start reviewing a dispute (admin only)."""
    return await dispute_service.start_review(db, dispute_id, admin)


@router.post("/{dispute_id}/reopen", response_model=DisputeResponse)
async def reopen_dispute(
    dispute_id: UUID,
    admin: AdminUser,
    db: DbSession,
) -> Dispute:
    """Send a dispute back to open while more information is gathered (admin only)."""
    return await dispute_service.reopen(db, dispute_id, admin)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: UUID,
    data: DisputeResolve,
    admin: AdminUser,
    db: DbSession,
    background_tasks: BackgroundTasks,
) -> dict:
    """Resolve a dispute and settle the deposit (admin only)."""

    async def action() -> dict:
        dispute, notifications = await dispute_service.resolve(
            db,
            dispute_id,
            admin,
            outcome=data.outcome.value,
            lender_percent=data.lender_percent,
            notes=data.notes,
        )
        background_tasks.add_task(notification_service.dispatch_all, notifications)
        return DisputeResponse.model_validate(dispute).model_dump(mode="json")

    return await run_idempotent(
        "dispute_resolve",
        dispute_id,
        action,
        params={"outcome": data.outcome.value, "lender_percent": data.lender_percent},
    )


@router.post("/{dispute_id}/evidence", response_model=DisputeResponse)
async def add_evidence(
    dispute_id: UUID,
    data: EvidenceCreate,
    current_user: CurrentUser,
    db: DbSession,
) -> Dispute:
    """Attach evidence urls (borrower or lender)."""
    return await dispute_service.add_evidence(db, dispute_id, current_user, data.urls)
