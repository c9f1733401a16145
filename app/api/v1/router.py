"""Main API router that includes all endpoint routers."""

from fastapi import APIRouter

from app.api.v1 import disputes, transactions

api_router = APIRouter()

# Transactions
api_router.include_router(transactions.router, prefix="/transactions", tags=["Transactions"])

# Disputes
api_router.include_router(disputes.router, prefix="/disputes", tags=["Disputes"])
