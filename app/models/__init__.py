"""Database models."""

from app.models.admin import AuditLog, Dispute
from app.models.listing import Listing
from app.models.notification import Notification
from app.models.rating import Rating
from app.models.transaction import BorrowTransaction
from app.models.user import User

__all__ = [
    # User
    "User",
    # Listing
    "Listing",
    # Transaction
    "BorrowTransaction",
    "Rating",
    # Notification
    "Notification",
    # Admin
    "AuditLog",
    "Dispute",
]
