"""Notification Service for in-app records and push notifications.

Handles the delivery channels:
- In-app notifications (database)
- Push notifications (Firebase Cloud Messaging HTTP v1)

Dispatch runs after the transition it reports has been committed. A failed
delivery is logged and never propagates to the caller.
"""

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db_context
from app.domain.transaction_state import NotificationType
from app.models.notification import Notification
from app.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class PendingNotification:
    """A notification decided by a committed transition, awaiting dispatch."""

    user_id: UUID
    type: NotificationType
    transaction_id: UUID | None = None
    data: dict[str, Any] = field(default_factory=dict)


# (title, body) per type; bodies are formatted with the notification data
TEMPLATES: dict[NotificationType, tuple[str, str]] = {
    NotificationType.BORROW_REQUEST: ("New borrow request", "Someone wants to borrow {listing_title}."),
    NotificationType.REQUEST_APPROVED: ("Request approved", "Your request for {listing_title} was approved."),
    NotificationType.REQUEST_DECLINED: ("Request declined", "Your request for {listing_title} was declined."),
    NotificationType.REQUEST_CANCELLED: ("Request cancelled", "The request for {listing_title} was cancelled."),
    NotificationType.PAYMENT_AUTHORIZED: ("Payment authorized", "Payment for {listing_title} is on hold."),
    NotificationType.PICKUP_CONFIRMED: ("Pickup confirmed", "Enjoy {listing_title}!"),
    NotificationType.RETURN_MARKED: ("Item returned", "{listing_title} is on its way back. Please confirm the return."),
    NotificationType.RETURN_CONFIRMED: ("Return confirmed", "Thanks for returning {listing_title}. Leave a rating!"),
    NotificationType.DISPUTE_OPENED: ("Dispute opened", "{listing_title} was returned in worse condition."),
    NotificationType.DISPUTE_RESOLVED: ("Dispute resolved", "The dispute over {listing_title} has been resolved."),
    NotificationType.RATING_RECEIVED: ("New rating", "You received a rating for {listing_title}."),
}


class NotificationService:
    """Service for sending notifications across all channels."""

    def __init__(self) -> None:
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=10.0)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    # ==================== IN-APP NOTIFICATIONS ====================

    async def create_notification(
        self,
        db: AsyncSession,
        user_id: UUID,
        title: str,
        body: str,
        notification_type: str,
        data: dict[str, Any] | None = None,
        transaction_id: UUID | None = None,
    ) -> Notification:
        """Create an in-app notification."""
        notification = Notification(
            user_id=user_id,
            title=title,
            body=body,
            notification_type=notification_type,
            data=data,
            transaction_id=transaction_id,
        )
        db.add(notification)
        await db.flush()
        return notification

    # ==================== PUSH NOTIFICATIONS (FIREBASE) ====================

    async def send_push_notification(
        self,
        push_token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> bool:
        """Send a push notification via Firebase Cloud Messaging.

        Args:
            push_token: Device FCM token
            title: Notification title
            body: Notification body
            data: Additional data payload (values are sent as strings)

        Returns:
            bool: True if sent successfully
        """
        if not settings.firebase_project_id or not settings.firebase_access_token:
            return False

        message = {
            "message": {
                "token": push_token,
                "notification": {"title": title, "body": body},
                "data": {k: str(v) for k, v in (data or {}).items()},
                "android": {"priority": "high"},
                "apns": {"payload": {"aps": {"sound": "default"}}},
            }
        }
        try:
            response = await self.http_client.post(
                f"https://fcm.googleapis.com/v1/projects/{settings.firebase_project_id}/messages:send",
                headers={"Authorization": f"Bearer {settings.firebase_access_token}"},
                json=message,
            )
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Push delivery failed: {e}")
            return False

    # ==================== HIGH-LEVEL NOTIFICATION METHODS ====================

    async def dispatch(
        self,
        user_id: UUID,
        notification_type: NotificationType | str,
        data: dict[str, Any] | None = None,
        transaction_id: UUID | None = None,
    ) -> None:
        """Record and push one notification; never raises."""
        notification_type = NotificationType(notification_type)
        data = data or {}
        title, template = TEMPLATES[notification_type]
        try:
            body = template.format(**{"listing_title": "your item", **data})
        except (KeyError, IndexError):
            body = template

        try:
            async with get_db_context() as db:
                result = await db.execute(select(User).where(User.id == user_id))
                user = result.scalar_one_or_none()
                if not user:
                    return

                notification = await self.create_notification(
                    db=db,
                    user_id=user_id,
                    title=title,
                    body=body,
                    notification_type=notification_type.value,
                    data=data,
                    transaction_id=transaction_id,
                )

                if user.push_token:
                    payload = {"type": notification_type.value, "notification_id": str(notification.id)}
                    if transaction_id:
                        payload["transaction_id"] = str(transaction_id)
                    notification.push_sent = await self.send_push_notification(
                        push_token=user.push_token,
                        title=title,
                        body=body,
                        data=payload,
                    )
        except Exception:
            logger.exception(f"Failed to dispatch {notification_type.value} to user {user_id}")

    async def dispatch_all(self, notifications: list[PendingNotification]) -> None:
        for pending in notifications:
            await self.dispatch(
                pending.user_id,
                pending.type,
                data=pending.data,
                transaction_id=pending.transaction_id,
            )


notification_service = NotificationService()
