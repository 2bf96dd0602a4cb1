"""
Notification Service.

Creates in-app notifications for payment and payout events.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Dict, Any

from edumarket.app.models.notification import Notification, NotificationType


class NotificationService:

    @staticmethod
    async def create_notification(
        db: AsyncSession,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.INFO,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            payload=metadata
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    @staticmethod
    async def notify_payment_confirmed(db: AsyncSession, student_id: int, meeting, transaction_id: str) -> Notification:
        return await NotificationService.create_notification(
            db,
            user_id=student_id,
            title="Payment Confirmed",
            message=f"Your payment of {meeting.price} for \"{meeting.subject}\" has been confirmed",
            type=NotificationType.PAYMENT_UPDATE,
            metadata={
                "action": "payment_confirmed",
                "meeting_id": meeting.id,
                "transaction_id": transaction_id
            }
        )

    @staticmethod
    async def notify_payout_status(db: AsyncSession, payout) -> Notification:
        status_value = payout.status.value
        return await NotificationService.create_notification(
            db,
            user_id=payout.teacher_id,
            title=f"Payout {status_value}",
            message=f"Your payout request of {payout.amount} is now {status_value}",
            type=NotificationType.PAYOUT_UPDATE,
            metadata={"action": f"payout_{status_value}", "payout_id": payout.id}
        )
