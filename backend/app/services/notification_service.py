"""
Notification Service.

Writes in-app notifications. Delivery over push, SMS or email happens
elsewhere and reads these rows.
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from datetime import datetime
from typing import Optional, Dict, Any, Iterable

from backend.app.models.notification import Notification, NotificationType
from backend.app.models.user import User


class NotificationService:

    @staticmethod
    async def notify(
        db: AsyncSession,
        user_id: int,
        type: NotificationType,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """Create a single notification."""
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        db.add(notif)
        await db.flush()  # Caller commits
        return notif

    @staticmethod
    async def notify_organization(
        db: AsyncSession,
        organization_id: Optional[int],
        type: NotificationType,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exclude_user_ids: Iterable[int] = (),
    ) -> int:
        """
        Fan a notification out to every active user of an organization.

        Returns:
            Number of notifications created
        """
        if organization_id is None:
            return 0

        result = await db.execute(
            select(User.id).where(
                User.organization_id == organization_id,
                User.is_active == True
            )
        )
        excluded = set(exclude_user_ids)
        user_ids = [uid for uid in result.scalars().all() if uid not in excluded]

        notifications = [
            Notification(
                user_id=uid,
                type=type,
                title=title,
                message=message,
                metadata_payload=metadata
            )
            for uid in user_ids
        ]

        if notifications:
            db.add_all(notifications)
            await db.flush()

        return len(notifications)

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int, user_id: int) -> bool:
        """Mark one of the user's notifications as read."""
        stmt = update(Notification).where(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).values(
            is_read=True,
            read_at=datetime.utcnow()
        )
        result = await db.execute(stmt)
        return result.rowcount > 0

    @staticmethod
    async def mark_all_read(db: AsyncSession, user_id: int) -> int:
        """Mark all of the user's unread notifications as read."""
        stmt = update(Notification).where(
            Notification.user_id == user_id,
            Notification.is_read == False
        ).values(
            is_read=True,
            read_at=datetime.utcnow()
        )
        result = await db.execute(stmt)
        return result.rowcount
