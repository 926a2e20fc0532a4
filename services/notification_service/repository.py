from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Notification


class NotificationRepository:

    @staticmethod
    async def create(db: AsyncSession, notification: Notification) -> Notification:
        db.add(notification)
        await db.commit()
        await db.refresh(notification)
        return notification

    @staticmethod
    async def list_notifications(db: AsyncSession, unread_only: bool = False, order_id: Optional[str] = None, limit: int = 100):
        stmt = select(Notification).order_by(Notification.id.desc()).limit(limit)
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        if order_id:
            stmt = stmt.where(Notification.order_id == order_id)
        result = await db.execute(stmt)
        return result.scalars().all()

    @staticmethod
    async def mark_read(db: AsyncSession, notification_id: int) -> Optional[Notification]:
        # The read flag is the only mutable column
        result = await db.execute(
            update(Notification)
            .where(Notification.id == notification_id)
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if result.rowcount == 0:
            return None
        found = await db.execute(
            select(Notification)
            .where(Notification.id == notification_id)
            .execution_options(populate_existing=True)
        )
        return found.scalars().first()
