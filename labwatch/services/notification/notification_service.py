from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, and_, func, desc
from labwatch.core.exceptions import NotFoundError
from labwatch.models.alerts.notification import Notification
from labwatch.services.alerts.alert_service import notification_to_dict
from labwatch.utils.date_time_serializer import utcnow


class NotificationService:
    """A user's own notification inbox"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_notifications(
        self,
        user_id: int,
        page_index: int = 1,
        page_size: int = 20,
        is_read: Optional[bool] = None,
    ) -> Dict[str, Any]:
        conditions = [Notification.user_id == user_id, Notification.is_deleted == False]
        if is_read is not None:
            conditions.append(Notification.is_read == is_read)

        total = await self.db.execute(select(func.count(Notification.id)).where(and_(*conditions)))
        result = await self.db.execute(
            select(Notification)
            .where(and_(*conditions))
            .order_by(desc(Notification.created_at), desc(Notification.id))
            .offset((page_index - 1) * page_size)
            .limit(page_size)
        )
        return {
            "page_index": page_index,
            "page_size": page_size,
            "count": total.scalar() or 0,
            "unread_count": await self.get_unread_count(user_id),
            "data": [notification_to_dict(n) for n in result.scalars().all()],
        }

    async def get_unread_count(self, user_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Notification.id)).where(and_(
                Notification.user_id == user_id,
                Notification.is_read == False,
                Notification.is_deleted == False,
            ))
        )
        return result.scalar() or 0

    async def mark_as_read(self, notification_id: int, user_id: int) -> Dict[str, Any]:
        result = await self.db.execute(
            select(Notification).where(and_(
                Notification.id == notification_id,
                Notification.user_id == user_id,
                Notification.is_deleted == False,
            ))
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotFoundError("Notification not found")

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utcnow()
            notification.updated_at = notification.read_at
            await self.db.commit()
        return notification_to_dict(notification)

    async def mark_all_as_read(self, user_id: int) -> int:
        now = utcnow()
        result = await self.db.execute(
            update(Notification)
            .where(and_(Notification.user_id == user_id, Notification.is_read == False))
            .values(is_read=True, read_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount
