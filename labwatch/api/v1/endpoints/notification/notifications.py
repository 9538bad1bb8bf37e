from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from labwatch.api.dependencies import get_current_user
from labwatch.core.database import get_async_session
from labwatch.models.auth.user import User
from labwatch.schemas.notification.notification import NotificationPage, NotificationResponse
from labwatch.services.notification.notification_service import NotificationService

router = APIRouter()

@router.get("/", response_model=NotificationPage)
async def get_notifications(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    is_read: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get current user's notifications"""
    service = NotificationService(db)
    return await service.get_user_notifications(current_user.id, page_index, page_size, is_read)

@router.get("/unread-count")
async def get_unread_count(
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Get count of unread notifications"""
    service = NotificationService(db)
    return {"unread_count": await service.get_unread_count(current_user.id)}

@router.put("/read-all")
async def mark_all_notifications_read(
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Mark all notifications as read"""
    service = NotificationService(db)
    updated = await service.mark_all_as_read(current_user.id)
    return {"message": "All notifications marked as read", "updated": updated}

@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    db: AsyncSession = Depends(get_async_session),
    current_user: User = Depends(get_current_user)
):
    """Mark notification as read"""
    service = NotificationService(db)
    return await service.mark_as_read(notification_id, current_user.id)
