from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from labwatch.schemas.common.pagination import PaginatedResponse

class NotificationResponse(BaseModel):
    id: int
    user_id: int
    alert_id: Optional[int] = None
    notification_type: str
    title: str
    message: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

class NotificationPage(PaginatedResponse[NotificationResponse]):
    unread_count: int
