from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey, UniqueConstraint
from labwatch.db.base import BaseModel

class Notification(BaseModel):
    __tablename__ = 'notifications'
    __table_args__ = (
        UniqueConstraint('alert_id', 'user_id', name='uq_notifications_alert_user'),
    )

    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    # Kept when the alert is resolved; history must survive
    alert_id = Column(Integer, ForeignKey('alerts.id'), nullable=True)
    notification_type = Column(String(50), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True))
