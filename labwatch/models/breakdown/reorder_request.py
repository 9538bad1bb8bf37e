from sqlalchemy import Column, Integer, String, DateTime, Text, Numeric, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
from labwatch.db.base import BaseModel
from labwatch.models.shared.enums import ReorderStatus, Urgency

class ReorderRequest(BaseModel):
    __tablename__ = 'reorder_requests'

    breakdown_id = Column(Integer, ForeignKey('breakdown_records.id'), nullable=False, index=True)
    requested_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    equipment_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    urgency = Column(SQLEnum(Urgency), nullable=False, default=Urgency.MEDIUM)
    reason = Column(Text, nullable=False)
    estimated_cost = Column(Numeric(12, 2))
    status = Column(SQLEnum(ReorderStatus), nullable=False, default=ReorderStatus.PENDING, index=True)
    requested_at = Column(DateTime(timezone=True), server_default=func.now())
    reviewed_by = Column(Integer)
    reviewed_at = Column(DateTime(timezone=True))
    review_comments = Column(Text)
