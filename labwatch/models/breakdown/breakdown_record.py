from sqlalchemy import Column, Integer, DateTime, Boolean, Text, ForeignKey, Index, text, Enum as SQLEnum
from sqlalchemy.sql import func
from labwatch.db.base import BaseModel
from labwatch.models.shared.enums import BreakdownStatus

_OPEN_PREDICATE = text("status IN ('REPORTED', 'REORDER_PENDING', 'REORDER_APPROVED')")

class BreakdownRecord(BaseModel):
    __tablename__ = 'breakdown_records'
    __table_args__ = (
        # At most one open record per equipment
        Index(
            'uq_breakdown_records_open_equipment',
            'equipment_id',
            unique=True,
            sqlite_where=_OPEN_PREDICATE,
            postgresql_where=_OPEN_PREDICATE,
        ),
    )

    equipment_id = Column(Integer, ForeignKey('equipment.id'), nullable=False, index=True)
    status = Column(SQLEnum(BreakdownStatus), nullable=False, default=BreakdownStatus.REPORTED)
    reported_by = Column(Integer, ForeignKey('users.id'), nullable=False)
    reason = Column(Text)
    is_auto_detected = Column(Boolean, default=False, nullable=False)
    alert_id = Column(Integer, ForeignKey('alerts.id'), nullable=True)  # Source BREAKDOWN_CHECK alert
    reported_at = Column(DateTime(timezone=True), server_default=func.now())
    resolved_at = Column(DateTime(timezone=True))
    resolved_by = Column(Integer)
