from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, ForeignKey, JSON, Index
from labwatch.db.base import BaseModel

class Alert(BaseModel):
    __tablename__ = 'alerts'
    __table_args__ = (
        Index('ix_alerts_equipment_type_resolved', 'equipment_id', 'alert_type', 'is_resolved'),
    )

    equipment_id = Column(Integer, ForeignKey('equipment.id'), nullable=True)  # NULL for system alerts
    alert_type = Column(String(50), nullable=False)  # HIGH_TEMPERATURE, BREAKDOWN_CHECK, etc.
    severity = Column(String(20), default="MEDIUM")  # LOW, MEDIUM, HIGH, CRITICAL
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    alert_metadata = Column(JSON)
    is_resolved = Column(Boolean, default=False, nullable=False)
    resolved_by = Column(Integer)  # User ID
    resolved_at = Column(DateTime(timezone=True))
    resolution_notes = Column(Text)
