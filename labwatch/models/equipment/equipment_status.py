from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
from labwatch.models.base import Base
from labwatch.models.shared.enums import EquipmentStatusType

class EquipmentStatus(Base):
    """Latest known state of one piece of equipment, one row per equipment"""
    __tablename__ = 'equipment_status'

    id = Column(Integer, primary_key=True, index=True)
    equipment_id = Column(Integer, ForeignKey('equipment.id'), unique=True, nullable=False)
    status = Column(SQLEnum(EquipmentStatusType), nullable=False, default=EquipmentStatusType.OPERATIONAL)
    health_score = Column(Float)
    temperature = Column(Float)
    vibration = Column(Float)
    energy_consumption = Column(Float)
    last_used_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())
