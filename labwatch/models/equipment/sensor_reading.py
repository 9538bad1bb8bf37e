from sqlalchemy import Column, Integer, Float, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from labwatch.models.base import Base

class SensorReading(Base):
    """Append-only raw telemetry"""
    __tablename__ = 'sensor_readings'
    __table_args__ = (
        Index('ix_sensor_readings_equipment_timestamp', 'equipment_id', 'timestamp'),
    )

    id = Column(Integer, primary_key=True)
    equipment_id = Column(Integer, ForeignKey('equipment.id'), nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    temperature = Column(Float)
    vibration = Column(Float)
    energy_consumption = Column(Float)
    pressure = Column(Float)
    humidity = Column(Float)
    rpm = Column(Float)
    voltage = Column(Float)
    current = Column(Float)
