from pydantic import BaseModel, Field, validator
from typing import Optional, List
from datetime import datetime
from labwatch.models.shared.enums import EquipmentStatusType

class TelemetryReport(BaseModel):
    """One device snapshot; omitted metrics leave the stored values untouched"""
    status: Optional[EquipmentStatusType] = None
    health_score: Optional[float] = Field(None, alias="healthScore")
    temperature: Optional[float] = None
    # Magnitudes; temperature, voltage and current may legitimately go below zero
    vibration: Optional[float] = Field(None, ge=0)
    energy_consumption: Optional[float] = Field(None, alias="energyConsumption", ge=0)
    pressure: Optional[float] = Field(None, ge=0)
    humidity: Optional[float] = Field(None, ge=0, le=100)
    rpm: Optional[float] = Field(None, ge=0)
    voltage: Optional[float] = None
    current: Optional[float] = None

    @validator('health_score')
    def validate_health_score(cls, v):
        if v is not None and not 0 <= v <= 100:
            raise ValueError('Health score must be between 0 and 100')
        return v

    class Config:
        populate_by_name = True

class EquipmentStatusResponse(BaseModel):
    equipment_id: str
    name: str
    institute_id: int
    department: str
    lab_id: int
    status: Optional[EquipmentStatusType] = None
    health_score: Optional[float] = None
    temperature: Optional[float] = None
    vibration: Optional[float] = None
    energy_consumption: Optional[float] = None
    last_used_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class SensorReadingResponse(BaseModel):
    timestamp: datetime
    temperature: Optional[float] = None
    vibration: Optional[float] = None
    energy_consumption: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    rpm: Optional[float] = None
    voltage: Optional[float] = None
    current: Optional[float] = None

class SensorDataResponse(BaseModel):
    equipment_id: str
    hours: int
    count: int
    readings: List[SensorReadingResponse]
