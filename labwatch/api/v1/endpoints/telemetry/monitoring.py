from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from labwatch.api.dependencies import (
    get_current_actor, get_dispatcher, get_publisher, get_session_factory, verify_device_key,
)
from labwatch.auth.permissions import Actor
from labwatch.core.database import get_async_session
from labwatch.schemas.telemetry.telemetry import EquipmentStatusResponse, SensorDataResponse, TelemetryReport
from labwatch.services.telemetry.telemetry_service import TelemetryService

router = APIRouter()

@router.post("/status/{equipment_id}", response_model=EquipmentStatusResponse)
async def report_telemetry(
    equipment_id: str,
    report: TelemetryReport,
    db: AsyncSession = Depends(get_async_session),
    publisher=Depends(get_publisher),
    dispatcher=Depends(get_dispatcher),
    session_factory=Depends(get_session_factory),
    _device_key=Depends(verify_device_key),
):
    """Device telemetry intake; succeeds once the status and reading are stored"""
    service = TelemetryService(db, publisher=publisher, dispatcher=dispatcher, session_factory=session_factory)
    return await service.report_telemetry(equipment_id, report.model_dump(exclude_unset=True))

@router.get("/realtime", response_model=List[EquipmentStatusResponse])
async def get_realtime_status(
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor)
):
    """Latest status of every piece of equipment in the caller's scope"""
    service = TelemetryService(db)
    return await service.get_realtime_status(actor)

@router.get("/sensor/{equipment_id}", response_model=SensorDataResponse)
async def get_sensor_data(
    equipment_id: str,
    hours: int = Query(24, ge=1, le=24 * 30),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor)
):
    """Raw readings for one piece of equipment over the last ``hours``"""
    service = TelemetryService(db)
    return await service.get_sensor_data(equipment_id, actor, hours=hours)
