from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from labwatch.api.dependencies import get_current_actor, get_publisher
from labwatch.auth.permissions import Actor
from labwatch.core.database import get_async_session
from labwatch.models.shared.enums import Severity
from labwatch.schemas.alerts.alert import AlertResolve, AlertResponse
from labwatch.schemas.common.pagination import PaginatedResponse
from labwatch.services.alerts.alert_service import AlertService

router = APIRouter()

@router.get("/", response_model=PaginatedResponse[AlertResponse])
async def get_alerts(
    page_index: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    is_resolved: Optional[bool] = Query(None),
    severity: Optional[Severity] = Query(None),
    equipment_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor)
):
    """Alerts visible to the caller, newest first"""
    service = AlertService(db)
    return await service.list_alerts(
        actor,
        page_index=page_index,
        page_size=page_size,
        is_resolved=is_resolved,
        severity=severity,
        equipment_external_id=equipment_id,
    )

@router.put("/{alert_id}/resolve", response_model=AlertResponse)
async def resolve_alert(
    alert_id: int,
    body: Optional[AlertResolve] = None,
    db: AsyncSession = Depends(get_async_session),
    publisher=Depends(get_publisher),
    actor: Actor = Depends(get_current_actor)
):
    """Resolve an alert; resolving twice is a no-op"""
    service = AlertService(db, publisher)
    return await service.resolve_alert(alert_id, actor, notes=body.notes if body else None)
