from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional
from labwatch.api.dependencies import get_current_actor, get_inactivity_sweep, get_publisher
from labwatch.auth.permissions import Actor, POLICY_ROLES, require_role
from labwatch.core.database import get_async_session
from labwatch.models.shared.enums import ReorderStatus, SweepTrigger
from labwatch.schemas.breakdown.breakdown import (
    AlertResponseCreate, AlertResponseResult, BreakdownCreate, BreakdownResponse,
    ReorderCreate, ReorderResponse, ReorderReview, SweepResultResponse,
)
from labwatch.services.breakdown.breakdown_service import BreakdownService

router = APIRouter()

@router.get("/", response_model=List[BreakdownResponse])
async def get_breakdowns(
    include_closed: bool = Query(False),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor)
):
    """Open breakdown records in the caller's scope, with their reorder requests"""
    service = BreakdownService(db)
    return await service.list_open_breakdowns(actor, include_closed=include_closed)

@router.post("/alert/{alert_id}/respond", response_model=AlertResponseResult)
async def respond_to_alert(
    alert_id: int,
    body: AlertResponseCreate,
    db: AsyncSession = Depends(get_async_session),
    publisher=Depends(get_publisher),
    actor: Actor = Depends(get_current_actor)
):
    """Answer a breakdown check alert"""
    service = BreakdownService(db, publisher)
    return await service.respond_to_alert(alert_id, body.is_breakdown, actor, reason=body.reason)

@router.post("/add", response_model=BreakdownResponse, status_code=status.HTTP_201_CREATED)
async def report_breakdown(
    body: BreakdownCreate,
    db: AsyncSession = Depends(get_async_session),
    publisher=Depends(get_publisher),
    actor: Actor = Depends(get_current_actor)
):
    """Manually add equipment to the breakdown list"""
    service = BreakdownService(db, publisher)
    return await service.report_breakdown(body.equipment_id, actor, reason=body.reason)

@router.get("/reorders", response_model=List[ReorderResponse])
async def get_reorder_requests(
    status: Optional[ReorderStatus] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    actor: Actor = Depends(get_current_actor)
):
    """Reorder requests, optionally filtered by status"""
    service = BreakdownService(db)
    return await service.list_reorder_requests(actor, status=status)

@router.post("/reorders/{request_id}/review", response_model=ReorderResponse)
async def review_reorder_request(
    request_id: int,
    body: ReorderReview,
    db: AsyncSession = Depends(get_async_session),
    publisher=Depends(get_publisher),
    actor: Actor = Depends(get_current_actor)
):
    """Approve or reject a pending reorder request"""
    service = BreakdownService(db, publisher)
    return await service.review_reorder(request_id, body.action, actor, comments=body.comments)

@router.post("/sweep/run", response_model=SweepResultResponse)
async def run_inactivity_sweep(
    sweep=Depends(get_inactivity_sweep),
    actor: Actor = Depends(get_current_actor)
):
    """Run the inactivity sweep now; rejected while another sweep is running"""
    require_role(actor, POLICY_ROLES, "trigger the inactivity sweep")
    result = await sweep.run(trigger=SweepTrigger.MANUAL)
    return result.as_dict()

@router.post("/{breakdown_id}/reorder", response_model=ReorderResponse, status_code=status.HTTP_201_CREATED)
async def submit_reorder(
    breakdown_id: int,
    body: ReorderCreate,
    db: AsyncSession = Depends(get_async_session),
    publisher=Depends(get_publisher),
    actor: Actor = Depends(get_current_actor)
):
    """Request replacement parts for a reported breakdown"""
    service = BreakdownService(db, publisher)
    return await service.submit_reorder(
        breakdown_id,
        actor,
        reason=body.reason,
        quantity=body.quantity,
        urgency=body.urgency,
        estimated_cost=body.estimated_cost,
    )

@router.patch("/{breakdown_id}/resolve", response_model=BreakdownResponse)
async def resolve_breakdown(
    breakdown_id: int,
    db: AsyncSession = Depends(get_async_session),
    publisher=Depends(get_publisher),
    actor: Actor = Depends(get_current_actor)
):
    """Mark a breakdown as resolved"""
    service = BreakdownService(db, publisher)
    return await service.resolve_breakdown(breakdown_id, actor)
