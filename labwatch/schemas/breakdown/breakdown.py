from pydantic import BaseModel, Field
from typing import Any, List, Optional
from datetime import datetime
from decimal import Decimal
from labwatch.models.shared.enums import BreakdownStatus, ReorderStatus, SweepTrigger, Urgency
from labwatch.schemas.alerts.alert import AlertResponse

class AlertResponseCreate(BaseModel):
    # Validated by the service so a non-boolean is reported as invalid input
    is_breakdown: Any = Field(..., alias="isBreakdown")
    reason: Optional[str] = None

    class Config:
        populate_by_name = True

class BreakdownCreate(BaseModel):
    equipment_id: str = Field(..., alias="equipmentId", min_length=1)
    reason: Optional[str] = None

    class Config:
        populate_by_name = True

class ReorderCreate(BaseModel):
    quantity: int = 1
    urgency: Urgency = Urgency.MEDIUM
    reason: Optional[str] = None
    estimated_cost: Optional[Decimal] = Field(None, alias="estimatedCost", ge=0)

    class Config:
        populate_by_name = True

class ReorderReview(BaseModel):
    action: str
    comments: Optional[str] = None

class ReorderResponse(BaseModel):
    id: int
    breakdown_id: int
    equipment_id: Optional[str] = None
    requested_by: int
    equipment_name: str
    quantity: int
    urgency: Urgency
    reason: str
    estimated_cost: Optional[float] = None
    status: ReorderStatus
    requested_at: Optional[datetime] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_comments: Optional[str] = None

class BreakdownResponse(BaseModel):
    id: int
    equipment_id: str
    equipment_name: str
    institute_id: int
    department: str
    status: BreakdownStatus
    reported_by: int
    reason: Optional[str] = None
    is_auto_detected: bool
    alert_id: Optional[int] = None
    reported_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    reorder_requests: Optional[List[ReorderResponse]] = None

class AlertResponseResult(BaseModel):
    alert: AlertResponse
    breakdown: Optional[BreakdownResponse] = None
    created: bool

class SweepResultResponse(BaseModel):
    trigger: SweepTrigger
    started_at: datetime
    finished_at: Optional[datetime] = None
    threshold_days: int
    matched: int
    alerted: int
    failed: int
    skipped: bool
    alert_ids: List[int]
