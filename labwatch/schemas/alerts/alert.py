from pydantic import BaseModel
from typing import Any, Dict, Optional
from datetime import datetime

class AlertResponse(BaseModel):
    id: int
    equipment_id: Optional[str] = None
    equipment_name: Optional[str] = None
    alert_type: str
    severity: str
    title: str
    message: str
    metadata: Dict[str, Any] = {}
    is_resolved: bool
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[int] = None
    resolution_notes: Optional[str] = None
    created_at: Optional[datetime] = None

class AlertResolve(BaseModel):
    notes: Optional[str] = None
