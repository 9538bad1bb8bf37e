from fastapi import APIRouter
from labwatch.api.v1.endpoints.alerts import alerts
from labwatch.api.v1.endpoints.breakdown import breakdowns
from labwatch.api.v1.endpoints.notification import notifications
from labwatch.api.v1.endpoints.realtime import realtime
from labwatch.api.v1.endpoints.telemetry import monitoring

api_router = APIRouter()

# Telemetry routes
api_router.include_router(monitoring.router, prefix="/monitoring", tags=["Monitoring"])

# Alert and notification routes
api_router.include_router(alerts.router, prefix="/alerts", tags=["Alerts"])
api_router.include_router(notifications.router, prefix="/notifications", tags=["Notifications"])

# Breakdown and reorder routes
api_router.include_router(breakdowns.router, prefix="/breakdowns", tags=["Breakdowns"])

# Real-time push
api_router.include_router(realtime.router, prefix="/realtime", tags=["Realtime"])
