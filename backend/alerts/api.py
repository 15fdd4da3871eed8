"""
Alert API Routes for DockerFlow

Provides REST endpoints for:
- Listing alerts (own alerts; admins see all)
- Acknowledging alerts
- Resolving / dismissing alerts
- Deleting and purging alerts (admin)
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, ConfigDict

from audit import get_client_info
from auth.shared import get_current_user, require_admin
from models.request_models import AlertStatusUpdate
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/alerts",
    tags=["alerts"],
    dependencies=[Depends(get_current_user)]
)

STATUS_PATTERN = "^(PENDING|RESOLVED|DISMISSED)$"


# ==================== Request/Response Models ====================

class AlertResponse(BaseModel):
    """Alert response model"""
    id: str
    type: str
    severity: str
    title: str
    message: str
    user_id: str
    acknowledged: bool
    acknowledged_by_id: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AlertListResponse(BaseModel):
    """Alert list response"""
    alerts: List[AlertResponse]
    total: int
    page: int
    page_size: int


# ==================== Alert Endpoints ====================

@router.get("", response_model=AlertListResponse)
async def list_alerts(
    status: Optional[str] = Query(None, pattern=STATUS_PATTERN),
    user_id: Optional[str] = Query(None, description="Admin only: filter by user"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    result = services.alerts.list_alerts(
        current_user,
        status=status,
        user_id=user_id,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return AlertListResponse(alerts=result['alerts'], total=result['total'], page=page, page_size=page_size)


@router.post("/{alert_id}/acknowledge", response_model=AlertResponse)
async def acknowledge_alert(
    alert_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return services.alerts.acknowledge(alert_id, current_user, get_client_info(request))


@router.patch("/{alert_id}", response_model=AlertResponse)
async def update_alert_status(
    alert_id: str,
    body: AlertStatusUpdate,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Resolve or dismiss a pending alert"""
    return services.alerts.transition(alert_id, body.status, current_user, get_client_info(request))


@router.delete("/{alert_id}")
async def delete_alert(
    alert_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    services.alerts.delete(alert_id, admin)
    return {"success": True}


@router.delete("")
async def purge_alerts(
    status: Optional[str] = Query(None, pattern=STATUS_PATTERN),
    older_than: Optional[datetime] = Query(None),
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """Bulk delete alerts by status and/or age (admin)"""
    count = services.alerts.purge(status=status, older_than=older_than)
    return {"success": True, "deleted": count}
