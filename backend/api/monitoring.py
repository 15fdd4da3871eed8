"""
Resource monitoring API Routes for DockerFlow
Usage reports are checked against the caller's alert thresholds.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends

from alerts.api import AlertResponse
from auth.shared import get_current_user
from models.request_models import ResourceUsageReport
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/monitoring",
    tags=["monitoring"],
    dependencies=[Depends(get_current_user)]
)


@router.post("/usage", response_model=List[AlertResponse])
async def report_usage(
    body: ResourceUsageReport,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Evaluate a usage report; returns the alerts it raised"""
    return services.alerts.evaluate_usage(
        current_user['user_id'],
        cpu_percent=body.cpu_usage,
        memory_percent=body.memory_usage,
        tier=current_user.get('tier'),
    )
