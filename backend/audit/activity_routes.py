"""
Activity API Routes for DockerFlow

Admin-only listing of the activity trail, newest first.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict

from audit.activity_logger import ActivityType
from auth.shared import require_admin
from services import Services, get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin/activities", tags=["activities"])

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 25


class ActivityEntry(BaseModel):
    """Single activity entry"""
    id: str
    type: str
    description: str
    user_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActivityListResponse(BaseModel):
    """Paginated list of activities"""
    entries: List[ActivityEntry]
    total: int
    page: int
    page_size: int
    total_pages: int


@router.get("", response_model=ActivityListResponse, dependencies=[Depends(require_admin)])
async def list_activities(
    user_id: Optional[str] = Query(None),
    type: Optional[ActivityType] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    services: Services = Depends(get_services)
):
    """List activities, optionally filtered by user and type. Admin only."""
    result = services.db.list_activities(
        user_id=user_id,
        activity_type=type.value if type else None,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    total = result['total']
    return ActivityListResponse(
        entries=result['items'],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=(total + page_size - 1) // page_size if total else 0,
    )
