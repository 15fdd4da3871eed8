"""
Quota API Routes for DockerFlow

Users read their own quota and usage; admins read and edit anyone's.
"""

import logging
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict

from audit import ActivityType, get_client_info, log_activity
from auth.shared import get_current_user, require_admin
from database import UserQuota, default_quota_values
from quota import ResourceKind
from models.request_models import QuotaUpdateRequest
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["quotas"])


class QuotaResponse(BaseModel):
    user_id: str
    tier: str
    cpu_limit: int
    memory_limit: int
    storage_limit: int
    cpu_threshold: float
    memory_threshold: float
    storage_threshold: float

    model_config = ConfigDict(from_attributes=True)


class UsageResponse(BaseModel):
    quota: QuotaResponse
    storage_used: int
    cpu_used: int
    memory_used: int


def _usage(services: Services, user_id: str, quota) -> UsageResponse:
    return UsageResponse(
        quota=QuotaResponse.model_validate(quota),
        storage_used=services.quota.current_usage(user_id, ResourceKind.STORAGE),
        cpu_used=services.quota.current_usage(user_id, ResourceKind.CPU),
        memory_used=services.quota.current_usage(user_id, ResourceKind.MEMORY),
    )


@router.get("/api/quota", response_model=UsageResponse)
async def get_my_quota(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    quota = services.db.get_or_create_quota(current_user['user_id'], current_user.get('tier'))
    return _usage(services, current_user['user_id'], quota)


@router.get("/api/admin/users/{user_id}/quota", response_model=UsageResponse)
async def get_user_quota(
    user_id: str,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """Read-only: a user without a quota row yet is shown the free tier defaults"""
    quota = services.db.get_quota(user_id)
    if quota is None:
        quota = UserQuota(user_id=user_id, **default_quota_values(None))
    return _usage(services, user_id, quota)


@router.put("/api/admin/users/{user_id}/quota", response_model=QuotaResponse)
async def update_user_quota(
    user_id: str,
    body: QuotaUpdateRequest,
    request: Request,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """Admin edit of a user's limits and thresholds"""
    updates = body.model_dump(exclude_none=True)
    quota = services.db.update_quota(user_id, updates)

    with services.db.get_session() as session:
        log_activity(
            session,
            ActivityType.USER_UPDATE,
            f"Quota updated for user {user_id}",
            admin['user_id'],
            details={'targetUserId': user_id, 'changes': updates},
            auto_commit=True,
            **get_client_info(request),
        )

    logger.info(f"Admin {admin['user_id']} updated quota for user {user_id}: {updates}")
    return quota
