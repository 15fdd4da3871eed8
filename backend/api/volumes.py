"""
Volume API Routes for DockerFlow
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict

from audit import get_client_info
from auth.shared import get_current_user
from models.request_models import VolumeCreateRequest
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/volumes",
    tags=["volumes"],
    dependencies=[Depends(get_current_user)]
)


class VolumeResponse(BaseModel):
    id: str
    name: str
    driver: str
    mountpoint: Optional[str] = None
    size: int
    owner_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BackupResponse(BaseModel):
    id: str
    volume_id: str
    user_id: str
    path: str
    size: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("", response_model=List[VolumeResponse])
async def list_volumes(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return services.volumes.list_volumes(current_user['user_id'])


@router.post("", response_model=VolumeResponse, status_code=status.HTTP_201_CREATED)
async def create_volume(
    body: VolumeCreateRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.volumes.create(current_user, body.name, body.driver, get_client_info(request))


@router.post("/sync")
async def sync_volumes(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Reconcile the caller's volume records with Docker"""
    result = await services.reconciler.reconcile_volumes(current_user['user_id'])
    return result.to_dict()


@router.get("/backups", response_model=List[BackupResponse])
async def list_backups(
    volume_id: Optional[str] = Query(None),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return services.volumes.list_backups(current_user['user_id'], volume_id)


@router.post("/backups/{backup_id}/restore", response_model=BackupResponse)
async def restore_backup(
    backup_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.volumes.restore(current_user, backup_id, get_client_info(request))


@router.delete("/{volume_id}")
async def delete_volume(
    volume_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    await services.volumes.delete(current_user, volume_id, get_client_info(request))
    return {"success": True}


@router.post("/{volume_id}/backup", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
async def backup_volume(
    volume_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return await services.volumes.backup(current_user, volume_id, get_client_info(request))
