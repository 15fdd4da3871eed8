"""
Container API Routes for DockerFlow

Provides REST endpoints for:
- Listing the caller's containers (reconciled against Docker first)
- Provisioning a container, with subdomain and host port availability checks
- Lifecycle actions (start, stop, restart, delete)
- Stats snapshots and log tails
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict

from audit import get_client_info
from auth.shared import get_current_user
from docker_monitor.operations import ContainerAction
from docker_monitor.stats import DEFAULT_LOG_TAIL, MAX_LOG_TAIL
from models.request_models import ContainerCreateRequest
from services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/containers",
    tags=["containers"],
    dependencies=[Depends(get_current_user)]
)


# ==================== Response Models ====================

class ContainerResponse(BaseModel):
    id: str
    docker_id: Optional[str] = None
    name: str
    image_ref: str
    status: str
    ports: Dict[str, int] = {}
    volumes: Dict[str, str] = {}
    env: Dict[str, str] = {}
    subdomain: Optional[str] = None
    owner_id: str
    cpu_limit: Optional[int] = None
    memory_limit: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ContainerListResponse(BaseModel):
    containers: List[ContainerResponse]
    sync: dict


class ActionResponse(BaseModel):
    message: str
    previousState: str
    newState: str
    containerId: str
    containerName: str


class LogsResponse(BaseModel):
    logs: List[str]


class SubdomainCheckResponse(BaseModel):
    available: bool
    message: str


class PortCheckResponse(BaseModel):
    port: int
    available: bool


# ==================== Routes ====================

@router.get("", response_model=ContainerListResponse)
async def list_containers(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """List the caller's containers after syncing records with Docker"""
    owner_id = current_user['user_id']
    result = await services.reconciler.reconcile(owner_id)
    containers = services.db.list_containers(owner_id)
    return ContainerListResponse(containers=containers, sync=result.to_dict())


@router.post("", response_model=ContainerResponse, status_code=status.HTTP_201_CREATED)
async def create_container(
    body: ContainerCreateRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Provision and start a container for the caller"""
    return await services.provisioner.create(current_user, body, get_client_info(request))


@router.get("/check-subdomain", response_model=SubdomainCheckResponse)
async def check_subdomain(
    subdomain: Optional[str] = Query(None),
    services: Services = Depends(get_services)
):
    """409 when the subdomain is taken or reserved, 400 when it is malformed"""
    return services.provisioner.check_subdomain(subdomain)


@router.get("/check-port", response_model=PortCheckResponse)
async def check_port(
    port: int = Query(..., ge=1, le=65535),
    services: Services = Depends(get_services)
):
    """Suggest a free host port, the requested one when available"""
    suggested = await services.provisioner.suggest_port(port)
    return PortCheckResponse(port=suggested, available=suggested == port)


@router.post("/{container_id}/actions/{action}", response_model=ActionResponse)
async def container_action(
    container_id: str,
    action: ContainerAction,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Start, stop, restart or delete a container"""
    result = await services.orchestrator.apply(
        container_id, action, current_user, get_client_info(request)
    )
    return result.to_dict()


@router.delete("/{container_id}", response_model=ActionResponse)
async def delete_container(
    container_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """Force-remove a container and its record"""
    result = await services.orchestrator.apply(
        container_id, ContainerAction.DELETE, current_user, get_client_info(request)
    )
    return result.to_dict()


@router.get("/{container_id}/stats")
async def container_stats(
    container_id: str,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    stats = await services.stats.stats(container_id, current_user)
    return stats.to_dict()


@router.get("/{container_id}/logs", response_model=LogsResponse)
async def container_logs(
    container_id: str,
    tail: int = Query(DEFAULT_LOG_TAIL, ge=1, le=MAX_LOG_TAIL),
    since: int = Query(0, ge=0),
    timestamps: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    lines = await services.stats.logs(container_id, current_user, tail=tail, since=since, timestamps=timestamps)
    return LogsResponse(logs=lines)
