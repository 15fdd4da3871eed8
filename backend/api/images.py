"""
Image API Routes for DockerFlow

Pull and build answer with a newline-delimited JSON progress stream.
Admins can add tags to existing images.
"""

import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict

from audit import get_client_info
from auth.shared import get_current_user, require_admin
from models.request_models import ImagePullRequest, ImageBuildRequest, ImageTagRequest
from services import Services, get_services
from utils.progress_stream import MEDIA_TYPE

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/images",
    tags=["images"],
    dependencies=[Depends(get_current_user)]
)


class ImageResponse(BaseModel):
    id: str
    name: str
    tag: str
    size: int
    owner_id: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


@router.get("", response_model=List[ImageResponse])
async def list_images(
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return services.images.list_images(current_user['user_id'])


@router.post("/pull")
async def pull_image(
    body: ImagePullRequest,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    """
    Pull an image, streaming progress.

    The quota check runs before the stream opens, so a denied pull is an
    ordinary 400 error and nothing is recorded.
    """
    await services.images.prepare_pull(current_user, body.image, body.tag)
    return StreamingResponse(
        services.images.pull(current_user, body.image, body.tag, get_client_info(request)),
        media_type=MEDIA_TYPE,
    )


@router.post("/build")
async def build_image(
    body: ImageBuildRequest,
    request: Request,
    current_user: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """Build an image from Dockerfile text (admin only), streaming build output"""
    services.images.prepare_build(current_user)
    return StreamingResponse(
        services.images.build(current_user, body.dockerfile, body.image_name, get_client_info(request)),
        media_type=MEDIA_TYPE,
    )


@router.delete("/{image_id}")
async def delete_image(
    image_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    await services.images.remove(current_user, image_id, get_client_info(request))
    return {"success": True}


@router.patch("/{image_id}/tag", response_model=ImageResponse)
async def tag_image(
    image_id: str,
    body: ImageTagRequest,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    """Add a repository:tag reference to an existing image (admin only)"""
    return await services.images.tag(image_id, body.repository, body.tag)
