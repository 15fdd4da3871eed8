"""
Request Models for DockerFlow API Endpoints
Pydantic models for API request validation
"""

import re
from typing import Optional, Dict

from pydantic import BaseModel, Field, field_validator, model_validator

from database import MIN_STORAGE_LIMIT, MAX_STORAGE_LIMIT

# Docker object names and subdomains share one character set
NAME_PATTERN = r'^[a-zA-Z0-9-]+$'
ENV_KEY_PATTERN = re.compile(r'^[A-Za-z_][A-Za-z0-9_.]*$')
IMAGE_REF_PATTERN = r'^[a-z0-9]+(?:[._/-][a-z0-9]+)*(?::[0-9]+(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)*)?$'
TAG_PATTERN = r'^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$'

RESERVED_LABEL_PREFIXES = ('dockerflow.', 'com.dockerflow.', 'traefik.')

MIN_MEMORY_LIMIT = 6 * 1024 * 1024  # Docker refuses anything below 6MB


def _validate_port(port: int) -> int:
    if port < 1 or port > 65535:
        raise ValueError(f'Port {port} out of range (1-65535)')
    return port


class ContainerCreateRequest(BaseModel):
    """Request model for provisioning a container"""
    name: str = Field(..., min_length=1, max_length=63, pattern=NAME_PATTERN)
    image: str = Field(..., min_length=1, max_length=255)
    subdomain: str = Field(..., min_length=3, max_length=63, pattern=NAME_PATTERN)
    ports: Dict[int, int] = Field(default_factory=dict)  # {hostPort: containerPort}
    env: Dict[str, str] = Field(default_factory=dict)
    volumes: Dict[str, str] = Field(default_factory=dict)  # {hostPathOrVolume: containerPath}
    labels: Dict[str, str] = Field(default_factory=dict)
    cpu_limit: Optional[int] = Field(None, ge=1, le=64000)  # millicores
    memory_limit: Optional[int] = Field(None, ge=MIN_MEMORY_LIMIT)  # bytes

    @field_validator('ports')
    @classmethod
    def validate_ports(cls, v: Dict[int, int]) -> Dict[int, int]:
        """Host and container ports must both be valid TCP ports"""
        for host_port, container_port in v.items():
            _validate_port(host_port)
            _validate_port(container_port)
        return v

    @field_validator('env')
    @classmethod
    def validate_env(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key in v:
            if not ENV_KEY_PATTERN.match(key):
                raise ValueError(f'Invalid environment variable name: {key}')
        return v

    @field_validator('volumes')
    @classmethod
    def validate_volumes(cls, v: Dict[str, str]) -> Dict[str, str]:
        for source, target in v.items():
            if not source or not source.strip():
                raise ValueError('Volume source cannot be empty')
            if not target.startswith('/'):
                raise ValueError(f'Container path must be absolute: {target}')
        return v

    @field_validator('labels')
    @classmethod
    def validate_labels(cls, v: Dict[str, str]) -> Dict[str, str]:
        """Ownership and routing labels are set by DockerFlow, never by the caller"""
        for key in v:
            if key.startswith(RESERVED_LABEL_PREFIXES):
                raise ValueError(f'Label {key} is reserved')
        return v


class ImagePullRequest(BaseModel):
    """Request model for pulling an image"""
    image: str = Field(..., min_length=1, max_length=255, pattern=IMAGE_REF_PATTERN)
    tag: str = Field('latest', pattern=TAG_PATTERN)

    @property
    def reference(self) -> str:
        return f"{self.image}:{self.tag}"


class ImageTagRequest(BaseModel):
    """Request model for adding a tag to an existing image (admin)"""
    repository: str = Field(..., min_length=1, max_length=255, pattern=IMAGE_REF_PATTERN)
    tag: str = Field('latest', pattern=TAG_PATTERN)


class ImageBuildRequest(BaseModel):
    """Request model for building an image from Dockerfile text (admin)"""
    dockerfile: str = Field(..., min_length=1, max_length=100_000)
    image_name: str = Field(..., min_length=1, max_length=255)

    @field_validator('image_name')
    @classmethod
    def validate_image_name(cls, v: str) -> str:
        name, _, tag = v.partition(':')
        if not re.match(IMAGE_REF_PATTERN, name):
            raise ValueError(f'Invalid image name: {v}')
        if tag and not re.match(TAG_PATTERN, tag):
            raise ValueError(f'Invalid image tag: {tag}')
        return v


class VolumeCreateRequest(BaseModel):
    """Request model for creating a volume"""
    name: str = Field(..., min_length=1, max_length=63, pattern=NAME_PATTERN)
    driver: str = Field('local', min_length=1, max_length=64)


class ResourceUsageReport(BaseModel):
    """Observed usage percentages reported by the monitoring agent"""
    cpu_usage: Optional[float] = Field(None, ge=0)
    memory_usage: Optional[float] = Field(None, ge=0, le=100)

    @model_validator(mode='after')
    def validate_not_empty(self):
        if self.cpu_usage is None and self.memory_usage is None:
            raise ValueError('At least one of cpu_usage or memory_usage is required')
        return self


class AlertStatusUpdate(BaseModel):
    """Request model for changing alert status"""
    status: str = Field(..., pattern='^(RESOLVED|DISMISSED)$')


class QuotaUpdateRequest(BaseModel):
    """Admin update of a user's quota. Omitted fields are left unchanged."""
    tier: Optional[str] = Field(None, pattern='^(free|pro|admin)$')
    cpu_limit: Optional[int] = Field(None, ge=1, le=64000)
    memory_limit: Optional[int] = Field(None, ge=MIN_MEMORY_LIMIT)
    storage_limit: Optional[int] = Field(None, ge=MIN_STORAGE_LIMIT, le=MAX_STORAGE_LIMIT)
    cpu_threshold: Optional[float] = Field(None, ge=0, le=100)
    memory_threshold: Optional[float] = Field(None, ge=0, le=100)
    storage_threshold: Optional[float] = Field(None, ge=0, le=100)
