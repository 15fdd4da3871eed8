"""
Docker client construction for DockerFlow

One client is built at process start and shared by every component.
"""

import logging

import docker
from docker import DockerClient

from config.settings import AppConfig

logger = logging.getLogger(__name__)


def create_docker_client(base_url: str = None, timeout: int = None) -> DockerClient:
    """
    Build the shared Docker client.

    Uses DOCKERFLOW_DOCKER_HOST when set, otherwise the standard DOCKER_*
    environment (local socket by default).
    """
    base_url = base_url if base_url is not None else AppConfig.DOCKER_HOST
    timeout = timeout or AppConfig.DOCKER_TIMEOUT

    if base_url:
        client = docker.DockerClient(base_url=base_url, timeout=timeout)
    else:
        client = docker.from_env(timeout=timeout)

    logger.info(f"Docker client configured for {client.api.base_url}")
    return client
