"""
Service wiring for DockerFlow

Builds every component around the single Docker client and database
manager created in the application lifespan, and exposes them to routes
through the get_services dependency.
"""

import logging
from dataclasses import dataclass

from docker import DockerClient
from fastapi import Request

from alerts.emitter import AlertEmitter
from config.settings import AppConfig
from database import DatabaseManager
from docker_monitor.images import ImageService
from docker_monitor.operations import ActionOrchestrator
from docker_monitor.provisioning import ContainerProvisioner
from docker_monitor.reconciler import Reconciler
from docker_monitor.stats import ContainerStatsService
from docker_monitor.volumes import VolumeService
from errors import DockerRuntimeError
from quota import QuotaEnforcer

logger = logging.getLogger(__name__)


@dataclass
class Services:
    db: DatabaseManager
    client: DockerClient
    quota: QuotaEnforcer
    reconciler: Reconciler
    orchestrator: ActionOrchestrator
    provisioner: ContainerProvisioner
    images: ImageService
    volumes: VolumeService
    stats: ContainerStatsService
    alerts: AlertEmitter


def build_services(client: DockerClient, db: DatabaseManager) -> Services:
    quota = QuotaEnforcer(db)
    return Services(
        db=db,
        client=client,
        quota=quota,
        reconciler=Reconciler(client, db),
        orchestrator=ActionOrchestrator(
            client,
            db,
            poll_interval=AppConfig.RESTART_POLL_INTERVAL,
            poll_attempts=AppConfig.RESTART_POLL_ATTEMPTS,
            restart_timeout=AppConfig.RESTART_TIMEOUT_SECONDS,
        ),
        provisioner=ContainerProvisioner(client, db, quota),
        images=ImageService(client, db, quota),
        volumes=VolumeService(client, db, quota),
        stats=ContainerStatsService(client, db),
        alerts=AlertEmitter(db),
    )


def get_services(request: Request) -> Services:
    """FastAPI dependency returning the process-wide services"""
    services = getattr(request.app.state, 'services', None)
    if services is None:
        raise DockerRuntimeError("Service not initialized")
    return services
