"""
Container provisioning for DockerFlow

Creates a user's container behind Traefik: quota check, ownership labels,
port and volume bindings, then start and record.
"""

import logging
import re
from typing import Dict, List, Optional, Union

import docker.errors
from docker import DockerClient

from audit import ActivityType, log_activity
from config.settings import AppConfig
from database import DatabaseManager, ContainerRecord
from docker_monitor.reconciler import OWNER_LABEL
from errors import Conflict, InvalidRequest, translate_docker_error
from models.request_models import ContainerCreateRequest, NAME_PATTERN
from quota import QuotaEnforcer, ResourceKind
from utils.async_docker import async_docker_call, short_id

logger = logging.getLogger(__name__)

SUBDOMAIN_LABEL = 'dockerflow.subdomain'
RESTART_POLICY = {'Name': 'unless-stopped'}

SUBDOMAIN_PATTERN = re.compile(NAME_PATTERN)
RESERVED_SUBDOMAINS = ('www', 'mail', 'ftp', 'admin', 'api', 'traefik')

MAX_PORT = 65535

# Alternatives tried first when a well-known port is taken
PORT_RANGES = {
    80: (8080, 8089),
    443: (8443, 8449),
    3306: (33060, 33069),
    5432: (54320, 54329),
    27017: (27018, 27027),
    6379: (63790, 63799),
    3000: (3001, 3010),
}


def traefik_labels(name: str, subdomain: str, container_port: Optional[int]) -> Dict[str, str]:
    """Routing labels so Traefik exposes the container at <subdomain>.<domain>"""
    labels = {
        'traefik.enable': 'true',
        f'traefik.http.routers.{name}.rule': f'Host(`{subdomain}.{AppConfig.TRAEFIK_DOMAIN}`)',
        f'traefik.http.routers.{name}.entrypoints': AppConfig.TRAEFIK_ENTRYPOINT,
        f'traefik.http.routers.{name}.tls': 'true',
    }
    if container_port:
        labels[f'traefik.http.services.{name}.loadbalancer.server.port'] = str(container_port)
    return labels


def build_port_bindings(ports: Dict[int, int]) -> Dict[str, Union[int, List[int]]]:
    """
    {hostPort: containerPort} -> docker-py ports argument.

    One host port gives {'80/tcp': 8080}; several host ports publishing the
    same container port give {'80/tcp': [8080, 8081]}.
    """
    bindings = {}
    for host_port, container_port in ports.items():
        bindings.setdefault(f"{container_port}/tcp", []).append(host_port)
    return {key: hosts[0] if len(hosts) == 1 else hosts for key, hosts in bindings.items()}


def build_volume_binds(volumes: Dict[str, str]) -> Dict[str, Dict[str, str]]:
    """{source: containerPath} -> docker-py volumes argument"""
    return {source: {'bind': target, 'mode': 'rw'} for source, target in volumes.items()}


def build_env(env: Dict[str, str]) -> list:
    return [f"{key}={value}" for key, value in env.items()]


class ContainerProvisioner:
    """Creates, starts and records new containers for a user"""

    def __init__(self, client: DockerClient, db: DatabaseManager, quota: QuotaEnforcer):
        self.client = client
        self.db = db
        self.quota = quota

    async def image_size(self, image_ref: str) -> int:
        """Size of a local image in bytes, 0 when the image isn't pulled yet"""
        try:
            image = await async_docker_call(self.client.images.get, image_ref)
            return int(image.attrs.get('Size') or 0)
        except docker.errors.ImageNotFound:
            return 0
        except Exception as e:
            raise translate_docker_error(e, "Image")

    # ==================== Subdomains ====================

    def check_subdomain(self, subdomain: Optional[str]) -> Dict[str, object]:
        """
        Validate a subdomain and make sure nobody holds it.

        Raises:
            InvalidRequest: missing, malformed, or not 3-63 characters
            Conflict: reserved, or already used by a container
        """
        if not subdomain:
            raise InvalidRequest("Subdomain parameter is required")
        if not SUBDOMAIN_PATTERN.match(subdomain):
            raise InvalidRequest("Invalid subdomain format")
        if len(subdomain) < 3 or len(subdomain) > 63:
            raise InvalidRequest("Subdomain must be between 3 and 63 characters")

        self._ensure_subdomain_free(subdomain)
        return {'available': True, 'message': "Subdomain is available"}

    def _ensure_subdomain_free(self, subdomain: str):
        if subdomain.lower() in RESERVED_SUBDOMAINS:
            raise Conflict("This subdomain is reserved")
        if self.db.find_container_conflict(None, subdomain):
            raise Conflict("Subdomain is already in use")

    # ==================== Host ports ====================

    async def used_host_ports(self) -> set:
        """Host ports published by any engine container or mapped by any record"""
        try:
            summaries = await async_docker_call(self.client.api.containers, all=True)
        except Exception as e:
            logger.error(f"Failed to list containers for port check: {e}")
            raise translate_docker_error(e, "Container")

        used = self.db.recorded_host_ports()
        for summary in summaries or []:
            for entry in summary.get('Ports') or []:
                if entry.get('PublicPort'):
                    used.add(int(entry['PublicPort']))
        return used

    @staticmethod
    def _first_free(candidates, used: set) -> Optional[int]:
        return next((port for port in candidates if port not in used), None)

    async def suggest_port(self, port: int, used: Optional[set] = None) -> int:
        """
        The requested host port when it is free, otherwise the closest alternative.

        Well-known ports look in their alternative range first, then the
        search moves upward from port + 1.

        Raises:
            Conflict: every port above the requested one is taken
        """
        if used is None:
            used = await self.used_host_ports()
        if port not in used:
            return port

        suggestion = None
        if port in PORT_RANGES:
            low, high = PORT_RANGES[port]
            suggestion = self._first_free(range(low, high + 1), used)
        if suggestion is None:
            suggestion = self._first_free(range(port + 1, MAX_PORT + 1), used)
        if suggestion is None:
            raise Conflict("No available ports found")

        logger.debug(f"Host port {port} in use, suggesting {suggestion}")
        return suggestion

    async def _ensure_ports_free(self, ports: Dict[int, int]):
        if not ports:
            return
        used = await self.used_host_ports()
        for host_port in ports:
            if host_port in used:
                raise Conflict(
                    f"Host port {host_port} is already in use",
                    details={'port': host_port, 'suggested': await self.suggest_port(host_port, used)}
                )

    # ==================== Create ====================

    async def create(
        self,
        owner: dict,
        request: ContainerCreateRequest,
        client_info: Optional[Dict[str, str]] = None
    ) -> ContainerRecord:
        """
        Provision a container for owner.

        Raises:
            Conflict: name, subdomain or host port already in use, or subdomain reserved
            QuotaExceeded: storage, CPU or memory over the owner's limit
            DockerRuntimeError: create/start failed
        """
        owner_id = owner['user_id']
        client_info = client_info or {}

        if self.db.find_container_conflict(request.name, request.subdomain):
            raise Conflict("Container name or subdomain already in use")
        self._ensure_subdomain_free(request.subdomain)
        await self._ensure_ports_free(request.ports)

        size = await self.image_size(request.image)
        self.quota.require(owner_id, ResourceKind.STORAGE, size, owner.get('tier'))
        if request.cpu_limit:
            self.quota.require(owner_id, ResourceKind.CPU, request.cpu_limit, owner.get('tier'))
        if request.memory_limit:
            self.quota.require(owner_id, ResourceKind.MEMORY, request.memory_limit, owner.get('tier'))

        first_port = next(iter(request.ports.values()), None)
        labels = dict(request.labels)
        labels.update(traefik_labels(request.name, request.subdomain, first_port))
        labels[OWNER_LABEL] = owner_id
        labels[SUBDOMAIN_LABEL] = request.subdomain

        create_kwargs = {
            'image': request.image,
            'name': request.name,
            'detach': True,
            'labels': labels,
            'environment': build_env(request.env),
            'ports': build_port_bindings(request.ports),
            'volumes': build_volume_binds(request.volumes),
            'restart_policy': RESTART_POLICY,
        }
        if request.cpu_limit:
            create_kwargs['nano_cpus'] = request.cpu_limit * 1_000_000
        if request.memory_limit:
            create_kwargs['mem_limit'] = request.memory_limit

        try:
            container = await async_docker_call(self.client.containers.create, **create_kwargs)
        except Exception as e:
            logger.error(f"Failed to create container '{request.name}' for user {owner_id}: {e}")
            raise translate_docker_error(e, "Image")

        try:
            await async_docker_call(container.start)
            await async_docker_call(container.reload)
        except Exception as e:
            logger.error(f"Container '{request.name}' created but failed to start: {e}")
            # Don't leave an unowned, unstartable container behind
            try:
                await async_docker_call(container.remove, force=True)
            except Exception as cleanup_error:
                logger.warning(f"Failed to clean up container {short_id(container.id)}: {cleanup_error}")
            raise translate_docker_error(e, "Container")

        with self.db.get_session() as session:
            record = ContainerRecord(
                docker_id=container.id,
                name=request.name,
                image_ref=request.image,
                status=container.status,
                ports={str(host): container_port for host, container_port in request.ports.items()},
                volumes=dict(request.volumes),
                env=dict(request.env),
                subdomain=request.subdomain,
                owner_id=owner_id,
                cpu_limit=request.cpu_limit,
                memory_limit=request.memory_limit,
                size=size,
            )
            session.add(record)
            session.flush()
            log_activity(
                session,
                ActivityType.CONTAINER_CREATE,
                f"Container {request.name} created",
                owner_id,
                details={
                    'containerId': record.id,
                    'containerName': request.name,
                    'image': request.image,
                    'subdomain': request.subdomain,
                },
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()

        logger.info(f"Created container '{request.name}' ({short_id(container.id)}) for user {owner_id}")
        return record
