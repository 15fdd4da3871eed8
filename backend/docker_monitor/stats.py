"""
Container stats and logs for DockerFlow
One-shot stats snapshots and log tails for owned containers.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List

from docker import DockerClient

from database import DatabaseManager
from docker_monitor.operations import get_owned_container
from errors import NotFound, translate_docker_error
from utils.async_docker import async_docker_call

logger = logging.getLogger(__name__)

DEFAULT_LOG_TAIL = 100
MAX_LOG_TAIL = 1000


@dataclass
class ContainerStats:
    container_id: str
    name: str
    cpu_percent: float
    memory_usage: int
    memory_limit: int
    memory_percent: float
    network_rx: int
    network_tx: int
    pids: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def calculate_cpu_percent(stats: Dict[str, Any]) -> float:
    """CPU usage since the previous sample, scaled by the number of CPUs"""
    cpu_stats = stats.get('cpu_stats') or {}
    precpu_stats = stats.get('precpu_stats') or {}

    cpu_delta = (cpu_stats.get('cpu_usage') or {}).get('total_usage', 0) - \
        (precpu_stats.get('cpu_usage') or {}).get('total_usage', 0)
    system_delta = cpu_stats.get('system_cpu_usage', 0) - precpu_stats.get('system_cpu_usage', 0)

    number_cpus = cpu_stats.get('online_cpus') or \
        len((cpu_stats.get('cpu_usage') or {}).get('percpu_usage') or [1])

    if system_delta > 0 and cpu_delta > 0:
        return round((cpu_delta / system_delta) * number_cpus * 100.0, 2)
    return 0.0


def calculate_memory(stats: Dict[str, Any]) -> tuple:
    """(usage, limit, percent). Page cache is excluded from usage like `docker stats` does."""
    mem_stats = stats.get('memory_stats') or {}
    usage = mem_stats.get('usage', 0)
    cache = (mem_stats.get('stats') or {}).get('inactive_file', 0)
    usage = max(usage - cache, 0)
    limit = mem_stats.get('limit', 0)
    percent = round((usage / limit) * 100, 2) if limit > 0 else 0.0
    return usage, limit, percent


def split_log_lines(output) -> List[str]:
    """Raw log bytes -> trimmed, non-empty lines"""
    if isinstance(output, bytes):
        output = output.decode('utf-8', errors='replace')
    return [line.strip() for line in (output or '').split('\n') if line.strip()]


class ContainerStatsService:
    """Reads stats and logs of containers the actor owns"""

    def __init__(self, client: DockerClient, db: DatabaseManager):
        self.client = client
        self.db = db

    async def _container(self, container_id: str, actor: dict):
        record = get_owned_container(self.db, container_id, actor)
        if not record.docker_id:
            raise NotFound("Container not found")
        try:
            container = await async_docker_call(self.client.containers.get, record.docker_id)
        except Exception as e:
            raise translate_docker_error(e, "Container")
        return record, container

    async def stats(self, container_id: str, actor: dict) -> ContainerStats:
        record, container = await self._container(container_id, actor)
        try:
            raw = await async_docker_call(container.stats, stream=False)
        except Exception as e:
            logger.error(f"Failed to read stats for container '{record.name}': {e}")
            raise translate_docker_error(e, "Container")

        usage, limit, percent = calculate_memory(raw)
        networks = raw.get('networks') or {}

        return ContainerStats(
            container_id=record.id,
            name=record.name,
            cpu_percent=calculate_cpu_percent(raw),
            memory_usage=usage,
            memory_limit=limit,
            memory_percent=percent,
            network_rx=sum(n.get('rx_bytes', 0) for n in networks.values()),
            network_tx=sum(n.get('tx_bytes', 0) for n in networks.values()),
            pids=(raw.get('pids_stats') or {}).get('current', 0),
        )

    async def logs(
        self,
        container_id: str,
        actor: dict,
        tail: int = DEFAULT_LOG_TAIL,
        since: int = 0,
        timestamps: bool = False
    ) -> List[str]:
        record, container = await self._container(container_id, actor)
        tail = min(max(int(tail or DEFAULT_LOG_TAIL), 1), MAX_LOG_TAIL)

        kwargs = {'stdout': True, 'stderr': True, 'tail': tail, 'timestamps': timestamps}
        if since:
            kwargs['since'] = int(since)

        try:
            output = await async_docker_call(container.logs, **kwargs)
        except Exception as e:
            logger.error(f"Failed to read logs for container '{record.name}': {e}")
            raise translate_docker_error(e, "Container")

        return split_log_lines(output)
