"""
Container Operations Module for DockerFlow
Executes one lifecycle action (start, stop, restart, delete) against one
owned container, checks that the transition is legal, and records it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

import docker.errors
from docker import DockerClient

from audit import container_activity_type, log_activity
from auth.shared import is_admin
from database import DatabaseManager, ContainerRecord
from errors import (
    NotFound, InvalidStateTransition, AlreadyRunning, AlreadyStopped,
    RestartTimeout, translate_docker_error, docker_error_message,
)
from utils.async_docker import async_docker_call, short_id

logger = logging.getLogger(__name__)

STATE_RUNNING = 'running'
STATE_EXITED = 'exited'
STATE_REMOVED = 'removed'

RESTARTABLE_STATES = (STATE_RUNNING, STATE_EXITED)


class ContainerAction(str, Enum):
    START = 'start'
    STOP = 'stop'
    RESTART = 'restart'
    DELETE = 'delete'


@dataclass
class ActionResult:
    previous_state: str
    new_state: str
    container_id: str = ''
    container_name: str = ''
    action: str = ''
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'message': f"Container {self.action} successful",
            'previousState': self.previous_state,
            'newState': self.new_state,
            'containerId': self.container_id,
            'containerName': self.container_name,
        }


def get_owned_container(db: DatabaseManager, container_id: str, actor: dict) -> ContainerRecord:
    """Find the record by id (or docker id) and check the actor may touch it"""
    record = db.get_container(container_id) or db.get_container_by_docker_id(container_id)
    if record is None:
        raise NotFound("Container not found")
    if not is_admin(actor) and record.owner_id != actor['user_id']:
        # Same answer as a missing container so ids of other users don't leak
        logger.warning(f"User {actor['user_id']} attempted to access container {record.id} owned by another user")
        raise NotFound("Container not found")
    return record


class ActionOrchestrator:
    """Handles container start, stop, restart, and delete operations"""

    def __init__(
        self,
        client: DockerClient,
        db: DatabaseManager,
        poll_interval: float = 1.0,
        poll_attempts: int = 10,
        restart_timeout: int = 30
    ):
        self.client = client
        self.db = db
        self.poll_interval = poll_interval
        self.poll_attempts = poll_attempts
        self.restart_timeout = restart_timeout

    async def apply(
        self,
        container_id: str,
        action: Union[ContainerAction, str],
        actor: dict,
        client_info: Optional[Dict[str, str]] = None
    ) -> ActionResult:
        """
        Apply a lifecycle action to a container.

        Args:
            container_id: ContainerRecord id (docker id also accepted)
            action: start, stop, restart or delete
            actor: Current user dict (user_id, role)
            client_info: ip_address/user_agent for the activity record

        Returns:
            ActionResult with previous_state and new_state

        Raises:
            NotFound: No such record, or it belongs to another user
            AlreadyRunning / AlreadyStopped / InvalidStateTransition: illegal transition
            RestartTimeout: restarted container never reported running
            DockerRuntimeError: any other engine failure, message passed through
        """
        try:
            action = ContainerAction(action)
        except ValueError:
            raise InvalidStateTransition(f"Invalid action: {action}")

        record = get_owned_container(self.db, container_id, actor)
        start_time = time.time()

        if action == ContainerAction.DELETE:
            result = await self._delete(record)
        else:
            result = await self._transition(record, action)

        result.duration_ms = int((time.time() - start_time) * 1000)
        self._persist(record, result, actor, client_info or {})

        logger.info(
            f"Container '{result.container_name}' {action.value}: "
            f"{result.previous_state} -> {result.new_state} ({result.duration_ms}ms)"
        )
        return result

    async def _get_container(self, record: ContainerRecord):
        if not record.docker_id:
            raise NotFound("Container not found")
        try:
            return await async_docker_call(self.client.containers.get, record.docker_id)
        except Exception as e:
            logger.error(f"Failed to inspect container {short_id(record.docker_id)}: {e}")
            raise translate_docker_error(e, "Container")

    async def _transition(self, record: ContainerRecord, action: ContainerAction) -> ActionResult:
        container = await self._get_container(record)
        previous_state = container.status

        if action == ContainerAction.START and previous_state == STATE_RUNNING:
            raise AlreadyRunning()
        if action == ContainerAction.STOP and previous_state == STATE_EXITED:
            raise AlreadyStopped()
        if action == ContainerAction.RESTART and previous_state not in RESTARTABLE_STATES:
            raise InvalidStateTransition(f"Cannot restart container in state: {previous_state}")

        try:
            if action == ContainerAction.START:
                await async_docker_call(container.start)
            elif action == ContainerAction.STOP:
                await async_docker_call(container.stop)
            else:
                await async_docker_call(container.restart, timeout=self.restart_timeout)
                await self._wait_until_running(container)

            await async_docker_call(container.reload)
        except RestartTimeout:
            raise
        except Exception as e:
            logger.error(f"Failed to {action.value} container '{record.name}' ({short_id(record.docker_id)}): {e}")
            raise translate_docker_error(e, "Container")

        return ActionResult(
            previous_state=previous_state,
            new_state=container.status,
            container_id=record.id,
            container_name=record.name,
            action=action.value,
        )

    async def _wait_until_running(self, container):
        """Poll container state until running, or give up after poll_attempts"""
        for attempt in range(1, self.poll_attempts + 1):
            await async_docker_call(container.reload)
            if container.status == STATE_RUNNING:
                logger.debug(f"Container {short_id(container.id)} running after {attempt} poll(s)")
                return
            if attempt < self.poll_attempts:
                await asyncio.sleep(self.poll_interval)

        logger.error(
            f"Container {short_id(container.id)} not running after {self.poll_attempts} polls "
            f"(last state: {container.status})"
        )
        raise RestartTimeout(attempts=self.poll_attempts)

    async def _delete(self, record: ContainerRecord) -> ActionResult:
        previous_state = record.status

        if record.docker_id:
            try:
                container = await async_docker_call(self.client.containers.get, record.docker_id)
                previous_state = container.status
                await async_docker_call(container.remove, force=True)
            except docker.errors.NotFound as e:
                # Already gone from Docker: the record still has to go
                logger.info(
                    f"Container {short_id(record.docker_id)} already absent from Docker, "
                    f"removing record only ({docker_error_message(e)})"
                )
            except Exception as e:
                logger.error(f"Failed to delete container '{record.name}' ({short_id(record.docker_id)}): {e}")
                raise translate_docker_error(e, "Container")

        return ActionResult(
            previous_state=previous_state,
            new_state=STATE_REMOVED,
            container_id=record.id,
            container_name=record.name,
            action=ContainerAction.DELETE.value,
        )

    def _persist(self, record: ContainerRecord, result: ActionResult, actor: dict, client_info: Dict[str, str]):
        """Update or delete the record and append the activity in one commit"""
        with self.db.get_session() as session:
            current = session.query(ContainerRecord).filter(ContainerRecord.id == record.id).first()
            if current is not None:
                if result.action == ContainerAction.DELETE.value:
                    session.delete(current)
                else:
                    current.status = result.new_state

            log_activity(
                session,
                container_activity_type(result.action),
                f"Container {record.name} {result.action}",
                actor['user_id'],
                details={
                    'containerId': record.id,
                    'containerName': record.name,
                    'action': result.action,
                    'previousState': result.previous_state,
                    'newState': result.new_state,
                },
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()
