"""
Container and volume reconciliation for DockerFlow.

Makes the persisted ownership records match what the Docker engine actually
has. Runs on demand before reads that need a consistent view, never as a
background loop.

Ownership comes from the immutable label written at creation time
(dockerflow.owner for containers, com.dockerflow.userId for volumes), so a
pass for one user can never adopt another user's runtime objects.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from docker import DockerClient

from audit import ActivityType, log_activity
from database import DatabaseManager, ContainerRecord, VolumeRecord, utcnow
from errors import translate_docker_error
from utils.async_docker import async_docker_call, short_id

logger = logging.getLogger(__name__)

OWNER_LABEL = 'dockerflow.owner'
VOLUME_OWNER_LABEL = 'com.dockerflow.userId'
VOLUME_MANAGED_LABEL = 'com.dockerflow.managed'


@dataclass
class ReconcileResult:
    """Summary of one reconciliation pass"""
    owner_id: str
    created: int = 0
    updated: int = 0
    removed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def record_error(self, target: str, error: Exception):
        self.errors.append({'target': target, 'error': str(error)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            'owner_id': self.owner_id,
            'created': self.created,
            'updated': self.updated,
            'removed': self.removed,
            'errors': list(self.errors),
        }


def container_name_from_listing(summary: Dict[str, Any]) -> str:
    """First entry of Names without the leading slash, '' when unnamed"""
    names = summary.get('Names') or []
    if not names:
        return ''
    return (names[0] or '').lstrip('/')


def ports_from_listing(summary: Dict[str, Any]) -> Dict[str, int]:
    """
    Published ports from a container listing as {hostPort: containerPort}.

    Listing format: [{'PrivatePort': 80, 'PublicPort': 8080, 'Type': 'tcp'}, ...]
    Unpublished ports (no PublicPort) are skipped. IPv4/IPv6 duplicates collapse.
    """
    ports = {}
    for entry in summary.get('Ports') or []:
        public = entry.get('PublicPort')
        private = entry.get('PrivatePort')
        if public and private:
            ports[str(public)] = int(private)
    return ports


class Reconciler:
    """Diffs live runtime objects against persisted records for one owner"""

    def __init__(self, client: DockerClient, db: DatabaseManager):
        self.client = client
        self.db = db

    # ==================== Containers ====================

    async def list_live_containers(self, owner_id: str) -> List[Dict[str, Any]]:
        """Containers labelled as owned by owner_id, including stopped ones"""
        try:
            summaries = await async_docker_call(
                self.client.api.containers,
                all=True,
                filters={'label': f'{OWNER_LABEL}={owner_id}'}
            )
        except Exception as e:
            logger.error(f"Failed to list containers for user {owner_id}: {e}")
            raise translate_docker_error(e, "Container")

        # The engine filter is authoritative, but never adopt a mislabelled object
        return [
            s for s in summaries or []
            if (s.get('Labels') or {}).get(OWNER_LABEL) == owner_id
        ]

    async def reconcile(self, owner_id: str) -> ReconcileResult:
        """
        Upsert a record for every live container owned by owner_id, then delete
        the owner's records whose docker_id no longer appears in the listing.

        Failures on individual records are logged and collected; they never
        abort the pass. Only a failure to list containers propagates.
        """
        result = ReconcileResult(owner_id=owner_id)
        live = await self.list_live_containers(owner_id)
        live_ids = set()

        for summary in live:
            docker_id = summary.get('Id')
            if not docker_id:
                continue
            live_ids.add(docker_id)
            try:
                created = self._upsert_container(owner_id, summary)
                if created:
                    result.created += 1
                else:
                    result.updated += 1
            except Exception as e:
                logger.error(f"Error syncing container {short_id(docker_id)} for user {owner_id}: {e}")
                result.record_error(docker_id, e)

        self._remove_vanished_containers(owner_id, live_ids, result)

        logger.info(
            f"Reconciled containers for user {owner_id}: {result.created} created, "
            f"{result.updated} updated, {result.removed} removed, {len(result.errors)} errors"
        )
        return result

    def _upsert_container(self, owner_id: str, summary: Dict[str, Any]) -> bool:
        """Returns True when a new record was created"""
        docker_id = summary['Id']
        values = {
            'name': container_name_from_listing(summary),
            'image_ref': summary.get('Image') or '',
            'status': summary.get('State') or 'unknown',
            'ports': ports_from_listing(summary),
            'owner_id': owner_id,
        }

        with self.db.get_session() as session:
            try:
                record = session.query(ContainerRecord).filter(
                    ContainerRecord.docker_id == docker_id
                ).first()

                created = record is None
                if created:
                    record = ContainerRecord(docker_id=docker_id, **values)
                    session.add(record)
                else:
                    if not values['ports'] and values['status'] != 'running':
                        # Stopped containers publish no ports in the listing
                        values.pop('ports')
                    for key, value in values.items():
                        setattr(record, key, value)

                session.commit()
                return created
            except Exception:
                session.rollback()
                raise

    def _remove_vanished_containers(self, owner_id: str, live_ids: set, result: ReconcileResult):
        with self.db.get_session() as session:
            stale = session.query(ContainerRecord).filter(
                ContainerRecord.owner_id == owner_id
            ).all()
            stale = [r for r in stale if r.docker_id not in live_ids]

            for record in stale:
                try:
                    session.delete(record)
                    session.commit()
                    result.removed += 1
                    logger.info(
                        f"Removed record for container '{record.name}' ({short_id(record.docker_id)}), "
                        f"no longer present in Docker"
                    )
                except Exception as e:
                    session.rollback()
                    logger.error(f"Error removing stale container record {record.id}: {e}")
                    result.record_error(record.id, e)

    # ==================== Volumes ====================

    async def list_live_volumes(self, owner_id: str) -> List[Dict[str, Any]]:
        try:
            response = await async_docker_call(
                self.client.api.volumes,
                filters={'label': f'{VOLUME_OWNER_LABEL}={owner_id}'}
            )
        except Exception as e:
            logger.error(f"Failed to list volumes for user {owner_id}: {e}")
            raise translate_docker_error(e, "Volume")

        volumes = (response or {}).get('Volumes') or []
        return [
            v for v in volumes
            if (v.get('Labels') or {}).get(VOLUME_OWNER_LABEL) == owner_id
        ]

    async def reconcile_volumes(self, owner_id: str) -> ReconcileResult:
        """
        Record new runtime volumes, refresh changed mountpoint/driver, and
        tombstone records whose volume is gone from the engine.
        """
        result = ReconcileResult(owner_id=owner_id)
        live = await self.list_live_volumes(owner_id)
        live_by_name = {v['Name']: v for v in live if v.get('Name')}

        for name, volume in live_by_name.items():
            try:
                outcome = self._upsert_volume(owner_id, volume)
                if outcome == 'created':
                    result.created += 1
                elif outcome == 'updated':
                    result.updated += 1
            except Exception as e:
                logger.error(f"Error syncing volume '{name}' for user {owner_id}: {e}")
                result.record_error(name, e)

        with self.db.get_session() as session:
            records = session.query(VolumeRecord).filter(
                VolumeRecord.owner_id == owner_id,
                VolumeRecord.deleted_at.is_(None)
            ).all()

            for record in records:
                if record.name in live_by_name:
                    continue
                try:
                    record.deleted_at = utcnow()
                    log_activity(
                        session,
                        ActivityType.VOLUME_DELETE,
                        f"Volume {record.name} removed outside DockerFlow",
                        owner_id,
                        details={'volumeId': record.id, 'volumeName': record.name, 'source': 'sync'},
                    )
                    session.commit()
                    result.removed += 1
                except Exception as e:
                    session.rollback()
                    logger.error(f"Error tombstoning volume record {record.id}: {e}")
                    result.record_error(record.name, e)

        logger.info(
            f"Reconciled volumes for user {owner_id}: {result.created} created, "
            f"{result.updated} updated, {result.removed} removed, {len(result.errors)} errors"
        )
        return result

    def _upsert_volume(self, owner_id: str, volume: Dict[str, Any]) -> Optional[str]:
        name = volume['Name']
        driver = volume.get('Driver') or 'local'
        mountpoint = volume.get('Mountpoint')

        with self.db.get_session() as session:
            try:
                record = session.query(VolumeRecord).filter(
                    VolumeRecord.owner_id == owner_id,
                    VolumeRecord.name == name,
                    VolumeRecord.deleted_at.is_(None)
                ).first()

                if record is None:
                    # Tombstoned records keep their backup history; a re-created volume gets a new record
                    record = VolumeRecord(name=name, owner_id=owner_id, driver=driver, mountpoint=mountpoint)
                    session.add(record)
                    session.flush()
                    log_activity(
                        session,
                        ActivityType.VOLUME_CREATE,
                        f"Volume {name} found in Docker",
                        owner_id,
                        details={'volumeId': record.id, 'volumeName': name, 'driver': driver, 'source': 'sync'},
                    )
                    session.commit()
                    return 'created'

                if record.mountpoint != mountpoint or record.driver != driver:
                    record.mountpoint = mountpoint
                    record.driver = driver
                    log_activity(
                        session,
                        ActivityType.VOLUME_MOUNT,
                        f"Volume {name} mountpoint updated",
                        owner_id,
                        details={'volumeId': record.id, 'volumeName': name, 'mountpoint': mountpoint, 'source': 'sync'},
                    )
                    session.commit()
                    return 'updated'

                return None
            except Exception:
                session.rollback()
                raise
