"""
Volume operations for DockerFlow

Create, delete (tombstone), backup and restore of user-owned Docker volumes.
Backups and restores run in a short-lived helper container that mounts the
volume and the host backup directory.
"""

import logging
import os
from typing import Dict, List, Optional

import docker.errors
from docker import DockerClient

from audit import ActivityType, log_activity
from config.settings import AppConfig
from database import DatabaseManager, VolumeRecord, VolumeBackup, utcnow
from docker_monitor.reconciler import VOLUME_OWNER_LABEL, VOLUME_MANAGED_LABEL
from errors import (
    NotFound, Forbidden, Conflict, InvalidStateTransition, DockerRuntimeError,
    translate_docker_error,
)
from quota import QuotaEnforcer, ResourceKind
from utils.async_docker import async_docker_call, short_id

logger = logging.getLogger(__name__)


def backup_file_name(volume_name: str) -> str:
    timestamp = utcnow().strftime('%Y-%m-%dT%H-%M-%S-%fZ')
    return f"{volume_name}_{timestamp}.tar"


class VolumeService:
    """Manages Docker volumes and their backups for users"""

    def __init__(
        self,
        client: DockerClient,
        db: DatabaseManager,
        quota: QuotaEnforcer,
        backup_dir: Optional[str] = None,
        helper_image: Optional[str] = None
    ):
        self.client = client
        self.db = db
        self.quota = quota
        self.backup_dir = backup_dir or AppConfig.BACKUP_DIR
        self.helper_image = helper_image or AppConfig.BACKUP_HELPER_IMAGE

    def list_volumes(self, owner_id: str) -> List[VolumeRecord]:
        return self.db.list_volumes(owner_id)

    def list_backups(self, owner_id: str, volume_id: Optional[str] = None) -> List[VolumeBackup]:
        return self.db.list_backups(owner_id, volume_id)

    async def _get_docker_volume(self, name: str):
        """Docker volume by name, None when absent"""
        try:
            return await async_docker_call(self.client.volumes.get, name)
        except docker.errors.NotFound:
            return None
        except Exception as e:
            raise translate_docker_error(e, "Volume")

    def _active_record(self, session, owner_id: str, name: str) -> Optional[VolumeRecord]:
        return session.query(VolumeRecord).filter(
            VolumeRecord.owner_id == owner_id,
            VolumeRecord.name == name,
            VolumeRecord.deleted_at.is_(None)
        ).first()

    def _owned_record(self, session, owner_id: str, volume_id: str) -> VolumeRecord:
        record = session.query(VolumeRecord).filter(
            VolumeRecord.id == volume_id,
            VolumeRecord.deleted_at.is_(None)
        ).first()
        if record is None or record.owner_id != owner_id:
            raise NotFound("Volume not found")
        return record

    # ==================== Create ====================

    async def create(
        self,
        owner: dict,
        name: str,
        driver: str = 'local',
        client_info: Optional[Dict[str, str]] = None
    ) -> VolumeRecord:
        """
        Create a volume, or bring the record and the engine back in line when
        only one side has it.

        Raises:
            QuotaExceeded: owner is over the storage limit
            Conflict: a volume with that name belongs to another user
        """
        owner_id = owner['user_id']
        client_info = client_info or {}
        self.quota.require(owner_id, ResourceKind.STORAGE, 0, owner.get('tier'))

        docker_volume = await self._get_docker_volume(name)
        if docker_volume is not None:
            volume_owner = (docker_volume.attrs.get('Labels') or {}).get(VOLUME_OWNER_LABEL)
            if volume_owner != owner_id:
                raise Conflict(f"Volume name already in use: {name}")

        with self.db.get_session() as session:
            record = self._active_record(session, owner_id, name)

            if record is not None and docker_volume is not None:
                logger.debug(f"Volume {name} already present in Docker and database")
                return record

            if docker_volume is None:
                docker_volume = await self._create_docker_volume(owner_id, name, driver)
                description = f"Volume {name} recreated in Docker" if record else f"Volume {name} created"
            else:
                description = f"Volume {name} synced from Docker"

            if record is None:
                record = VolumeRecord(name=name, owner_id=owner_id, size=0)
                session.add(record)
            record.driver = docker_volume.attrs.get('Driver') or driver
            record.mountpoint = docker_volume.attrs.get('Mountpoint')
            session.flush()

            log_activity(
                session,
                ActivityType.VOLUME_CREATE,
                description,
                owner_id,
                details={'volumeId': record.id, 'volumeName': name, 'driver': record.driver},
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()

        logger.info(f"{description} for user {owner_id}")
        return record

    async def _create_docker_volume(self, owner_id: str, name: str, driver: str):
        try:
            return await async_docker_call(
                self.client.volumes.create,
                name=name,
                driver=driver,
                labels={
                    VOLUME_MANAGED_LABEL: 'true',
                    VOLUME_OWNER_LABEL: owner_id,
                }
            )
        except Exception as e:
            logger.error(f"Failed to create volume {name} for user {owner_id}: {e}")
            raise translate_docker_error(e, "Volume")

    # ==================== Delete ====================

    async def containers_using(self, name: str) -> List[str]:
        try:
            containers = await async_docker_call(
                self.client.containers.list, all=True, filters={'volume': name}
            )
        except Exception as e:
            raise translate_docker_error(e, "Volume")
        return [c.name for c in containers]

    async def delete(self, owner: dict, volume_id: str, client_info: Optional[Dict[str, str]] = None):
        """
        Remove the volume from Docker and tombstone its record. Backups are kept.

        Raises:
            NotFound: no active volume with that id for this owner
            Forbidden: the engine-side volume is labelled for another owner
            InvalidStateTransition: containers still mount the volume
        """
        owner_id = owner['user_id']
        client_info = client_info or {}

        with self.db.get_session() as session:
            record = self._owned_record(session, owner_id, volume_id)
            name = record.name

        docker_volume = await self._get_docker_volume(name)
        if docker_volume is not None:
            labels = docker_volume.attrs.get('Labels') or {}
            if labels.get(VOLUME_OWNER_LABEL) != owner_id:
                raise Forbidden("You do not have permission to delete this volume")

            users = await self.containers_using(name)
            if users:
                raise InvalidStateTransition("Volume is in use", details={'containers': users})

            try:
                await async_docker_call(docker_volume.remove)
            except docker.errors.NotFound:
                logger.info(f"Volume {name} disappeared before removal")
            except Exception as e:
                logger.error(f"Failed to remove volume {name}: {e}")
                raise translate_docker_error(e, "Volume")

        with self.db.get_session() as session:
            record = self._owned_record(session, owner_id, volume_id)
            record.deleted_at = utcnow()
            log_activity(
                session,
                ActivityType.VOLUME_DELETE,
                f"Volume {name} deleted",
                owner_id,
                details={'volumeId': volume_id, 'volumeName': name},
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()

        logger.info(f"Deleted volume {name} for user {owner_id}")

    # ==================== Backup / Restore ====================

    async def _run_helper(self, command: list, volumes: dict) -> int:
        """Run the helper container to completion, always removing it. Returns exit code."""
        try:
            container = await async_docker_call(
                self.client.containers.run,
                self.helper_image,
                command,
                volumes=volumes,
                detach=True,
            )
        except Exception as e:
            raise translate_docker_error(e, "Image")

        try:
            result = await async_docker_call(container.wait)
            return int((result or {}).get('StatusCode', 1))
        except Exception as e:
            raise translate_docker_error(e, "Container")
        finally:
            try:
                await async_docker_call(container.remove, force=True)
            except Exception as e:
                logger.warning(f"Failed to remove helper container {short_id(container.id)}: {e}")

    async def backup(self, owner: dict, volume_id: str, client_info: Optional[Dict[str, str]] = None) -> VolumeBackup:
        """
        Archive the volume contents to <backup_dir>/<name>_<timestamp>.tar

        Raises:
            NotFound: volume unknown to this owner
            DockerRuntimeError: tar failed or produced an empty archive
        """
        owner_id = owner['user_id']
        client_info = client_info or {}

        with self.db.get_session() as session:
            record = self._owned_record(session, owner_id, volume_id)
            name = record.name

        file_name = backup_file_name(name)
        path = os.path.join(self.backup_dir, file_name)
        logger.info(f"Backing up volume {name} to {path}")

        exit_code = await self._run_helper(
            ['tar', 'cvf', f'/backup/{file_name}', '-C', '/data', '.'],
            {
                name: {'bind': '/data', 'mode': 'ro'},
                self.backup_dir: {'bind': '/backup', 'mode': 'rw'},
            }
        )
        if exit_code != 0:
            raise DockerRuntimeError(f"Backup failed with exit code {exit_code}")

        if not os.path.exists(path):
            raise DockerRuntimeError(f"Backup file was not created: {path}")
        size = os.path.getsize(path)
        if size == 0:
            os.remove(path)
            raise DockerRuntimeError("Backup file is empty")

        with self.db.get_session() as session:
            backup = VolumeBackup(volume_id=volume_id, user_id=owner_id, path=path, size=size)
            session.add(backup)
            session.flush()
            log_activity(
                session,
                ActivityType.VOLUME_BACKUP,
                f"Volume {name} backed up",
                owner_id,
                details={'volumeId': volume_id, 'volumeName': name, 'backupId': backup.id, 'path': path, 'size': size},
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()

        logger.info(f"Backed up volume {name} ({size} bytes)")
        return backup

    async def restore(self, owner: dict, backup_id: str, client_info: Optional[Dict[str, str]] = None) -> VolumeBackup:
        """
        Extract a backup archive into its volume.

        Raises:
            NotFound: backup, its volume, or the archive file is missing
            Forbidden: backup belongs to another user
        """
        owner_id = owner['user_id']
        client_info = client_info or {}

        with self.db.get_session() as session:
            backup = session.query(VolumeBackup).filter(VolumeBackup.id == backup_id).first()
            if backup is None:
                raise NotFound("Backup not found")
            if backup.user_id != owner_id:
                raise Forbidden("You do not have permission to restore this backup")
            volume = self._owned_record(session, owner_id, backup.volume_id)
            name = volume.name

        if not os.path.exists(backup.path):
            raise NotFound("Backup file not found")

        exit_code = await self._run_helper(
            ['tar', 'xf', f'/backup/{os.path.basename(backup.path)}', '-C', '/data'],
            {
                name: {'bind': '/data', 'mode': 'rw'},
                os.path.dirname(backup.path): {'bind': '/backup', 'mode': 'ro'},
            }
        )
        if exit_code != 0:
            raise DockerRuntimeError(f"Restore failed with exit code {exit_code}")

        with self.db.get_session() as session:
            log_activity(
                session,
                ActivityType.VOLUME_RESTORE,
                f"Volume {name} restored from backup",
                owner_id,
                details={'volumeId': backup.volume_id, 'volumeName': name, 'backupId': backup.id},
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()

        logger.info(f"Restored volume {name} from {backup.path}")
        return backup
