"""
Image operations for DockerFlow

Pull and build are long-running, so both are exposed as async generators of
NDJSON progress lines that the API streams to the caller as they arrive.
Closing the connection stops the stream but does not cancel the engine-side
pull or build.
"""

import logging
import os
import shutil
import tempfile
from typing import AsyncIterator, Dict, List, Optional

import docker.errors
from docker import DockerClient

from audit import ActivityType, log_activity
from database import DatabaseManager, ImageRecord, ContainerRecord
from errors import (
    NotFound, Conflict, InvalidStateTransition, DockerRuntimeError,
    translate_docker_error, docker_error_message,
)
from quota import QuotaEnforcer, ResourceKind
from utils.async_docker import async_docker_call, async_iterate
from utils.progress_stream import progress_event, encode, PULL_SUCCESS, BUILD_SUCCESS

logger = logging.getLogger(__name__)


def split_reference(reference: str) -> tuple:
    """'nginx:1.25' -> ('nginx', '1.25'); registry ports are not mistaken for tags"""
    name, sep, tag = reference.rpartition(':')
    if not sep or '/' in tag:
        return reference, 'latest'
    return name, tag


class ImageService:
    """Pulls, builds, lists and removes images charged to users"""

    def __init__(self, client: DockerClient, db: DatabaseManager, quota: QuotaEnforcer):
        self.client = client
        self.db = db
        self.quota = quota

    def list_images(self, owner_id: str) -> List[ImageRecord]:
        return self.db.list_images(owner_id)

    async def local_image_size(self, reference: str) -> int:
        try:
            image = await async_docker_call(self.client.images.get, reference)
            return int(image.attrs.get('Size') or 0)
        except docker.errors.ImageNotFound:
            return 0
        except Exception as e:
            raise translate_docker_error(e, "Image")

    # ==================== Pull ====================

    async def prepare_pull(self, owner: dict, image: str, tag: str = 'latest') -> str:
        """
        Quota check ahead of a pull. Runs before any bytes are streamed so a
        Deny surfaces as a plain error response with nothing written.
        """
        reference = f"{image}:{tag}"
        size = await self.local_image_size(reference)
        self.quota.require(owner['user_id'], ResourceKind.STORAGE, size, owner.get('tier'))
        return reference

    async def pull(
        self,
        owner: dict,
        image: str,
        tag: str = 'latest',
        client_info: Optional[Dict[str, str]] = None
    ) -> AsyncIterator[bytes]:
        """
        Stream pull progress as NDJSON lines.

        Ends with {"status": "Pull completed successfully"} or {"error": ...}.
        """
        owner_id = owner['user_id']
        reference = f"{image}:{tag}"
        logger.info(f"Pulling image {reference} for user {owner_id}")

        try:
            stream = await async_docker_call(
                self.client.api.pull, image, tag=tag, stream=True, decode=True
            )
            async for raw in async_iterate(iter(stream)):
                event = progress_event(raw)
                if event is None:
                    continue
                yield encode(event)
                if 'error' in event:
                    logger.error(f"Pull of {reference} failed: {event['error']}")
                    return

            size = await self.local_image_size(reference)
            self._record_image(owner_id, image, tag, size, ActivityType.IMAGE_PULL, client_info or {})
        except Exception as e:
            logger.error(f"Pull of {reference} failed: {e}")
            yield encode({'error': docker_error_message(e)})
            return

        logger.info(f"Pulled image {reference} for user {owner_id}")
        yield encode({'status': PULL_SUCCESS})

    # ==================== Build ====================

    def prepare_build(self, owner: dict):
        """A build can only add storage, so owners already over their limit are refused"""
        self.quota.require(owner['user_id'], ResourceKind.STORAGE, 0, owner.get('tier'))

    async def build(
        self,
        owner: dict,
        dockerfile: str,
        image_name: str,
        client_info: Optional[Dict[str, str]] = None
    ) -> AsyncIterator[bytes]:
        """
        Build an image from Dockerfile text in a scratch directory and stream
        the build output. The directory is removed whatever the outcome.
        """
        owner_id = owner['user_id']
        build_dir = tempfile.mkdtemp(prefix='dockerflow-build-')
        logger.info(f"Building image {image_name} for user {owner_id} in {build_dir}")

        try:
            with open(os.path.join(build_dir, 'Dockerfile'), 'w', encoding='utf-8') as f:
                f.write(dockerfile)

            stream = await async_docker_call(
                self.client.api.build, path=build_dir, tag=image_name, rm=True, decode=True
            )
            async for raw in async_iterate(iter(stream)):
                event = progress_event(raw)
                if event is None:
                    continue
                yield encode(event)
                if 'error' in event:
                    logger.error(f"Build of {image_name} failed: {event['error']}")
                    return

            name, tag = split_reference(image_name)
            size = await self.local_image_size(f"{name}:{tag}")
            self._record_image(owner_id, name, tag, size, ActivityType.IMAGE_BUILD, client_info or {})
        except Exception as e:
            logger.error(f"Build of {image_name} failed: {e}")
            yield encode({'error': docker_error_message(e)})
            return
        finally:
            shutil.rmtree(build_dir, ignore_errors=True)

        logger.info(f"Built image {image_name} for user {owner_id}")
        yield encode({'status': BUILD_SUCCESS})

    def _record_image(
        self,
        owner_id: str,
        name: str,
        tag: str,
        size: int,
        activity_type: ActivityType,
        client_info: Dict[str, str]
    ) -> ImageRecord:
        """Upsert the owner's image record and append the activity"""
        with self.db.get_session() as session:
            record = session.query(ImageRecord).filter(
                ImageRecord.owner_id == owner_id,
                ImageRecord.name == name,
                ImageRecord.tag == tag
            ).first()
            if record is None:
                record = ImageRecord(name=name, tag=tag, owner_id=owner_id)
                session.add(record)
            record.size = size
            session.flush()

            verb = 'pulled' if activity_type == ActivityType.IMAGE_PULL else 'built'
            log_activity(
                session,
                activity_type,
                f"Image {name}:{tag} {verb}",
                owner_id,
                details={'imageId': record.id, 'repository': name, 'tag': tag, 'size': size},
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()
            return record

    # ==================== Tag ====================

    async def tag(self, image_id: str, repository: str, tag: str = 'latest') -> ImageRecord:
        """
        Add repository:tag to an existing image (admin).

        The new reference is recorded for the source image's owner with size 0;
        it shares the source's layers, so it adds nothing to their storage.

        Raises:
            NotFound: no such image record
            Conflict: the owner already has a record for repository:tag
            DockerRuntimeError: the engine refused the tag
        """
        with self.db.get_session() as session:
            source = session.query(ImageRecord).filter(ImageRecord.id == image_id).first()
            if source is None:
                raise NotFound("Image not found")
            owner_id = source.owner_id
            reference = source.reference
            exists = session.query(ImageRecord).filter(
                ImageRecord.owner_id == owner_id,
                ImageRecord.name == repository,
                ImageRecord.tag == tag
            ).first()
            if exists is not None:
                raise Conflict(f"Image {repository}:{tag} already exists")

        try:
            image = await async_docker_call(self.client.images.get, reference)
            tagged = await async_docker_call(image.tag, repository, tag=tag)
        except Exception as e:
            logger.error(f"Failed to tag image {reference} as {repository}:{tag}: {e}")
            raise translate_docker_error(e, "Image")
        if not tagged:
            raise DockerRuntimeError(f"Failed to tag image {reference}")

        with self.db.get_session() as session:
            record = ImageRecord(name=repository, tag=tag, size=0, owner_id=owner_id)
            session.add(record)
            session.commit()

        logger.info(f"Tagged image {reference} as {repository}:{tag} for user {owner_id}")
        return record

    # ==================== Remove ====================

    async def remove(self, owner: dict, image_id: str, client_info: Optional[Dict[str, str]] = None):
        """
        Remove an image the owner pulled or built.

        Raises:
            NotFound: no such image record for this owner
            InvalidStateTransition: one of the owner's containers uses the image
        """
        owner_id = owner['user_id']
        client_info = client_info or {}

        with self.db.get_session() as session:
            record = session.query(ImageRecord).filter(
                ImageRecord.id == image_id,
                ImageRecord.owner_id == owner_id
            ).first()
            if record is None:
                raise NotFound("Image not found")

            reference = record.reference
            in_use = session.query(ContainerRecord).filter(
                ContainerRecord.owner_id == owner_id,
                ContainerRecord.image_ref.in_([reference, record.name])
            ).count()
            if in_use:
                raise InvalidStateTransition("Cannot remove image: it is being used by containers")

        try:
            await async_docker_call(self.client.images.remove, reference)
        except docker.errors.ImageNotFound:
            logger.info(f"Image {reference} already absent from Docker, removing record only")
        except Exception as e:
            logger.error(f"Failed to remove image {reference}: {e}")
            raise translate_docker_error(e, "Image")

        with self.db.get_session() as session:
            session.query(ImageRecord).filter(ImageRecord.id == image_id).delete()
            log_activity(
                session,
                ActivityType.IMAGE_DELETE,
                f"Image {reference} deleted",
                owner_id,
                details={'imageId': image_id, 'reference': reference},
                ip_address=client_info.get('ip_address'),
                user_agent=client_info.get('user_agent'),
            )
            session.commit()

        logger.info(f"Removed image {reference} for user {owner_id}")
