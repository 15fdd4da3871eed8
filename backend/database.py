"""
Database models and operations for DockerFlow
Uses SQLite (or any SQLAlchemy URL) for ownership, quota, alert and activity records
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Set

from sqlalchemy import create_engine, Column, String, Integer, BigInteger, Boolean, DateTime, Float, JSON, Text, Index, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker, Session

logger = logging.getLogger(__name__)


def utcnow():
    """Helper to get timezone-aware UTC datetime for database defaults"""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# Account tier defaults applied when a user's quota row is first created
GIB = 1024 * 1024 * 1024
TIER_STORAGE_LIMITS = {
    'pro': 100 * GIB,
    'admin': 100 * GIB,
}
DEFAULT_STORAGE_LIMIT = 50 * GIB
DEFAULT_CPU_LIMIT = 1000  # millicores (1 core)
DEFAULT_MEMORY_LIMIT = 2 * GIB
DEFAULT_CPU_THRESHOLD = 80.0
DEFAULT_MEMORY_THRESHOLD = 85.0
DEFAULT_STORAGE_THRESHOLD = 90.0

# Admin edits must stay inside these bounds
MIN_STORAGE_LIMIT = 10 * GIB
MAX_STORAGE_LIMIT = 200 * GIB


Base = declarative_base()


class ContainerRecord(Base):
    """Ownership record for a Docker container"""
    __tablename__ = "containers"

    id = Column(String, primary_key=True, default=new_id)
    docker_id = Column(String, nullable=True, unique=True)  # Null/stale if removed out-of-band
    name = Column(String, nullable=False, default='')
    image_ref = Column(String, nullable=False, default='')
    status = Column(String, nullable=False, default='created')
    ports = Column(JSON, nullable=False, default=dict)  # {hostPort: containerPort}
    volumes = Column(JSON, nullable=False, default=dict)  # {hostPath: containerPath}
    env = Column(JSON, nullable=False, default=dict)
    subdomain = Column(String, nullable=True)
    owner_id = Column(String, nullable=False)
    cpu_limit = Column(Integer, nullable=True)  # millicores
    memory_limit = Column(BigInteger, nullable=True)  # bytes
    size = Column(BigInteger, nullable=False, default=0)  # image bytes charged to the owner
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_containers_owner', 'owner_id'),
    )


class VolumeRecord(Base):
    """Docker volume owned by a user. Soft-deleted via deleted_at."""
    __tablename__ = "volumes"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    driver = Column(String, nullable=False, default='local')
    mountpoint = Column(String, nullable=True)
    size = Column(BigInteger, nullable=False, default=0)
    owner_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('idx_volumes_owner', 'owner_id'),
    )


class VolumeBackup(Base):
    """Backup archive of a volume. Survives deletion of the volume."""
    __tablename__ = "volume_backups"

    id = Column(String, primary_key=True, default=new_id)
    volume_id = Column(String, nullable=False)  # No FK cascade: history outlives the volume
    user_id = Column(String, nullable=False)
    path = Column(String, nullable=False)
    size = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ImageRecord(Base):
    """Image charged to a user's storage quota"""
    __tablename__ = "images"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    tag = Column(String, nullable=False, default='latest')
    size = Column(BigInteger, nullable=False, default=0)
    owner_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_images_owner', 'owner_id'),
    )

    @property
    def reference(self) -> str:
        return f"{self.name}:{self.tag}"


class Activity(Base):
    """Append-only activity trail. Never read back for control decisions."""
    __tablename__ = "activities"

    id = Column(String, primary_key=True, default=new_id)
    type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    user_id = Column(String, nullable=True)
    details = Column('metadata', JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_activities_user', 'user_id'),
        Index('idx_activities_created', 'created_at'),
    )


class Alert(Base):
    """Threshold alert. PENDING -> RESOLVED | DISMISSED"""
    __tablename__ = "alerts"

    id = Column(String, primary_key=True, default=new_id)
    type = Column(String, nullable=False)  # CONTAINER | SYSTEM | USER
    severity = Column(String, nullable=False)  # INFO | WARNING | ERROR | CRITICAL
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    user_id = Column(String, nullable=False)
    acknowledged = Column(Boolean, default=False, nullable=False)
    acknowledged_by_id = Column(String, nullable=True)
    acknowledged_at = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default='PENDING')
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('idx_alerts_user_status', 'user_id', 'status'),
    )


class UserQuota(Base):
    """Per-user resource limits and alert thresholds"""
    __tablename__ = "user_quotas"

    user_id = Column(String, primary_key=True)
    tier = Column(String, nullable=False, default='free')
    cpu_limit = Column(Integer, nullable=False, default=DEFAULT_CPU_LIMIT)  # millicores
    memory_limit = Column(BigInteger, nullable=False, default=DEFAULT_MEMORY_LIMIT)  # bytes
    storage_limit = Column(BigInteger, nullable=False, default=DEFAULT_STORAGE_LIMIT)  # bytes
    cpu_threshold = Column(Float, nullable=False, default=DEFAULT_CPU_THRESHOLD)  # percent
    memory_threshold = Column(Float, nullable=False, default=DEFAULT_MEMORY_THRESHOLD)
    storage_threshold = Column(Float, nullable=False, default=DEFAULT_STORAGE_THRESHOLD)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


def default_quota_values(tier: Optional[str]) -> Dict[str, Any]:
    """Registration-time quota defaults for an account tier"""
    return {
        'tier': tier or 'free',
        'cpu_limit': DEFAULT_CPU_LIMIT,
        'memory_limit': DEFAULT_MEMORY_LIMIT,
        'storage_limit': TIER_STORAGE_LIMITS.get(tier or 'free', DEFAULT_STORAGE_LIMIT),
        'cpu_threshold': DEFAULT_CPU_THRESHOLD,
        'memory_threshold': DEFAULT_MEMORY_THRESHOLD,
        'storage_threshold': DEFAULT_STORAGE_THRESHOLD,
    }


class DatabaseManager:
    """
    Database management and operations.

    One instance is created in the application lifespan and handed to every
    component that needs persistence.
    """

    def __init__(self, database_url: str = "sqlite:///data/dockerflow.db"):
        self.database_url = database_url

        connect_args = {}
        if database_url.startswith("sqlite:///"):
            db_path = database_url[len("sqlite:///"):]
            data_dir = os.path.dirname(db_path)
            if data_dir:
                os.makedirs(data_dir, exist_ok=True)
            connect_args = {
                "check_same_thread": False,
                "timeout": 20
            }

        self.engine = create_engine(database_url, connect_args=connect_args, echo=False)

        # Objects stay readable after the session closes; services return them to routes
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

        Base.metadata.create_all(bind=self.engine)
        logger.info(f"Database initialized at {self._safe_url()}")

    def _safe_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    def get_session(self) -> Session:
        """Get a database session"""
        return self.SessionLocal()

    def close(self):
        self.engine.dispose()

    # Container Operations
    def get_container(self, container_id: str) -> Optional[ContainerRecord]:
        with self.get_session() as session:
            return session.query(ContainerRecord).filter(ContainerRecord.id == container_id).first()

    def get_container_by_docker_id(self, docker_id: str) -> Optional[ContainerRecord]:
        with self.get_session() as session:
            return session.query(ContainerRecord).filter(ContainerRecord.docker_id == docker_id).first()

    def list_containers(self, owner_id: str) -> List[ContainerRecord]:
        with self.get_session() as session:
            return session.query(ContainerRecord).filter(
                ContainerRecord.owner_id == owner_id
            ).order_by(ContainerRecord.created_at).all()

    def find_container_conflict(self, name: Optional[str], subdomain: Optional[str]) -> Optional[ContainerRecord]:
        """Return a record already using the given name or subdomain"""
        conditions = []
        if name:
            conditions.append(ContainerRecord.name == name)
        if subdomain:
            conditions.append(ContainerRecord.subdomain == subdomain)
        if not conditions:
            return None
        with self.get_session() as session:
            return session.query(ContainerRecord).filter(or_(*conditions)).first()

    def recorded_host_ports(self) -> Set[int]:
        """Host ports mapped by any container record, across all owners"""
        with self.get_session() as session:
            rows = session.query(ContainerRecord.ports).all()
        ports = set()
        for (mapping,) in rows:
            ports.update(int(host_port) for host_port in (mapping or {}))
        return ports

    # Volume Operations
    def get_volume(self, volume_id: str, include_deleted: bool = False) -> Optional[VolumeRecord]:
        with self.get_session() as session:
            query = session.query(VolumeRecord).filter(VolumeRecord.id == volume_id)
            if not include_deleted:
                query = query.filter(VolumeRecord.deleted_at.is_(None))
            return query.first()

    def list_volumes(self, owner_id: str) -> List[VolumeRecord]:
        with self.get_session() as session:
            return session.query(VolumeRecord).filter(
                VolumeRecord.owner_id == owner_id,
                VolumeRecord.deleted_at.is_(None)
            ).order_by(VolumeRecord.created_at).all()

    def list_backups(self, owner_id: str, volume_id: Optional[str] = None) -> List[VolumeBackup]:
        with self.get_session() as session:
            query = session.query(VolumeBackup).filter(VolumeBackup.user_id == owner_id)
            if volume_id:
                query = query.filter(VolumeBackup.volume_id == volume_id)
            return query.order_by(VolumeBackup.created_at.desc()).all()

    # Image Operations
    def list_images(self, owner_id: str) -> List[ImageRecord]:
        with self.get_session() as session:
            return session.query(ImageRecord).filter(
                ImageRecord.owner_id == owner_id
            ).order_by(ImageRecord.created_at).all()

    # Quota Operations
    def get_quota(self, user_id: str) -> Optional[UserQuota]:
        with self.get_session() as session:
            return session.query(UserQuota).filter(UserQuota.user_id == user_id).first()

    def get_or_create_quota(self, user_id: str, tier: Optional[str] = None) -> UserQuota:
        """Return the user's quota, creating it with tier defaults on first use"""
        with self.get_session() as session:
            quota = session.query(UserQuota).filter(UserQuota.user_id == user_id).first()
            if quota:
                return quota

            quota = UserQuota(user_id=user_id, **default_quota_values(tier))
            session.add(quota)
            try:
                session.commit()
            except IntegrityError:
                # A concurrent first request created the row
                session.rollback()
                return session.query(UserQuota).filter(UserQuota.user_id == user_id).one()
            logger.info(f"Created quota for user {user_id} (tier: {quota.tier})")
            return quota

    def update_quota(self, user_id: str, updates: Dict[str, Any]) -> UserQuota:
        with self.get_session() as session:
            quota = session.query(UserQuota).filter(UserQuota.user_id == user_id).first()
            if not quota:
                quota = UserQuota(user_id=user_id, **default_quota_values(updates.get('tier')))
                session.add(quota)

            for key, value in updates.items():
                if value is not None and hasattr(quota, key):
                    setattr(quota, key, value)

            session.commit()
            return quota

    def storage_usage(self, owner_id: str) -> int:
        """Bytes charged to owner: images + live volumes + containers"""
        with self.get_session() as session:
            images = session.query(func.coalesce(func.sum(ImageRecord.size), 0)).filter(
                ImageRecord.owner_id == owner_id
            ).scalar()
            volumes = session.query(func.coalesce(func.sum(VolumeRecord.size), 0)).filter(
                VolumeRecord.owner_id == owner_id,
                VolumeRecord.deleted_at.is_(None)
            ).scalar()
            containers = session.query(func.coalesce(func.sum(ContainerRecord.size), 0)).filter(
                ContainerRecord.owner_id == owner_id
            ).scalar()
            return int(images or 0) + int(volumes or 0) + int(containers or 0)

    def cpu_usage(self, owner_id: str) -> int:
        """Millicores already allotted to the owner's containers"""
        with self.get_session() as session:
            total = session.query(func.coalesce(func.sum(ContainerRecord.cpu_limit), 0)).filter(
                ContainerRecord.owner_id == owner_id
            ).scalar()
            return int(total or 0)

    def memory_usage(self, owner_id: str) -> int:
        """Bytes of memory already allotted to the owner's containers"""
        with self.get_session() as session:
            total = session.query(func.coalesce(func.sum(ContainerRecord.memory_limit), 0)).filter(
                ContainerRecord.owner_id == owner_id
            ).scalar()
            return int(total or 0)

    # Activity Operations
    def list_activities(
        self,
        user_id: Optional[str] = None,
        activity_type: Optional[str] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Dict[str, Any]:
        with self.get_session() as session:
            query = session.query(Activity)
            if user_id:
                query = query.filter(Activity.user_id == user_id)
            if activity_type:
                query = query.filter(Activity.type == activity_type)

            total = query.count()
            items = query.order_by(Activity.created_at.desc()).offset(offset).limit(limit).all()
            return {'items': items, 'total': total}
