"""
Activity logging helpers for DockerFlow.

Records user-visible actions to the append-only activities table.
"""

import logging
from enum import Enum
from typing import Optional, Dict, Any, Union

from fastapi import Request
from sqlalchemy.orm import Session

from database import Activity, utcnow
from utils.client_ip import get_client_ip, get_user_agent, UNKNOWN

logger = logging.getLogger(__name__)


class ActivityType(str, Enum):
    """Activity record types"""
    # Containers
    CONTAINER_CREATE = 'CONTAINER_CREATE'
    CONTAINER_START = 'CONTAINER_START'
    CONTAINER_STOP = 'CONTAINER_STOP'
    CONTAINER_RESTART = 'CONTAINER_RESTART'
    CONTAINER_DELETE = 'CONTAINER_DELETE'

    # Images
    IMAGE_PULL = 'IMAGE_PULL'
    IMAGE_BUILD = 'IMAGE_BUILD'
    IMAGE_DELETE = 'IMAGE_DELETE'

    # Alerts
    ALERT_TRIGGERED = 'ALERT_TRIGGERED'
    ALERT_RESOLVED = 'ALERT_RESOLVED'

    # Users and system
    USER_UPDATE = 'USER_UPDATE'
    USER_DELETE = 'USER_DELETE'
    SYSTEM_UPDATE = 'SYSTEM_UPDATE'

    # Volumes
    VOLUME_CREATE = 'VOLUME_CREATE'
    VOLUME_MOUNT = 'VOLUME_MOUNT'
    VOLUME_DELETE = 'VOLUME_DELETE'
    VOLUME_BACKUP = 'VOLUME_BACKUP'
    VOLUME_RESTORE = 'VOLUME_RESTORE'


def container_activity_type(action: str) -> ActivityType:
    """CONTAINER_<ACTION> for a lifecycle action name"""
    return ActivityType(f"CONTAINER_{action.upper()}")


def get_client_info(request: Optional[Request]) -> Dict[str, str]:
    """
    Extract client information from request.

    Returns:
        Dict with ip_address and user_agent ('unknown' when absent)
    """
    if request is None:
        return {'ip_address': UNKNOWN, 'user_agent': UNKNOWN}

    return {
        'ip_address': get_client_ip(request),
        'user_agent': get_user_agent(request),
    }


def log_activity(
    db: Session,
    activity_type: Union[ActivityType, str],
    description: str,
    user_id: Optional[str],
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    auto_commit: bool = False,
) -> Activity:
    """
    Append an activity record.

    This function does NOT commit by default. The caller owns the transaction,
    so the activity lands together with the record change it describes.

    Args:
        db: Database session
        activity_type: Type of activity
        description: Human-readable summary
        user_id: Acting user
        details: Additional context stored as JSON metadata
        ip_address: Client IP address
        user_agent: Client user agent
        auto_commit: If True, commit after adding the entry

    Returns:
        Created Activity entry
    """
    activity_type = activity_type.value if isinstance(activity_type, ActivityType) else activity_type

    activity = Activity(
        type=activity_type,
        description=description,
        user_id=user_id,
        details=details or {},
        ip_address=ip_address or UNKNOWN,
        user_agent=user_agent or UNKNOWN,
        created_at=utcnow(),
    )

    db.add(activity)

    if auto_commit:
        db.commit()

    logger.debug(f"Activity: {activity_type} by {user_id}: {description}")

    return activity
