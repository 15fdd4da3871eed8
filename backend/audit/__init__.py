"""
Activity trail for DockerFlow.

Provides helpers for recording user actions to the activities table.
"""

from .activity_logger import (
    ActivityType,
    container_activity_type,
    get_client_info,
    log_activity,
)

__all__ = [
    'ActivityType',
    'container_activity_type',
    'get_client_info',
    'log_activity',
]
