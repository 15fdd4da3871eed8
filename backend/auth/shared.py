"""
Identity dependencies shared by all DockerFlow routers.

Authentication happens upstream: the authenticating reverse proxy validates
the session and forwards the identity in X-User-* headers. These dependencies
only read and check that identity.
"""

import logging
from typing import Optional

from fastapi import Depends, Header

from errors import Unauthorized, Forbidden

logger = logging.getLogger(__name__)

ROLE_ADMIN = 'admin'
ROLE_USER = 'user'


async def get_current_user(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
    x_user_tier: Optional[str] = Header(None),
) -> dict:
    """
    Return the identity forwarded by the upstream proxy.

    Raises:
        Unauthorized: no X-User-Id header

    Returns:
        Dict with user_id, role, tier
    """
    if not x_user_id or not x_user_id.strip():
        logger.warning("Request without X-User-Id header rejected")
        raise Unauthorized("Unauthorized")

    role = (x_user_role or ROLE_USER).strip().lower()
    tier = (x_user_tier or ('admin' if role == ROLE_ADMIN else 'free')).strip().lower()

    return {
        'user_id': x_user_id.strip(),
        'role': role,
        'tier': tier,
    }


def is_admin(user: dict) -> bool:
    return user.get('role') == ROLE_ADMIN


async def require_admin(current_user: dict = Depends(get_current_user)) -> dict:
    """Dependency for admin-only routes"""
    if not is_admin(current_user):
        logger.warning(f"User {current_user['user_id']} attempted an admin-only operation")
        raise Forbidden("Admin access required")
    return current_user
