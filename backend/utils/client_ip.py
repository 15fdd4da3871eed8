"""
Client IP extraction for activity records.

DockerFlow always sits behind the authenticating reverse proxy, so the
forwarding headers it sets are trusted.
"""

import logging
from fastapi import Request

logger = logging.getLogger(__name__)

UNKNOWN = 'unknown'


def get_client_ip(request: Request) -> str:
    """
    Get client IP address from proxy headers.

    Order: first X-Forwarded-For entry, then X-Real-IP, else 'unknown'.

    Examples:
        - X-Forwarded-For: "203.0.113.5, 192.168.1.1" -> "203.0.113.5"
        - X-Real-IP: "203.0.113.7" -> "203.0.113.7"
    """
    xff = request.headers.get("x-forwarded-for")
    if xff:
        client_ip = xff.split(",")[0].strip()
        if client_ip:
            return client_ip

    real_ip = request.headers.get("x-real-ip")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    logger.debug("No forwarding headers on request, recording client IP as unknown")
    return UNKNOWN


def get_user_agent(request: Request) -> str:
    return request.headers.get("user-agent") or UNKNOWN
