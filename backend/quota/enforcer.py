"""
Quota enforcement for resource-creating actions.

Every container create, image pull/build and volume create asks the
QuotaEnforcer first. A Deny means the caller must not touch the runtime and
must not write any record.

Usage is computed from persisted records at call time. Nothing is reserved,
so two concurrent requests from the same user can both pass the check.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from database import DatabaseManager, UserQuota
from errors import QuotaExceeded

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    STORAGE = 'STORAGE'  # bytes
    CPU = 'CPU'  # millicores, 1000 = 1 core
    MEMORY = 'MEMORY'  # bytes


DENY_REASONS = {
    ResourceKind.STORAGE: "Storage limit exceeded",
    ResourceKind.CPU: "CPU limit exceeded",
    ResourceKind.MEMORY: "Memory limit exceeded",
}


@dataclass(frozen=True)
class Allow:
    kind: ResourceKind
    current: int
    requested: int
    limit: int

    allowed = True

    @property
    def remaining(self) -> int:
        return self.limit - self.current - self.requested


@dataclass(frozen=True)
class Deny:
    kind: ResourceKind
    reason: str
    current: int
    requested: int
    limit: int

    allowed = False


Decision = Union[Allow, Deny]


class QuotaEnforcer:
    """Compares current usage plus a request against the owner's limits"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def current_usage(self, owner_id: str, kind: ResourceKind) -> int:
        kind = ResourceKind(kind)
        if kind == ResourceKind.STORAGE:
            return self.db.storage_usage(owner_id)
        if kind == ResourceKind.CPU:
            return self.db.cpu_usage(owner_id)
        return self.db.memory_usage(owner_id)

    @staticmethod
    def limit_for(quota: UserQuota, kind: ResourceKind) -> int:
        if kind == ResourceKind.STORAGE:
            return int(quota.storage_limit)
        if kind == ResourceKind.CPU:
            return int(quota.cpu_limit)
        return int(quota.memory_limit)

    def check_and_reserve(
        self,
        owner_id: str,
        kind: Union[ResourceKind, str],
        requested: int,
        tier: Optional[str] = None
    ) -> Decision:
        """
        Decide whether owner_id may consume `requested` more units of `kind`.

        Deny when current + requested > limit. Landing exactly on the limit is allowed.
        """
        kind = ResourceKind(kind)
        requested = max(int(requested or 0), 0)

        quota = self.db.get_or_create_quota(owner_id, tier)
        limit = self.limit_for(quota, kind)
        current = self.current_usage(owner_id, kind)

        if current + requested > limit:
            reason = DENY_REASONS[kind]
            logger.info(
                f"Quota denied for user {owner_id}: {kind.value} "
                f"current={current} requested={requested} limit={limit}"
            )
            return Deny(kind=kind, reason=reason, current=current, requested=requested, limit=limit)

        return Allow(kind=kind, current=current, requested=requested, limit=limit)

    def require(
        self,
        owner_id: str,
        kind: Union[ResourceKind, str],
        requested: int,
        tier: Optional[str] = None
    ) -> Allow:
        """check_and_reserve that raises QuotaExceeded on Deny"""
        decision = self.check_and_reserve(owner_id, kind, requested, tier)
        if isinstance(decision, Deny):
            raise QuotaExceeded(decision.reason, details={
                'kind': decision.kind.value,
                'current': decision.current,
                'requested': decision.requested,
                'limit': decision.limit,
            })
        return decision
