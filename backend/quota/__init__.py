"""Per-user resource quotas."""

from .enforcer import QuotaEnforcer, ResourceKind, Allow, Deny

__all__ = ['QuotaEnforcer', 'ResourceKind', 'Allow', 'Deny']
