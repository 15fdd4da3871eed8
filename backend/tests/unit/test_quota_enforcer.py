"""
Unit tests for QuotaEnforcer

Usage is summed from persisted records at call time, so each test seeds
records directly and asks for a decision.
"""

import pytest

from database import ImageRecord, VolumeRecord, UserQuota, GIB, default_quota_values, utcnow
from errors import QuotaExceeded
from quota import QuotaEnforcer, ResourceKind, Allow, Deny


@pytest.fixture
def enforcer(db):
    return QuotaEnforcer(db)


def _add_image(db, owner_id, size):
    with db.get_session() as session:
        session.add(ImageRecord(name='img', tag=str(size), size=size, owner_id=owner_id))
        session.commit()


class TestStorageDecisions:
    """Storage is images + live volumes + containers"""

    def test_deny_when_request_pushes_over_limit(self, enforcer, set_quota, db):
        set_quota('user-1', storage_limit=100)
        _add_image(db, 'user-1', 90)

        decision = enforcer.check_and_reserve('user-1', ResourceKind.STORAGE, 20)

        assert isinstance(decision, Deny)
        assert decision.allowed is False
        assert decision.reason == "Storage limit exceeded"
        assert decision.current == 90
        assert decision.requested == 20
        assert decision.limit == 100

    def test_allow_when_landing_exactly_on_limit(self, enforcer, set_quota, db):
        set_quota('user-1', storage_limit=100)
        _add_image(db, 'user-1', 90)

        decision = enforcer.check_and_reserve('user-1', ResourceKind.STORAGE, 10)

        assert isinstance(decision, Allow)
        assert decision.remaining == 0

    def test_zero_request_denied_only_when_already_over(self, enforcer, set_quota, db):
        set_quota('user-1', storage_limit=100)
        _add_image(db, 'user-1', 100)
        assert enforcer.check_and_reserve('user-1', ResourceKind.STORAGE, 0).allowed is True

        _add_image(db, 'user-1', 1)
        assert enforcer.check_and_reserve('user-1', ResourceKind.STORAGE, 0).allowed is False

    def test_tombstoned_volumes_not_counted(self, enforcer, set_quota, db):
        set_quota('user-1', storage_limit=100)
        with db.get_session() as session:
            session.add(VolumeRecord(name='live', owner_id='user-1', size=40))
            session.add(VolumeRecord(name='gone', owner_id='user-1', size=500, deleted_at=utcnow()))
            session.commit()

        assert enforcer.current_usage('user-1', ResourceKind.STORAGE) == 40

    def test_usage_of_other_users_ignored(self, enforcer, set_quota, db):
        set_quota('user-1', storage_limit=100)
        _add_image(db, 'user-2', 1000)

        assert enforcer.check_and_reserve('user-1', 'STORAGE', 50).allowed is True

    def test_negative_request_treated_as_zero(self, enforcer, set_quota):
        set_quota('user-1', storage_limit=100)

        decision = enforcer.check_and_reserve('user-1', ResourceKind.STORAGE, -50)

        assert decision.requested == 0


class TestCpuAndMemory:

    def test_cpu_sums_container_limits(self, enforcer, set_quota, add_container):
        set_quota('user-1', cpu_limit=1000)
        add_container('user-1', docker_id='a' * 64, name='a', cpu_limit=600)

        decision = enforcer.check_and_reserve('user-1', ResourceKind.CPU, 500)

        assert isinstance(decision, Deny)
        assert decision.reason == "CPU limit exceeded"
        assert decision.current == 600

    def test_memory_deny_reason(self, enforcer, set_quota, add_container):
        set_quota('user-1', memory_limit=GIB)
        add_container('user-1', docker_id='b' * 64, name='b', memory_limit=GIB)

        decision = enforcer.check_and_reserve('user-1', ResourceKind.MEMORY, 1)

        assert decision.reason == "Memory limit exceeded"


class TestQuotaDefaults:

    def test_quota_created_with_tier_defaults(self, enforcer, db):
        decision = enforcer.check_and_reserve('new-user', ResourceKind.STORAGE, 0, tier='pro')

        assert decision.limit == 100 * GIB
        with db.get_session() as session:
            quota = session.query(UserQuota).filter(UserQuota.user_id == 'new-user').one()
            assert quota.tier == 'pro'

    def test_free_tier_default(self):
        assert default_quota_values('free')['storage_limit'] == 50 * GIB
        assert default_quota_values(None)['storage_limit'] == 50 * GIB


class TestRequire:

    def test_require_raises_with_details(self, enforcer, set_quota, db):
        set_quota('user-1', storage_limit=100)
        _add_image(db, 'user-1', 90)

        with pytest.raises(QuotaExceeded) as exc_info:
            enforcer.require('user-1', ResourceKind.STORAGE, 20)

        assert exc_info.value.message == "Storage limit exceeded"
        assert exc_info.value.status_code == 400
        assert exc_info.value.details == {
            'kind': 'STORAGE', 'current': 90, 'requested': 20, 'limit': 100,
        }

    def test_require_returns_allow(self, enforcer, set_quota):
        set_quota('user-1', storage_limit=100)

        assert isinstance(enforcer.require('user-1', ResourceKind.STORAGE, 100), Allow)
