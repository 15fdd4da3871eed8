"""
Unit tests for quota row creation in DatabaseManager
"""

from unittest.mock import patch

from sqlalchemy.orm import Query

from database import GIB, UserQuota


def test_created_with_tier_defaults(db):
    quota = db.get_or_create_quota('pro-1', 'pro')

    assert quota.tier == 'pro'
    assert quota.storage_limit == 100 * GIB


def test_get_quota_never_creates(db):
    assert db.get_quota('user-1') is None
    assert db.get_quota('user-1') is None

    with db.get_session() as session:
        assert session.query(UserQuota).count() == 0


def test_concurrent_first_request_rereads_row(db):
    db.get_or_create_quota('user-1', 'pro')

    # The lookup misses as if another request inserted the row after it
    with patch.object(Query, 'first', autospec=True, side_effect=[None]):
        quota = db.get_or_create_quota('user-1', 'free')

    assert quota.tier == 'pro'
    assert quota.storage_limit == 100 * GIB
    with db.get_session() as session:
        assert session.query(UserQuota).count() == 1
