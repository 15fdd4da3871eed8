"""
Unit tests for activity logging and client info extraction
"""

import pytest
from starlette.requests import Request

from audit import ActivityType, container_activity_type, get_client_info, log_activity
from database import Activity


def make_request(headers):
    scope = {
        'type': 'http',
        'method': 'GET',
        'path': '/',
        'headers': [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }
    return Request(scope)


class TestClientInfo:

    def test_first_forwarded_address(self):
        request = make_request({'X-Forwarded-For': '203.0.113.5, 192.168.1.1', 'User-Agent': 'curl/8'})

        assert get_client_info(request) == {'ip_address': '203.0.113.5', 'user_agent': 'curl/8'}

    def test_real_ip_fallback(self):
        request = make_request({'X-Real-IP': '203.0.113.7'})

        assert get_client_info(request)['ip_address'] == '203.0.113.7'

    def test_unknown_without_headers(self):
        assert get_client_info(make_request({})) == {'ip_address': 'unknown', 'user_agent': 'unknown'}

    def test_no_request(self):
        assert get_client_info(None) == {'ip_address': 'unknown', 'user_agent': 'unknown'}


class TestActivityTypes:

    @pytest.mark.parametrize('action,expected', [
        ('start', ActivityType.CONTAINER_START),
        ('stop', ActivityType.CONTAINER_STOP),
        ('restart', ActivityType.CONTAINER_RESTART),
        ('delete', ActivityType.CONTAINER_DELETE),
    ])
    def test_container_action_mapping(self, action, expected):
        assert container_activity_type(action) == expected

    def test_unknown_action(self):
        with pytest.raises(ValueError):
            container_activity_type('pause')


class TestLogActivity:

    def test_not_committed_by_default(self, db):
        with db.get_session() as session:
            log_activity(session, ActivityType.IMAGE_PULL, "Image nginx:latest pulled", 'user-1')
            session.rollback()

        with db.get_session() as session:
            assert session.query(Activity).count() == 0

    def test_auto_commit(self, db):
        with db.get_session() as session:
            activity = log_activity(
                session,
                ActivityType.USER_UPDATE,
                "Quota updated",
                'admin-1',
                details={'userId': 'user-1'},
                ip_address='10.0.0.2',
                auto_commit=True,
            )

        with db.get_session() as session:
            stored = session.query(Activity).filter(Activity.id == activity.id).one()
            assert stored.type == 'USER_UPDATE'
            assert stored.details == {'userId': 'user-1'}
            assert stored.ip_address == '10.0.0.2'
            assert stored.user_agent == 'unknown'

    def test_plain_string_type(self, db):
        with db.get_session() as session:
            activity = log_activity(session, 'SYSTEM_UPDATE', "Settings changed", None, auto_commit=True)

        assert activity.type == 'SYSTEM_UPDATE'
        assert activity.details == {}
