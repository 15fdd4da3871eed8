"""
Shared pytest fixtures for DockerFlow tests.

Fixtures provided:
- db: DatabaseManager on a temporary SQLite file
- mock_docker_client: Mock Docker SDK client
- make_container: Factory for mock Docker containers
- user / other_user / admin: Identity dicts as produced by get_current_user
- services: Fully wired Services around the mock client and temp database
- api_client: TestClient with get_services overridden
- auth_headers: X-User-* headers for an identity dict
"""

import os
import tempfile
from unittest.mock import MagicMock

import pytest

import sys
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from database import DatabaseManager, ContainerRecord, UserQuota, Activity, default_quota_values
from services import build_services


@pytest.fixture(scope="function")
def db():
    """
    Create a DatabaseManager on a temporary SQLite database.

    Each test gets a fresh file so tests don't affect each other.
    """
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    manager = DatabaseManager(f'sqlite:///{db_path}')

    yield manager

    manager.close()
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def mock_docker_client():
    """
    Mock Docker SDK client for testing without real Docker daemon.

    Returns a MagicMock with common Docker SDK methods stubbed.
    """
    client = MagicMock()
    client.api.containers = MagicMock(return_value=[])
    client.api.volumes = MagicMock(return_value={'Volumes': [], 'Warnings': None})
    client.containers.list = MagicMock(return_value=[])
    return client


@pytest.fixture
def make_container():
    """
    Factory for mock containers.

    `states` is the sequence of states the container reports on successive
    reload() calls; the last one sticks.
    """
    def _make(docker_id='abc123def456789', name='web', status='running', states=None):
        container = MagicMock()
        container.id = docker_id
        container.short_id = docker_id[:12]
        container.name = name
        container.status = status

        pending = list(states or [])

        def _reload():
            if pending:
                container.status = pending.pop(0)

        container.reload = MagicMock(side_effect=_reload)
        return container

    return _make


@pytest.fixture
def user():
    return {'user_id': 'user-1', 'role': 'user', 'tier': 'free'}


@pytest.fixture
def other_user():
    return {'user_id': 'user-2', 'role': 'user', 'tier': 'free'}


@pytest.fixture
def admin():
    return {'user_id': 'admin-1', 'role': 'admin', 'tier': 'admin'}


@pytest.fixture
def add_container(db):
    """Insert a ContainerRecord and return it"""
    def _add(owner_id='user-1', docker_id='abc123def456789', name='web', status='running', **kwargs):
        with db.get_session() as session:
            record = ContainerRecord(
                docker_id=docker_id,
                name=name,
                image_ref=kwargs.pop('image_ref', 'nginx:latest'),
                status=status,
                owner_id=owner_id,
                **kwargs
            )
            session.add(record)
            session.commit()
            return record
    return _add


@pytest.fixture
def set_quota(db):
    """Create or overwrite a user's quota"""
    def _set(user_id='user-1', **values):
        quota_values = default_quota_values('free')
        quota_values.update(values)
        with db.get_session() as session:
            session.query(UserQuota).filter(UserQuota.user_id == user_id).delete()
            quota = UserQuota(user_id=user_id, **quota_values)
            session.add(quota)
            session.commit()
            return quota
    return _set


@pytest.fixture
def activities(db):
    """Return all activity rows, oldest first"""
    def _list(activity_type=None):
        with db.get_session() as session:
            query = session.query(Activity)
            if activity_type:
                query = query.filter(Activity.type == activity_type)
            return query.order_by(Activity.created_at).all()
    return _list


@pytest.fixture
def services(mock_docker_client, db, tmp_path):
    """Services wired around the mock client, with instant restart polling"""
    svc = build_services(mock_docker_client, db)
    svc.orchestrator.poll_interval = 0
    svc.volumes.backup_dir = str(tmp_path)
    return svc


@pytest.fixture
def api_client(services):
    """TestClient whose routes use the test services"""
    from fastapi.testclient import TestClient
    from main import app
    from services import get_services

    app.dependency_overrides[get_services] = lambda: services
    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Headers the upstream proxy would set for an identity"""
    def _headers(identity: dict) -> dict:
        return {
            'X-User-Id': identity['user_id'],
            'X-User-Role': identity['role'],
            'X-User-Tier': identity['tier'],
        }
    return _headers
