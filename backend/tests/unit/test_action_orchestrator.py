"""
Unit tests for ActionOrchestrator

Covers the lifecycle state checks, restart polling, idempotent delete and
the record/activity written for each completed action.
"""

from unittest.mock import AsyncMock, call, patch

import docker.errors
import pytest

from database import ContainerRecord
from docker_monitor.operations import ActionOrchestrator, ContainerAction, get_owned_container
from errors import (
    NotFound, AlreadyRunning, AlreadyStopped, InvalidStateTransition,
    RestartTimeout, DockerRuntimeError,
)


@pytest.fixture
def orchestrator(mock_docker_client, db):
    return ActionOrchestrator(mock_docker_client, db, poll_interval=0, poll_attempts=10, restart_timeout=30)


@pytest.fixture
def record(add_container):
    return add_container('user-1', docker_id='abc123def456789', name='web', status='running')


class TestPreconditions:

    @pytest.mark.asyncio
    async def test_start_running_container_rejected(self, orchestrator, mock_docker_client, make_container, record, user, activities):
        container = make_container(status='running')
        mock_docker_client.containers.get.return_value = container

        with pytest.raises(AlreadyRunning) as exc_info:
            await orchestrator.apply(record.id, 'start', user)

        assert exc_info.value.message == "Container is already running"
        assert exc_info.value.status_code == 400
        container.start.assert_not_called()
        assert activities() == []

    @pytest.mark.asyncio
    async def test_stop_exited_container_rejected(self, orchestrator, mock_docker_client, make_container, record, user):
        container = make_container(status='exited')
        mock_docker_client.containers.get.return_value = container

        with pytest.raises(AlreadyStopped):
            await orchestrator.apply(record.id, ContainerAction.STOP, user)

        container.stop.assert_not_called()

    @pytest.mark.asyncio
    async def test_restart_paused_container_rejected(self, orchestrator, mock_docker_client, make_container, record, user):
        container = make_container(status='paused')
        mock_docker_client.containers.get.return_value = container

        with pytest.raises(InvalidStateTransition, match="Cannot restart container in state: paused"):
            await orchestrator.apply(record.id, 'restart', user)

        container.restart.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, orchestrator, record, user):
        with pytest.raises(InvalidStateTransition, match="Invalid action"):
            await orchestrator.apply(record.id, 'pause', user)


class TestTransitions:

    @pytest.mark.asyncio
    async def test_start_records_new_state(self, orchestrator, mock_docker_client, make_container, add_container, user, activities, db):
        record = add_container('user-1', status='exited')
        container = make_container(status='exited', states=['running'])
        mock_docker_client.containers.get.return_value = container

        result = await orchestrator.apply(record.id, 'start', user, {'ip_address': '10.0.0.1', 'user_agent': 'pytest'})

        container.start.assert_called_once()
        assert result.previous_state == 'exited'
        assert result.new_state == 'running'
        assert db.get_container(record.id).status == 'running'

        [activity] = activities()
        assert activity.type == 'CONTAINER_START'
        assert activity.ip_address == '10.0.0.1'
        assert activity.details['previousState'] == 'exited'
        assert activity.details['newState'] == 'running'

    @pytest.mark.asyncio
    async def test_stop_running_container(self, orchestrator, mock_docker_client, make_container, record, user, activities):
        container = make_container(status='running', states=['exited'])
        mock_docker_client.containers.get.return_value = container

        result = await orchestrator.apply(record.id, 'stop', user)

        container.stop.assert_called_once()
        assert result.to_dict() == {
            'message': "Container stop successful",
            'previousState': 'running',
            'newState': 'exited',
            'containerId': record.id,
            'containerName': 'web',
        }
        assert [a.type for a in activities()] == ['CONTAINER_STOP']

    @pytest.mark.asyncio
    async def test_restart_polls_until_running(self, orchestrator, mock_docker_client, make_container, record, user, activities):
        container = make_container(status='exited', states=['exited', 'exited', 'running'])
        mock_docker_client.containers.get.return_value = container

        result = await orchestrator.apply(record.id, 'restart', user)

        container.restart.assert_called_once_with(timeout=30)
        # Three polls, then the final refresh
        assert container.reload.call_count == 4
        assert result.previous_state == 'exited'
        assert result.new_state == 'running'
        assert [a.type for a in activities()] == ['CONTAINER_RESTART']

    @pytest.mark.asyncio
    async def test_restart_times_out_after_poll_attempts(self, orchestrator, mock_docker_client, make_container, record, user, activities, db):
        container = make_container(status='running', states=['restarting'])
        mock_docker_client.containers.get.return_value = container

        with pytest.raises(RestartTimeout) as exc_info:
            await orchestrator.apply(record.id, 'restart', user)

        assert exc_info.value.attempts == 10
        assert exc_info.value.status_code == 504
        assert container.reload.call_count == 10
        assert activities() == []
        assert db.get_container(record.id).status == 'running'

    @pytest.mark.asyncio
    async def test_engine_error_passes_message_through(self, orchestrator, mock_docker_client, make_container, add_container, user):
        record = add_container('user-1', status='exited')
        container = make_container(status='exited')
        container.start.side_effect = docker.errors.APIError("port is already allocated")
        mock_docker_client.containers.get.return_value = container

        with pytest.raises(DockerRuntimeError, match="port is already allocated"):
            await orchestrator.apply(record.id, 'start', user)


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_removes_container_and_record(self, orchestrator, mock_docker_client, make_container, record, user, activities, db):
        container = make_container(status='running')
        mock_docker_client.containers.get.return_value = container

        result = await orchestrator.apply(record.id, 'delete', user)

        container.remove.assert_called_once_with(force=True)
        assert result.previous_state == 'running'
        assert result.new_state == 'removed'
        assert db.get_container(record.id) is None
        assert [a.type for a in activities()] == ['CONTAINER_DELETE']

    @pytest.mark.asyncio
    async def test_delete_already_gone_from_docker(self, orchestrator, mock_docker_client, record, user, activities, db):
        mock_docker_client.containers.get.side_effect = docker.errors.NotFound("No such container")

        result = await orchestrator.apply(record.id, 'delete', user)

        assert result.new_state == 'removed'
        assert db.get_container(record.id) is None
        assert [a.type for a in activities()] == ['CONTAINER_DELETE']


class TestOwnership:

    def test_other_users_container_looks_missing(self, db, record, other_user):
        with pytest.raises(NotFound, match="Container not found"):
            get_owned_container(db, record.id, other_user)

    def test_admin_may_act_on_any_container(self, db, record, admin):
        assert get_owned_container(db, record.id, admin).id == record.id

    def test_lookup_by_docker_id(self, db, record, user):
        assert get_owned_container(db, 'abc123def456789', user).id == record.id

    @pytest.mark.asyncio
    async def test_apply_never_reaches_docker_for_non_owner(self, orchestrator, mock_docker_client, record, other_user):
        with pytest.raises(NotFound):
            await orchestrator.apply(record.id, 'stop', other_user)

        mock_docker_client.containers.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_record(self, orchestrator, user):
        with pytest.raises(NotFound):
            await orchestrator.apply('does-not-exist', 'start', user)


def test_record_model_defaults(db, add_container):
    record = add_container('user-1', docker_id=None, name='pending', status='created')
    with db.get_session() as session:
        stored = session.query(ContainerRecord).filter(ContainerRecord.id == record.id).one()
        assert stored.ports == {}
        assert stored.size == 0


class TestRestartPollingDefaults:

    def test_default_polling(self, mock_docker_client, db):
        orchestrator = ActionOrchestrator(mock_docker_client, db)

        assert orchestrator.poll_interval == 1.0
        assert orchestrator.poll_attempts == 10
        assert orchestrator.restart_timeout == 30

    @pytest.mark.asyncio
    async def test_sleeps_one_second_between_attempts_only(self, mock_docker_client, db, make_container, record, user):
        orchestrator = ActionOrchestrator(mock_docker_client, db)
        container = make_container(status='running', states=['restarting'])
        mock_docker_client.containers.get.return_value = container

        with patch('docker_monitor.operations.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            with pytest.raises(RestartTimeout):
                await orchestrator.apply(record.id, 'restart', user)

        assert mock_sleep.await_count == 9
        assert mock_sleep.await_args_list == [call(1.0)] * 9
        assert container.reload.call_count == 10

    @pytest.mark.asyncio
    async def test_no_sleep_when_running_on_first_poll(self, mock_docker_client, db, make_container, record, user):
        orchestrator = ActionOrchestrator(mock_docker_client, db)
        container = make_container(status='exited', states=['running'])
        mock_docker_client.containers.get.return_value = container

        with patch('docker_monitor.operations.asyncio.sleep', new_callable=AsyncMock) as mock_sleep:
            result = await orchestrator.apply(record.id, 'restart', user)

        assert result.new_state == 'running'
        mock_sleep.assert_not_awaited()
