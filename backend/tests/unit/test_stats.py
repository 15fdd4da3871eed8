"""
Unit tests for container stats calculations and log tails
"""

import pytest

from docker_monitor.stats import (
    ContainerStatsService, calculate_cpu_percent, calculate_memory, split_log_lines, MAX_LOG_TAIL,
)
from errors import NotFound

SAMPLE_STATS = {
    'cpu_stats': {
        'cpu_usage': {'total_usage': 400_000_000, 'percpu_usage': [1, 1]},
        'system_cpu_usage': 20_000_000_000,
        'online_cpus': 2,
    },
    'precpu_stats': {
        'cpu_usage': {'total_usage': 200_000_000},
        'system_cpu_usage': 18_000_000_000,
    },
    'memory_stats': {
        'usage': 300 * 1024 * 1024,
        'limit': 1024 * 1024 * 1024,
        'stats': {'inactive_file': 44 * 1024 * 1024},
    },
    'networks': {
        'eth0': {'rx_bytes': 100, 'tx_bytes': 50},
        'eth1': {'rx_bytes': 10, 'tx_bytes': 5},
    },
    'pids_stats': {'current': 7},
}


class TestCalculations:

    def test_cpu_percent(self):
        # 0.2s of 2s system time on 2 CPUs
        assert calculate_cpu_percent(SAMPLE_STATS) == 20.0

    def test_cpu_percent_first_sample(self):
        assert calculate_cpu_percent({'cpu_stats': {}, 'precpu_stats': {}}) == 0.0

    def test_cpu_count_falls_back_to_percpu(self):
        stats = {
            'cpu_stats': {'cpu_usage': {'total_usage': 200, 'percpu_usage': [1, 1, 1, 1]}, 'system_cpu_usage': 1000},
            'precpu_stats': {'cpu_usage': {'total_usage': 100}, 'system_cpu_usage': 0},
        }
        assert calculate_cpu_percent(stats) == 40.0

    def test_memory_excludes_page_cache(self):
        usage, limit, percent = calculate_memory(SAMPLE_STATS)

        assert usage == 256 * 1024 * 1024
        assert limit == 1024 * 1024 * 1024
        assert percent == 25.0

    def test_memory_without_limit(self):
        assert calculate_memory({'memory_stats': {'usage': 10}}) == (10, 0, 0.0)

    def test_split_log_lines(self):
        assert split_log_lines(b'first\n\n  second  \n') == ['first', 'second']
        assert split_log_lines('') == []


class TestStatsService:

    @pytest.fixture
    def service(self, mock_docker_client, db):
        return ContainerStatsService(mock_docker_client, db)

    @pytest.mark.asyncio
    async def test_stats_snapshot(self, service, mock_docker_client, make_container, add_container, user):
        record = add_container('user-1')
        container = make_container()
        container.stats.return_value = SAMPLE_STATS
        mock_docker_client.containers.get.return_value = container

        stats = await service.stats(record.id, user)

        container.stats.assert_called_once_with(stream=False)
        assert stats.to_dict()['cpu_percent'] == 20.0
        assert stats.network_rx == 110
        assert stats.network_tx == 55
        assert stats.pids == 7
        assert stats.name == 'web'

    @pytest.mark.asyncio
    async def test_logs_tail_is_clamped(self, service, mock_docker_client, make_container, add_container, user):
        record = add_container('user-1')
        container = make_container()
        container.logs.return_value = b'a\nb\n'
        mock_docker_client.containers.get.return_value = container

        lines = await service.logs(record.id, user, tail=50_000, since=1700000000)

        assert lines == ['a', 'b']
        kwargs = container.logs.call_args.kwargs
        assert kwargs['tail'] == MAX_LOG_TAIL
        assert kwargs['since'] == 1700000000
        assert kwargs['stdout'] and kwargs['stderr']

    @pytest.mark.asyncio
    async def test_other_users_container(self, service, add_container, other_user):
        record = add_container('user-1')

        with pytest.raises(NotFound):
            await service.stats(record.id, other_user)
