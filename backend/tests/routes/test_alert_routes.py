"""
API tests for /api/alerts and /api/monitoring
"""

import pytest


@pytest.fixture
def pending_alert(services, set_quota):
    set_quota('user-1', cpu_threshold=80.0)
    return services.alerts.evaluate('user-1', 'CPU', 95.0)[0]


class TestUsageReports:

    def test_breach_returns_alert(self, api_client, set_quota, user, auth_headers):
        set_quota('user-1', cpu_threshold=80.0, memory_threshold=85.0)

        response = api_client.post('/api/monitoring/usage', json={'cpu_usage': 92}, headers=auth_headers(user))

        assert response.status_code == 200
        [alert] = response.json()
        assert alert['status'] == 'PENDING'
        assert alert['message'] == "CPU usage (92%) exceeds threshold (80%)"

    def test_within_threshold(self, api_client, set_quota, user, auth_headers):
        set_quota('user-1', cpu_threshold=80.0)

        response = api_client.post('/api/monitoring/usage', json={'cpu_usage': 80}, headers=auth_headers(user))

        assert response.json() == []

    def test_empty_report_rejected(self, api_client, user, auth_headers):
        response = api_client.post('/api/monitoring/usage', json={}, headers=auth_headers(user))

        assert response.status_code == 422


class TestAlertLifecycle:

    def test_list(self, api_client, pending_alert, user, auth_headers):
        response = api_client.get('/api/alerts?status=PENDING', headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()['total'] == 1
        assert response.json()['alerts'][0]['id'] == pending_alert.id

    def test_list_hides_other_users_alerts(self, api_client, pending_alert, other_user, auth_headers):
        response = api_client.get('/api/alerts', headers=auth_headers(other_user))

        assert response.json()['total'] == 0

    def test_acknowledge(self, api_client, pending_alert, user, auth_headers):
        response = api_client.post(f'/api/alerts/{pending_alert.id}/acknowledge', headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()['acknowledged'] is True
        assert response.json()['status'] == 'RESOLVED'

    def test_dismiss_then_resolve_rejected(self, api_client, pending_alert, user, auth_headers):
        url = f'/api/alerts/{pending_alert.id}'
        assert api_client.patch(url, json={'status': 'DISMISSED'}, headers=auth_headers(user)).status_code == 200

        response = api_client.patch(url, json={'status': 'RESOLVED'}, headers=auth_headers(user))

        assert response.status_code == 400
        assert response.json()['kind'] == 'invalid_state_transition'

    def test_delete_is_admin_only(self, api_client, pending_alert, user, admin, auth_headers):
        url = f'/api/alerts/{pending_alert.id}'

        assert api_client.delete(url, headers=auth_headers(user)).status_code == 403
        assert api_client.delete(url, headers=auth_headers(admin)).json() == {'success': True}

    def test_purge(self, api_client, pending_alert, admin, auth_headers):
        response = api_client.delete('/api/alerts?status=PENDING', headers=auth_headers(admin))

        assert response.json() == {'success': True, 'deleted': 1}
