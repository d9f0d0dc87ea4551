"""
Critical tests for the Subscribely starter app.
Run with: pytest starter-template/tests/test_starter.py -v
"""

import pytest


@pytest.fixture
def app(tmp_path):
    """Create application for testing."""
    from subscribely import create_app
    app = create_app({
        'TESTING': True,
        'SUBSCRIBER_STORAGE': 'file',
        'SUBSCRIBERS_FILE': str(tmp_path / 'subscribers.json'),
        'LOGS_DB': str(tmp_path / 'app_logs.db'),
    })
    return app


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


def test_app_starts(app):
    """App should start without errors."""
    assert app is not None
    assert 'subscribely' in app.extensions


def test_health_endpoint(client):
    """Health endpoint should return 200."""
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['storage'] == 'FileAdapter'


def test_subscribe_endpoint(client):
    """Subscribe endpoint should accept a new address."""
    response = client.post('/api/subscribe', json={'email': 'starter@example.com'})
    assert response.status_code == 200
    assert response.get_json()['success'] is True
