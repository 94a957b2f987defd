import pytest
from fastapi.testclient import TestClient

from infrastructure.services import providers
from server import server


@pytest.fixture
def app(key_pool, api_key_service, registry, notification_service):
    """The application wired to in-memory services sharing one store."""
    overrides = {
        providers.get_key_pool: lambda: key_pool,
        providers.get_api_key_service: lambda: api_key_service,
        providers.get_device_registry: lambda: registry,
        providers.get_notification_service: lambda: notification_service,
    }
    server.handler.dependency_overrides.update(overrides)
    yield server.handler
    server.handler.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)
