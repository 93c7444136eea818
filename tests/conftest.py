"""
Pytest fixtures for service discovery tests
"""
import pytest
from fastapi.testclient import TestClient

from service_discovery.audit import AuditEvent
from service_discovery.config import Settings
from service_discovery.db import ServiceStore
from service_discovery.main import create_app
from service_discovery.models import RegisterServiceRequest, Route
from service_discovery.registry import ServiceRegistry


@pytest.fixture
def settings():
    return Settings(_env_file=None, port=8080, log_level="error", server_mode="test")


@pytest.fixture
def store():
    return ServiceStore()


@pytest.fixture
def audit_events():
    """Collects every audit event emitted by the registry fixture"""
    return []


@pytest.fixture
def registry(store, audit_events):
    def record(event: AuditEvent) -> None:
        audit_events.append(event)

    return ServiceRegistry(store, observers=[record])


@pytest.fixture
def app(registry, settings):
    return create_app(registry, settings)


@pytest.fixture
def client(app):
    return TestClient(app)


def make_request(**kwargs) -> RegisterServiceRequest:
    data = {"name": "test-service", "host": "localhost", "port": 3000}
    data.update(kwargs)
    return RegisterServiceRequest(**data)


@pytest.fixture
def catalog(registry):
    """A few services to search over"""
    return [
        registry.register(
            make_request(
                name="Test-Service",
                routes=[Route(path="/users", methods=["GET", "POST"])],
                tags=["api", "v1"],
            )
        ),
        registry.register(
            make_request(
                name="other",
                routes=[Route(path="/orders/list", methods=["GET"])],
                tags=["v10"],
            )
        ),
        registry.register(make_request(name="billing-test", tags=["api"])),
    ]
