import json
import time
from datetime import datetime, timezone

import httpx
import pytest

from service_discovery.client import ServiceDiscoveryClient
from service_discovery.errors import (
    ConnectionFailedError,
    InternalError,
    InvalidRequestError,
    RequestTimeoutError,
    ServiceDiscoveryError,
    ServiceNotFoundError,
)
from service_discovery.models import RegisterServiceRequest, UpdateServiceRequest

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc).isoformat()


def service_body(**kwargs) -> dict:
    body = {
        "id": "test-id",
        "name": "test-service",
        "host": "localhost",
        "port": 3000,
        "status": "healthy",
        "last_heartbeat": NOW,
        "registered_at": NOW,
    }
    body.update(kwargs)
    return body


def make_client(handler, **kwargs) -> ServiceDiscoveryClient:
    kwargs.setdefault("retry_delay", 0)
    return ServiceDiscoveryClient(
        "http://registry.local/", transport=httpx.MockTransport(handler), **kwargs
    )


def test_new_client_defaults() -> None:
    client = ServiceDiscoveryClient("http://localhost:8080/")

    assert client.base_url == "http://localhost:8080"
    assert client.timeout == 10.0
    assert client.retries == 3
    assert client.retry_delay == 1.0
    assert client.service_id == ""


def test_new_client_with_options() -> None:
    client = ServiceDiscoveryClient("http://localhost:8080", timeout=5, retries=5, retry_delay=2)

    assert client.timeout == 5
    assert client.retries == 5
    assert client.retry_delay == 2


def test_from_env(monkeypatch) -> None:
    monkeypatch.setenv("SERVICE_DISCOVERY_URL", "http://registry:9000")

    assert ServiceDiscoveryClient.from_env().base_url == "http://registry:9000"


def test_from_env_requires_url(monkeypatch) -> None:
    monkeypatch.delenv("SERVICE_DISCOVERY_URL", raising=False)

    with pytest.raises(ValueError):
        ServiceDiscoveryClient.from_env()


@pytest.mark.asyncio
async def test_register_caches_id() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api/v1/services/register"
        body = json.loads(request.content)
        assert body == {"name": "test-service", "host": "localhost", "port": 3000}
        return httpx.Response(201, json=service_body())

    client = make_client(handler)
    service = await client.register(
        RegisterServiceRequest(name="test-service", host="localhost", port=3000)
    )

    assert service.id == "test-id"
    assert service.name == "test-service"
    assert client.service_id == "test-id"
    await client.aclose()


@pytest.mark.asyncio
async def test_register_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "host is required"})

    client = make_client(handler)
    with pytest.raises(InvalidRequestError, match="host is required"):
        await client.register(RegisterServiceRequest(name="x"))

    assert client.service_id == ""


@pytest.mark.asyncio
async def test_auto_register_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("SERVICE_NAME", "auto-service")
    monkeypatch.setenv("PORT", "4000")
    monkeypatch.setenv("SERVICE_TAGS", "api,v1")

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["name"] == "auto-service"
        assert body["port"] == 4000
        assert body["tags"] == ["api", "v1"]
        return httpx.Response(
            201, json=service_body(id="auto-id", name=body["name"], port=body["port"], tags=body["tags"])
        )

    client = make_client(handler)
    service = await client.auto_register()

    assert service.name == "auto-service"
    assert service.port == 4000
    assert client.service_id == "auto-id"


@pytest.mark.asyncio
async def test_auto_register_with_overrides() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["name"] == "override-service"
        assert body["port"] == 5000
        return httpx.Response(201, json=service_body(id="override-id", name=body["name"], port=5000))

    client = make_client(handler)
    service = await client.auto_register(name="override-service", port=5000)

    assert service.name == "override-service"


@pytest.mark.asyncio
async def test_list() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/services/list"
        services = [service_body(id="1", name="service-1"), service_body(id="2", name="service-2")]
        return httpx.Response(200, json={"services": services, "count": 2})

    services = await make_client(handler).list()

    assert [s.id for s in services] == ["1", "2"]


@pytest.mark.asyncio
async def test_get() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/services/test-id"
        return httpx.Response(200, json=service_body())

    service = await make_client(handler).get("test-id")

    assert service.id == "test-id"


@pytest.mark.asyncio
async def test_get_not_found() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "service not found"})

    with pytest.raises(ServiceNotFoundError):
        await make_client(handler).get("not-found")


@pytest.mark.asyncio
async def test_search_sends_only_given_params() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/v1/services/search"
        assert dict(request.url.params) == {"route": "/users"}
        return httpx.Response(200, json={"services": [service_body(name="user-service")], "count": 1})

    services = await make_client(handler).search(route="/users")

    assert len(services) == 1


@pytest.mark.asyncio
async def test_update_sends_only_provided_fields() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PUT"
        assert request.url.path == "/api/v1/services/test-id/update"
        assert json.loads(request.content) == {"port": 5000}
        return httpx.Response(200, json=service_body(port=5000))

    service = await make_client(handler).update("test-id", UpdateServiceRequest(port=5000))

    assert service.port == 5000


@pytest.mark.asyncio
async def test_unregister() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        assert request.url.path == "/api/v1/services/test-id/unregister"
        return httpx.Response(200, json={"message": "service unregistered successfully"})

    assert await make_client(handler).unregister("test-id") is None


@pytest.mark.asyncio
async def test_heartbeat() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PUT"
        assert request.url.path == "/api/v1/services/test-id/heartbeat"
        return httpx.Response(200, json={"message": "heartbeat received", "last_heartbeat": NOW})

    response = await make_client(handler).heartbeat("test-id")

    assert response.message == "heartbeat received"


@pytest.mark.asyncio
async def test_retry_then_success() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) <= 2:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=service_body())

    service = await make_client(handler, retries=2).get("test-id")

    assert service.id == "test-id"
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_retries_exhausted() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ConnectionFailedError) as exc_info:
        await make_client(handler, retries=3).get("test-id")

    assert len(attempts) == 4
    assert not isinstance(exc_info.value, RequestTimeoutError)
    assert isinstance(exc_info.value.cause, httpx.ConnectError)


@pytest.mark.asyncio
async def test_no_retries() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ConnectionFailedError):
        await make_client(handler, retries=0).list()

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_retry_waits_between_attempts() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(time.monotonic())
        if len(attempts) <= 2:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json=service_body())

    await make_client(handler, retries=2, retry_delay=0.05).get("test-id")

    assert len(attempts) == 3
    gaps = [later - earlier for earlier, later in zip(attempts, attempts[1:])]
    assert all(gap >= 0.04 for gap in gaps)


@pytest.mark.asyncio
async def test_timeout_after_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RequestTimeoutError):
        await make_client(handler, retries=1).get("test-id")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error_cls",
    [(400, InvalidRequestError), (404, ServiceNotFoundError), (500, InternalError)],
)
async def test_error_responses_are_not_retried(status, error_cls) -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(status, json={"error": "boom"})

    with pytest.raises(error_cls, match="boom"):
        await make_client(handler, retries=3).heartbeat("test-id")

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_unexpected_status_without_error_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(ServiceDiscoveryError) as exc_info:
        await make_client(handler).list()

    assert exc_info.value.status_code == 503
    assert str(exc_info.value) == "unexpected status code: 503"
