import asyncio
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from service_discovery.client.identity import resolve_registration
from service_discovery.errors import (
    ConnectionFailedError,
    InternalError,
    InvalidRequestError,
    RequestTimeoutError,
    ServiceDiscoveryError,
    ServiceNotFoundError,
)
from service_discovery.models import (
    HeartbeatResponse,
    ListResponse,
    RegisterServiceRequest,
    Service,
    UpdateServiceRequest,
)

SERVICES_PATH = "/api/v1/services"
REGISTRY_URL_ENV = "SERVICE_DISCOVERY_URL"

DEFAULT_TIMEOUT = 10.0
DEFAULT_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0

_STATUS_ERRORS = {
    400: InvalidRequestError,
    404: ServiceNotFoundError,
    500: InternalError,
}


def get_registry_url() -> Optional[str]:
    """Get registry URL from environment variable"""
    url = os.getenv(REGISTRY_URL_ENV)
    if not url:
        logger.warning(f"{REGISTRY_URL_ENV} not set in environment")
    return url


def error_from_response(response: httpx.Response) -> ServiceDiscoveryError:
    """Translate a non-success response into the shared error taxonomy"""
    message = f"unexpected status code: {response.status_code}"
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        message = str(body["error"])

    error_cls = _STATUS_ERRORS.get(response.status_code)
    if error_cls is None:
        return ServiceDiscoveryError(message, status_code=response.status_code)
    return error_cls(message)


@dataclass
class _HeartbeatHandle:
    task: asyncio.Task
    stop_event: asyncio.Event
    stopped: bool = field(default=False)

    def stop(self) -> None:
        """Signal the loop to finish. Safe to call more than once."""
        if self.stopped:
            return
        self.stopped = True
        self.stop_event.set()


class ServiceDiscoveryClient:
    """Async client for the service discovery registry.

    Every call is a single HTTP request. Connection-level failures are
    retried with a fixed delay; HTTP error responses are never retried and
    are raised as the matching ServiceDiscoveryError subclass.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self._http = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

        # Guards _service_id and _heartbeat
        self._lock = threading.Lock()
        self._service_id = ""
        self._heartbeat: Optional[_HeartbeatHandle] = None

    @classmethod
    def from_env(cls, **kwargs: Any) -> "ServiceDiscoveryClient":
        url = get_registry_url()
        if not url:
            raise ValueError(f"{REGISTRY_URL_ENV} not set")
        return cls(url, **kwargs)

    async def __aenter__(self) -> "ServiceDiscoveryClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        self.stop_heartbeat()
        await self._http.aclose()

    @property
    def service_id(self) -> str:
        """Id returned by the last successful register call"""
        with self._lock:
            return self._service_id

    # Transport

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception_type(httpx.TransportError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._http.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            raise RequestTimeoutError("request timeout", cause=e) from e
        except httpx.TransportError as e:
            raise ConnectionFailedError("connection to service discovery failed", cause=e) from e

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        logger.debug(
            f"Request failed (attempt {retry_state.attempt_number}/{self.retries + 1}), "
            f"retrying in {self.retry_delay}s: {error!r}"
        )

    async def _call(
        self,
        method: str,
        path: str,
        expected_status: int = 200,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        response = await self._request(method, path, json=json, params=params)
        if response.status_code != expected_status:
            raise error_from_response(response)
        return response.json()

    # Operations

    async def register(self, request: RegisterServiceRequest) -> Service:
        data = await self._call(
            "POST",
            f"{SERVICES_PATH}/register",
            expected_status=201,
            json=request.model_dump(mode="json", exclude_defaults=True),
        )
        service = Service.model_validate(data)
        with self._lock:
            self._service_id = service.id
        logger.info(f"Registered {service.name} as {service.id}")
        return service

    async def auto_register(self, **overrides: Any) -> Service:
        """Register using overrides, then environment, then defaults.

        Accepts the keyword arguments of resolve_registration.
        """
        return await self.register(resolve_registration(**overrides))

    async def get(self, service_id: str) -> Service:
        data = await self._call("GET", f"{SERVICES_PATH}/{service_id}")
        return Service.model_validate(data)

    async def list(self) -> List[Service]:
        data = await self._call("GET", f"{SERVICES_PATH}/list")
        return ListResponse.model_validate(data).services

    async def search(self, route: str = "", name: str = "", tag: str = "") -> List[Service]:
        params = {k: v for k, v in {"route": route, "name": name, "tag": tag}.items() if v}
        data = await self._call("GET", f"{SERVICES_PATH}/search", params=params or None)
        return ListResponse.model_validate(data).services

    async def update(self, service_id: str, request: UpdateServiceRequest) -> Service:
        data = await self._call(
            "PUT",
            f"{SERVICES_PATH}/{service_id}/update",
            json=request.model_dump(mode="json", exclude_defaults=True),
        )
        return Service.model_validate(data)

    async def unregister(self, service_id: str) -> None:
        await self._call("DELETE", f"{SERVICES_PATH}/{service_id}/unregister")
        logger.info(f"Unregistered {service_id}")

    async def heartbeat(self, service_id: str) -> HeartbeatResponse:
        data = await self._call("PUT", f"{SERVICES_PATH}/{service_id}/heartbeat")
        return HeartbeatResponse.model_validate(data)

    # Heartbeat loop

    def start_heartbeat(
        self,
        service_id: str,
        interval: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> asyncio.Task:
        """Send a heartbeat every `interval` seconds in a background task.

        The loop ends when stop_heartbeat() is called or cancel_event is set.
        Any running loop is stopped first. Must be called from a running
        event loop.
        """
        if interval <= 0:
            raise ValueError(f"heartbeat interval must be positive, got {interval}")
        stop_event = asyncio.Event()
        task = asyncio.create_task(
            self._heartbeat_loop(service_id, interval, stop_event, cancel_event),
            name=f"heartbeat-{service_id}",
        )
        handle = _HeartbeatHandle(task=task, stop_event=stop_event)
        with self._lock:
            previous, self._heartbeat = self._heartbeat, handle
        if previous is not None:
            previous.stop()
        logger.info(f"Started heartbeat for {service_id} every {interval} seconds")
        return task

    def stop_heartbeat(self) -> None:
        with self._lock:
            handle, self._heartbeat = self._heartbeat, None
        if handle is not None:
            handle.stop()

    async def _heartbeat_loop(
        self,
        service_id: str,
        interval: float,
        stop_event: asyncio.Event,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        events = [stop_event] if cancel_event is None else [stop_event, cancel_event]
        while True:
            if await _wait_any(events, timeout=interval):
                break
            try:
                await self.heartbeat(service_id)
                logger.debug(f"Heartbeat sent for {service_id}")
            except Exception as e:
                logger.error(f"Failed to send heartbeat for {service_id}: {e}")
        logger.info(f"Heartbeat for {service_id} stopped")


async def _wait_any(events: List[asyncio.Event], timeout: float) -> bool:
    """Wait until any event is set or the timeout passes. True if an event fired."""
    if any(event.is_set() for event in events):
        return True
    waiters = [asyncio.ensure_future(event.wait()) for event in events]
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
    return bool(done)
