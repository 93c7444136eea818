"""Registry request semantics.

This module is responsible for:
1. Validating and defaulting registration requests
2. Merging partial updates into stored services
3. Heartbeats, unregistration and search over the store
4. Notifying audit observers about every change
"""

import uuid
from loguru import logger
from typing import Iterable, List, Optional

from service_discovery.audit import AuditAction, AuditEvent, AuditObserver, log_audit_event
from service_discovery.db import ServiceStore
from service_discovery.errors import (
    InternalError,
    InvalidRequestError,
    ServiceAlreadyExistsError,
)
from service_discovery.models import (
    DEFAULT_HEALTH_CHECK,
    DEFAULT_PROTOCOL,
    MAX_PORT,
    MIN_PORT,
    HeartbeatResponse,
    ListResponse,
    MessageResponse,
    RegisterServiceRequest,
    Service,
    ServiceStatus,
    UpdateServiceRequest,
    utcnow,
)


def _validate_port(port: int) -> None:
    if port < MIN_PORT or port > MAX_PORT:
        raise InvalidRequestError(f"port must be between {MIN_PORT} and {MAX_PORT}")


def validate_registration(request: RegisterServiceRequest) -> None:
    """Raise InvalidRequestError unless name, host and port are usable"""
    if not request.name:
        raise InvalidRequestError("name is required")
    if not request.host:
        raise InvalidRequestError("host is required")
    _validate_port(request.port)


def matches(service: Service, route: str = "", name: str = "", tag: str = "") -> bool:
    """Check a service against the optional search filters (AND-combined)"""
    if route:
        if not any(r.path == route or r.path.startswith(route) for r in service.routes or []):
            return False
    if name and name.lower() not in service.name.lower():
        return False
    if tag and tag not in (service.tags or []):
        return False
    return True


class ServiceRegistry:
    """Request-level operations over a ServiceStore"""

    def __init__(
        self,
        store: ServiceStore,
        observers: Optional[Iterable[AuditObserver]] = None,
    ) -> None:
        self.store = store
        self.observers: List[AuditObserver] = (
            list(observers) if observers is not None else [log_audit_event]
        )

    def _emit(self, action: AuditAction, service: Service, **details) -> None:
        event = AuditEvent(
            action=action,
            service_id=service.id,
            service_name=service.name,
            details=details,
        )
        for observer in self.observers:
            try:
                observer(event)
            except Exception:
                # The change is already stored, so the request still succeeds
                logger.exception(f"Audit observer failed on {action.value} for {service.id}")

    def register(self, request: RegisterServiceRequest) -> Service:
        """Create a new service with a fresh id"""
        validate_registration(request)

        now = utcnow()
        service = Service(
            id=str(uuid.uuid4()),
            name=request.name,
            host=request.host,
            port=request.port,
            protocol=request.protocol or DEFAULT_PROTOCOL,
            base_path=request.base_path,
            routes=request.routes,
            health_check=request.health_check or DEFAULT_HEALTH_CHECK,
            tags=request.tags,
            metadata=request.metadata,
            status=ServiceStatus.HEALTHY,
            last_heartbeat=now,
            registered_at=now,
        )

        try:
            self.store.create(service)
        except ServiceAlreadyExistsError as e:
            logger.error(f"Failed to register service {request.name}: {e}")
            raise InternalError(str(e)) from e

        self._emit(
            AuditAction.REGISTERED,
            service,
            host=service.host,
            port=service.port,
            protocol=service.protocol,
            base_path=service.base_path,
            routes_count=len(service.routes or []),
        )
        return service

    def list(self) -> ListResponse:
        services = self.store.get_all()
        logger.info(f"Listed {len(services)} services")
        return ListResponse(services=services, count=len(services))

    def get(self, service_id: str) -> Service:
        service = self.store.get_by_id(service_id)
        logger.debug(f"Retrieved service {service.name} ({service_id})")
        return service

    def update(self, service_id: str, request: UpdateServiceRequest) -> Service:
        """Merge the non-zero fields of the request into the stored service.

        The fetch-merge-write sequence is not atomic: two concurrent updates
        of the same id can overwrite each other's fields.
        """
        service = self.store.get_by_id(service_id)

        if request.port:
            _validate_port(request.port)

        if request.host:
            service.host = request.host
        if request.port:
            service.port = request.port
        if request.protocol:
            service.protocol = request.protocol
        if request.base_path:
            service.base_path = request.base_path
        if request.routes is not None:
            service.routes = request.routes
        if request.health_check:
            service.health_check = request.health_check
        if request.tags is not None:
            service.tags = request.tags
        if request.metadata is not None:
            service.metadata = request.metadata

        self.store.update(service)

        self._emit(
            AuditAction.UPDATED,
            service,
            fields=sorted(request.model_dump(exclude_defaults=True)),
        )
        return service

    def heartbeat(self, service_id: str) -> HeartbeatResponse:
        service = self.store.get_by_id(service_id)
        service.last_heartbeat = utcnow()
        service.status = ServiceStatus.HEALTHY
        self.store.update(service)

        self._emit(AuditAction.HEARTBEAT, service, last_heartbeat=service.last_heartbeat.isoformat())
        return HeartbeatResponse(message="heartbeat received", last_heartbeat=service.last_heartbeat)

    def unregister(self, service_id: str) -> MessageResponse:
        service = self.store.get_by_id(service_id)
        self.store.delete(service_id)

        self._emit(AuditAction.UNREGISTERED, service)
        return MessageResponse(message="service unregistered successfully")

    def search(self, route: str = "", name: str = "", tag: str = "") -> ListResponse:
        results = [s for s in self.store.get_all() if matches(s, route=route, name=name, tag=tag)]
        logger.info(
            f"Search completed. Params: route={route!r}, name={name!r}, tag={tag!r}. "
            f"Found {len(results)} services"
        )
        return ListResponse(services=results, count=len(results))
