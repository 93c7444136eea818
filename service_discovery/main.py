import time
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException
from typing import Optional

from service_discovery.config import Settings
from service_discovery.errors import ServiceDiscoveryError
from service_discovery.models import (
    ErrorResponse,
    HeartbeatResponse,
    ListResponse,
    MessageResponse,
    RegisterServiceRequest,
    Service,
    UpdateServiceRequest,
)
from service_discovery.registry import ServiceRegistry

API_PREFIX = "/api/v1"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

router = APIRouter(prefix="/services", tags=["services"], responses=ERROR_RESPONSES)


def get_registry(request: Request) -> ServiceRegistry:
    return request.app.state.registry


# Services


@router.post("/register", status_code=201, response_model=Service)
def register_service(
    request: RegisterServiceRequest, registry: ServiceRegistry = Depends(get_registry)
) -> Service:
    """Register a new service"""
    return registry.register(request)


@router.get("/list", response_model=ListResponse)
def list_services(registry: ServiceRegistry = Depends(get_registry)) -> ListResponse:
    """List all registered services"""
    return registry.list()


@router.get("/search", response_model=ListResponse)
def search_services(
    route: str = "",
    name: str = "",
    tag: str = "",
    registry: ServiceRegistry = Depends(get_registry),
) -> ListResponse:
    """Find services by route prefix, name substring and/or tag"""
    return registry.search(route=route, name=name, tag=tag)


@router.get("/{service_id}", response_model=Service)
def get_service(service_id: str, registry: ServiceRegistry = Depends(get_registry)) -> Service:
    return registry.get(service_id)


@router.put("/{service_id}/update", response_model=Service)
def update_service(
    service_id: str,
    request: UpdateServiceRequest,
    registry: ServiceRegistry = Depends(get_registry),
) -> Service:
    """Update the provided (non-empty) fields of a service"""
    return registry.update(service_id, request)


@router.delete("/{service_id}/unregister", response_model=MessageResponse)
def unregister_service(
    service_id: str, registry: ServiceRegistry = Depends(get_registry)
) -> MessageResponse:
    return registry.unregister(service_id)


@router.put("/{service_id}/heartbeat", response_model=HeartbeatResponse)
def service_heartbeat(
    service_id: str, registry: ServiceRegistry = Depends(get_registry)
) -> HeartbeatResponse:
    return registry.heartbeat(service_id)


# Error rendering: every error body is {"error": "..."}


async def handle_registry_error(request: Request, exc: ServiceDiscoveryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.opt(exception=exc).error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = [
        f"{'.'.join(str(loc) for loc in error['loc'] if loc != 'body')}: {error['msg']}"
        for error in exc.errors()
    ]
    logger.warning(f"Failed to bind {request.method} {request.url.path}: {messages}")
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


async def handle_http_error(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error in {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "internal server error"})


async def log_requests(request: Request, call_next):
    """Log every request with its status and latency"""
    start = time.perf_counter()
    response = await call_next(request)
    latency_ms = (time.perf_counter() - start) * 1000

    bound = logger.bind(
        method=request.method,
        path=request.url.path,
        query=request.url.query,
        status=response.status_code,
        latency_ms=round(latency_ms, 3),
        client_ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent", ""),
    )
    message = f"{request.method} {request.url.path} -> {response.status_code} ({latency_ms:.1f}ms)"
    if response.status_code >= 500:
        bound.error(f"Server error: {message}")
    elif response.status_code >= 400:
        bound.warning(f"Client error: {message}")
    else:
        bound.info(f"Request completed: {message}")
    return response


def create_app(registry: ServiceRegistry, settings: Optional[Settings] = None) -> FastAPI:
    """Build the FastAPI app around an explicit registry"""
    settings = settings or Settings()
    app = FastAPI(title="Service Discovery API", debug=settings.server_mode == "debug")
    app.state.registry = registry
    app.state.settings = settings

    app.middleware("http")(log_requests)
    app.add_exception_handler(ServiceDiscoveryError, handle_registry_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(HTTPException, handle_http_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(router, prefix=API_PREFIX)
    return app
