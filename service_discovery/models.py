from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, Dict, List

DEFAULT_PROTOCOL = "http"
DEFAULT_HEALTH_CHECK = "/health"
MIN_PORT = 1
MAX_PORT = 65535


def utcnow() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


class ServiceStatus(str, Enum):
    """Liveness status of a registered service"""
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"  # Never set by the registry itself


class Route(BaseModel):
    """Descriptive route exposed by a service. Only used for search."""
    path: str
    methods: List[str] = Field(default_factory=list)


class Service(BaseModel):
    """A registered service instance"""
    id: str
    name: str
    host: str
    port: int
    protocol: str = DEFAULT_PROTOCOL
    base_path: str = ""
    routes: Optional[List[Route]] = None
    health_check: str = DEFAULT_HEALTH_CHECK
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, str]] = None
    status: ServiceStatus = ServiceStatus.HEALTHY
    last_heartbeat: datetime = Field(default_factory=utcnow)
    registered_at: datetime = Field(default_factory=utcnow)


class RegisterServiceRequest(BaseModel):
    """Registration payload. Ranges are checked by the registry, not here."""
    name: str = ""
    host: str = ""
    port: int = 0
    protocol: str = ""
    base_path: str = ""
    routes: Optional[List[Route]] = None
    health_check: str = ""
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, str]] = None


class UpdateServiceRequest(BaseModel):
    """Partial update payload.

    Empty strings, 0 and None mean "not provided" and leave the stored value
    alone, so a field can't be reset to its zero value through an update.
    """
    host: str = ""
    port: int = 0
    protocol: str = ""
    base_path: str = ""
    routes: Optional[List[Route]] = None
    health_check: str = ""
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, str]] = None


class ListResponse(BaseModel):
    services: List[Service]
    count: int


class HeartbeatResponse(BaseModel):
    message: str
    last_heartbeat: datetime


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str
