"""Audit events emitted by every mutating registry operation."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from loguru import logger
from typing import Any, Callable, Dict

from service_discovery.models import utcnow


class AuditAction(str, Enum):
    REGISTERED = "registered"
    UPDATED = "updated"
    HEARTBEAT = "heartbeat"
    UNREGISTERED = "unregistered"


@dataclass
class AuditEvent:
    action: AuditAction
    service_id: str
    service_name: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


AuditObserver = Callable[[AuditEvent], None]


def log_audit_event(event: AuditEvent) -> None:
    """Default observer: write the event as a structured loguru record"""
    bound = logger.bind(
        action=event.action.value,
        service_id=event.service_id,
        service_name=event.service_name,
        **event.details,
    )
    message = f"Service {event.service_name} ({event.service_id}) {event.action.value}"
    # Heartbeats are frequent, keep them out of the default log level
    if event.action == AuditAction.HEARTBEAT:
        bound.debug(message)
    else:
        bound.info(message)
