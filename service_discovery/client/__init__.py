from service_discovery.client.client import ServiceDiscoveryClient, get_registry_url
from service_discovery.client.identity import resolve_registration
from service_discovery.client.utils import run_with_heartbeat

__all__ = [
    "ServiceDiscoveryClient",
    "get_registry_url",
    "resolve_registration",
    "run_with_heartbeat",
]
