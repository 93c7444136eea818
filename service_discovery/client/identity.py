"""Work out how a service should register itself.

Each field comes from an explicit override, then the environment, then a
default, in that order.
"""

import os
import socket
import sys
from typing import Dict, List, Mapping, Optional

from service_discovery.models import (
    DEFAULT_HEALTH_CHECK,
    DEFAULT_PROTOCOL,
    RegisterServiceRequest,
    Route,
)

DEFAULT_PORT = 8080
METADATA_PREFIX = "SERVICE_META_"


def _environ(environ: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def resolve_name(override: str = "", environ: Optional[Mapping[str, str]] = None) -> str:
    if override:
        return override
    name = _environ(environ).get("SERVICE_NAME")
    if name:
        return name
    executable = sys.argv[0] if sys.argv and sys.argv[0] else sys.executable or ""
    name = os.path.basename(executable)
    # python -m pkg runs pkg/__main__.py
    if name == "__main__.py":
        name = os.path.basename(os.path.dirname(os.path.abspath(executable)))
    return name or "unknown"


def resolve_host(override: str = "", environ: Optional[Mapping[str, str]] = None) -> str:
    if override:
        return override
    env = _environ(environ)
    pod_ip = env.get("POD_IP")
    if pod_ip:
        return pod_ip
    hostname = env.get("HOSTNAME")
    if hostname:
        return hostname
    try:
        return socket.gethostname() or "localhost"
    except OSError:
        return "localhost"


def resolve_port(override: int = 0, environ: Optional[Mapping[str, str]] = None) -> int:
    if override:
        return override
    port = _environ(environ).get("PORT")
    if port:
        try:
            return int(port)
        except ValueError:
            pass
    return DEFAULT_PORT


def resolve_protocol(override: str = "", environ: Optional[Mapping[str, str]] = None) -> str:
    return override or _environ(environ).get("SERVICE_PROTOCOL") or DEFAULT_PROTOCOL


def resolve_base_path(override: str = "", environ: Optional[Mapping[str, str]] = None) -> str:
    return override or _environ(environ).get("SERVICE_BASE_PATH", "")


def resolve_health_check(override: str = "", environ: Optional[Mapping[str, str]] = None) -> str:
    return override or _environ(environ).get("SERVICE_HEALTH_CHECK") or DEFAULT_HEALTH_CHECK


def resolve_tags(
    override: Optional[List[str]] = None, environ: Optional[Mapping[str, str]] = None
) -> Optional[List[str]]:
    if override:
        return list(override)
    tags = _environ(environ).get("SERVICE_TAGS")
    if tags:
        return tags.split(",")
    return None


def resolve_metadata(
    override: Optional[Dict[str, str]] = None, environ: Optional[Mapping[str, str]] = None
) -> Optional[Dict[str, str]]:
    """Override, else every SERVICE_META_<KEY>=value variable as {key: value}.

    An empty result is None, so the registry treats it as not provided.
    """
    if override:
        return dict(override)
    metadata = {
        key[len(METADATA_PREFIX):].lower(): value
        for key, value in _environ(environ).items()
        if key.startswith(METADATA_PREFIX)
    }
    return metadata or None


def resolve_registration(
    name: str = "",
    host: str = "",
    port: int = 0,
    protocol: str = "",
    base_path: str = "",
    routes: Optional[List[Route]] = None,
    health_check: str = "",
    tags: Optional[List[str]] = None,
    metadata: Optional[Dict[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RegisterServiceRequest:
    """Build a complete registration request from sparse overrides"""
    return RegisterServiceRequest(
        name=resolve_name(name, environ),
        host=resolve_host(host, environ),
        port=resolve_port(port, environ),
        protocol=resolve_protocol(protocol, environ),
        base_path=resolve_base_path(base_path, environ),
        routes=routes,
        health_check=resolve_health_check(health_check, environ),
        tags=resolve_tags(tags, environ),
        metadata=resolve_metadata(metadata, environ),
    )
