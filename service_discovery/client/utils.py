import asyncio
from typing import Any, Coroutine, Optional

from loguru import logger

from service_discovery.client.client import ServiceDiscoveryClient
from service_discovery.errors import ServiceDiscoveryError


async def run_with_heartbeat(
    coro: Coroutine,
    base_url: Optional[str] = None,
    interval: float = 30,
    client: Optional[ServiceDiscoveryClient] = None,
    **overrides: Any,
) -> Any:
    """
    Run a coroutine while the current service is registered and heartbeating.

    Registers the service (see resolve_registration for overrides), starts a
    background heartbeat, awaits the coroutine, then stops the heartbeat and
    unregisters.

    Args:
        coro: The coroutine to run
        base_url: Registry URL. Defaults to SERVICE_DISCOVERY_URL
        interval: Heartbeat interval in seconds
        client: Existing client to use instead of creating one
        **overrides: Registration overrides (name, host, port, ...)
    """
    own_client = client is None
    if client is None:
        client = (
            ServiceDiscoveryClient(base_url) if base_url else ServiceDiscoveryClient.from_env()
        )

    try:
        try:
            service = await client.auto_register(**overrides)
        except BaseException:
            coro.close()
            raise
        heartbeat_task = client.start_heartbeat(service.id, interval)
        try:
            return await coro
        except asyncio.CancelledError:
            logger.info("Tasks cancelled")
            raise
        finally:
            client.stop_heartbeat()
            await heartbeat_task
            try:
                await client.unregister(service.id)
            except ServiceDiscoveryError as e:
                logger.error(f"Failed to unregister {service.name} ({service.id}): {e}")
    finally:
        if own_client:
            await client.aclose()
