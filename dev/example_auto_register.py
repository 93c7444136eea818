import asyncio

from loguru import logger

from service_discovery.client import ServiceDiscoveryClient, run_with_heartbeat


async def some_async_work(client: ServiceDiscoveryClient) -> None:
    """Example of another async task running while the heartbeat is active"""
    for counter in range(1, 6):
        peers = await client.search(tag="example")
        logger.info(f"Async work iteration {counter}, {len(peers)} example services registered")
        await asyncio.sleep(2)


async def main() -> None:
    async with ServiceDiscoveryClient("http://localhost:8080") as client:
        await run_with_heartbeat(
            some_async_work(client),
            client=client,
            interval=5,
            name="example-async-service",
            port=9000,
            tags=["example"],
        )


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
