"""
SmartFetch demo entry point.
Runs a few requests against a public API to show caching, deduplication,
offline queueing and replay.
"""

import asyncio
from datetime import timedelta

from loguru import logger

from smartfetch.services import (
    CachePolicy,
    ErrorKind,
    FetchError,
    RetryPolicy,
    create_client,
    logger_middleware,
    timing_middleware,
)


async def main() -> None:
    """Main function."""
    logger.info("Starting SmartFetch demo...")

    client = create_client(base_url="https://jsonplaceholder.typicode.com")
    client.use(logger_middleware())
    client.use(timing_middleware())

    try:
        # Cached request: the second call is served from memory
        cache = CachePolicy(ttl=timedelta(minutes=5))
        await client.get("/todos/1", cache=cache)
        response = await client.get("/todos/1", cache=cache)
        logger.info(f"Second call cached: {response.cached}")

        # Identical concurrent requests share one exchange
        results = await asyncio.gather(*(client.get("/users/1") for _ in range(5)))
        logger.info(f"Concurrent results identical: {all(r is results[0] for r in results)}")

        # Writes made while offline are queued and replayed on reconnect
        client.connectivity.set_online(False)
        try:
            await client.post("/posts", body={"title": "queued", "userId": 1})
        except FetchError as e:
            if e.kind != ErrorKind.QUEUED:
                raise
            logger.info(f"Queued offline request {e.queue_id}")

        client.connectivity.set_online(True)
        await client.connectivity.join()

        # Retries with exponential backoff on network errors and 5xx
        await client.get("/posts", params={"userId": 1}, retry=RetryPolicy(max_retries=2, delay=0.5))

        logger.info(f"Health: {client.get_health_status()}")

    except FetchError as e:
        logger.error(f"Request failed: {e!r}")
    finally:
        logger.info("Closing client...")
        await client.close()
        logger.info("SmartFetch demo stopped")


if __name__ == "__main__":
    asyncio.run(main())
