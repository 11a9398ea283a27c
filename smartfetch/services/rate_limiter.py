"""
RateLimiter - token bucket per endpoint.

Buckets refill lazily when checked: every whole period that elapsed since the
last refill adds max_requests tokens, capped at max_requests. Exhausted
buckets either make the caller wait for the rest of the period or fail fast.

Buckets live in process memory only and are not shared between processes.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from loguru import logger

from smartfetch.services.errors import FetchError
from smartfetch.services.types import FetchRequest, RateLimitPolicy


@dataclass
class Bucket:
    """Token bucket state for one endpoint."""

    tokens: float
    last_refill_at: float


class RateLimiter:
    """
    Per-endpoint token bucket limiter.

    Usage:
        limiter = RateLimiter()
        policy = RateLimitPolicy(max_requests=10, period=1.0)
        await limiter.acquire(request, policy)  # may wait or raise
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        debug: bool = False,
    ):
        self._buckets: dict[str, Bucket] = {}
        self._clock = clock
        self._sleep = sleep
        self._debug = debug
        self.throttled = 0
        self.rejected = 0

    @staticmethod
    def bucket_key(request: FetchRequest, policy: RateLimitPolicy) -> str:
        return policy.key or request.url

    async def acquire(self, request: FetchRequest, policy: RateLimitPolicy) -> None:
        """
        Consume one token for request's endpoint.

        Raises:
            FetchError: kind RATE_LIMIT when the bucket is empty and the
                policy does not queue requests
        """
        key = self.bucket_key(request, policy)
        wait = self._try_consume(key, policy)
        if wait is None:
            return

        if not policy.queue_requests:
            self.rejected += 1
            self._log(f"REJECT: {key} (retry after {wait:.3f}s)")
            raise FetchError.rate_limited(request, wait)

        self.throttled += 1
        # A refill may go to another waiter; re-check after every sleep.
        while wait is not None:
            self._log(f"THROTTLE: {key} waiting {wait:.3f}s")
            await self._sleep(wait)
            wait = self._try_consume(key, policy)

    def _try_consume(self, key: str, policy: RateLimitPolicy) -> float | None:
        """
        Refill and take a token without suspending.

        Returns None when a token was taken, otherwise the seconds left until
        the current period ends.
        """
        now = self._clock()
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = Bucket(tokens=policy.max_requests, last_refill_at=now)
            self._buckets[key] = bucket

        intervals = math.floor((now - bucket.last_refill_at) / policy.period)
        if intervals > 0:
            bucket.tokens = min(
                policy.max_requests,
                bucket.tokens + intervals * policy.max_requests,
            )
            bucket.last_refill_at = now

        if bucket.tokens >= 1:
            bucket.tokens -= 1
            return None

        return policy.period - (now - bucket.last_refill_at)

    def get_tokens(self, key: str) -> float | None:
        """Tokens currently left for key, without refilling."""
        bucket = self._buckets.get(key)
        return bucket.tokens if bucket else None

    def reset(self, key: str | None = None) -> None:
        """Forget one bucket, or all of them."""
        if key is None:
            self._buckets.clear()
        else:
            self._buckets.pop(key, None)

    def get_status(self) -> dict[str, Any]:
        return {
            "buckets": len(self._buckets),
            "throttled": self.throttled,
            "rejected": self.rejected,
        }

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[RateLimiter] {message}")
