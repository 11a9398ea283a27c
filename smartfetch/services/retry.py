"""
RetryEngine - re-runs failed attempts with exponential backoff.

States for one logical request:
- ATTEMPT(n): run the exchange
- EVALUATE: decide whether the failure is worth another attempt
- DONE / FAILED

Transitions:
- ATTEMPT → DONE: attempt succeeded
- ATTEMPT → EVALUATE: attempt raised a FetchError
- EVALUATE → ATTEMPT(n+1): retry allowed, after delay × backoff^n
- EVALUATE → FAILED: retries exhausted or error is not retryable
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from smartfetch.services.cancellation import run_cancellable
from smartfetch.services.errors import ErrorKind, FetchError
from smartfetch.services.types import FetchRequest, RetryPolicy

T = TypeVar("T")

# Never retried, whatever the policy says
TERMINAL_KINDS = frozenset(
    {ErrorKind.ABORT, ErrorKind.VALIDATION, ErrorKind.QUEUED, ErrorKind.RATE_LIMIT}
)


class RetryEngine:
    """
    Drives the attempt/retry state machine for one request at a time.

    Usage:
        engine = RetryEngine()
        response = await engine.run(
            lambda retry_count: send_once(request, retry_count),
            policy=RetryPolicy(max_retries=3, delay=0.5),
            request=request,
        )
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        debug: bool = False,
    ):
        self._sleep = sleep
        self._debug = debug
        self.retries = 0

    @staticmethod
    def should_retry(error: FetchError, retry_count: int, policy: RetryPolicy) -> bool:
        """Decide whether the attempt that raised error gets another try."""
        if error.kind in TERMINAL_KINDS:
            return False
        if retry_count >= policy.max_retries:
            return False

        if policy.retry_condition is not None:
            return bool(policy.retry_condition(error))

        if policy.retry_on is not None:
            return error.status is not None and error.status in policy.retry_on

        return error.is_transient

    @staticmethod
    def compute_delay(retry_count: int, policy: RetryPolicy) -> float:
        """Backoff before retry number retry_count (0-indexed), in seconds."""
        delay = policy.delay * (policy.backoff**retry_count)
        if policy.max_delay is not None:
            delay = min(delay, policy.max_delay)
        return delay

    async def run(
        self,
        attempt: Callable[[int], Awaitable[T]],
        policy: RetryPolicy | None,
        request: FetchRequest,
    ) -> T:
        """
        Run attempt until it succeeds or retrying stops.

        attempt receives the number of retries made so far. The error that
        ends the loop is re-raised with ``attempts`` set to the total number
        of attempts made.
        """
        retry_count = 0
        while True:
            try:
                return await attempt(retry_count)
            except FetchError as error:
                error.attempts = retry_count + 1
                if policy is None or not self.should_retry(error, retry_count, policy):
                    raise

                delay = self.compute_delay(retry_count, policy)
                self.retries += 1
                self._log(
                    f"Retrying {request.method} {request.url} "
                    f"({retry_count + 1}/{policy.max_retries}) after {delay:.3f}s: {error}"
                )
                await self._backoff(delay, request)
                retry_count += 1

    async def _backoff(self, delay: float, request: FetchRequest) -> None:
        """Sleep for delay, giving up early if the request is cancelled."""
        await run_cancellable(self._sleep(delay), request)

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[RetryEngine] {message}")

