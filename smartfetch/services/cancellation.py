"""
Request cancellation
====================

A CancelToken is handed to a request by its caller. Every suspension point of
that request (the exchange itself and retry backoff) races against it, and
the exchange additionally races the request timeout.
"""

import asyncio
from typing import TYPE_CHECKING, Awaitable, TypeVar

from smartfetch.services.errors import FetchError

if TYPE_CHECKING:
    from smartfetch.services.types import FetchRequest

T = TypeVar("T")


class CancelToken:
    """
    Cooperative cancellation signal threaded through a request.

    Usage:
        token = CancelToken()
        task = asyncio.create_task(client.get("/slow", cancel_token=token))
        token.cancel("user navigated away")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation. Only the first reason is kept."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(
    work: Awaitable[T],
    request: "FetchRequest",
    timeout: float | None = None,
) -> T:
    """
    Await work, stopping it if the request's token fires or timeout elapses.

    Raises:
        FetchError: kind ABORT when the cancel token fires first, kind
            TIMEOUT when the timeout elapses first
    """
    token = request.cancel_token
    if token is not None and token.cancelled:
        _discard(work)
        raise FetchError.aborted(request, token.reason)
    if token is None and timeout is None:
        return await work

    work_task = asyncio.ensure_future(work)
    waiters: set[asyncio.Future] = {work_task}
    cancel_task = None
    if token is not None:
        cancel_task = asyncio.ensure_future(token.wait())
        waiters.add(cancel_task)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        work_task.cancel()
        raise
    finally:
        if cancel_task is not None:
            cancel_task.cancel()

    if work_task in done:
        return work_task.result()

    work_task.cancel()
    if cancel_task is not None and cancel_task in done:
        raise FetchError.aborted(request, token.reason if token else None)
    raise FetchError.timeout(request, timeout)


def _discard(work: Awaitable) -> None:
    """Close a coroutine that will never be awaited."""
    close = getattr(work, "close", None)
    if close is not None:
        close()
