"""
RequestDeduplicator - one shared exchange per fingerprint.

Callers that issue an identical request while one is still pending join the
pending task instead of starting their own; everybody observes the same
response object, or the same exception.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

T = TypeVar("T")


class RequestDeduplicator:
    """
    Table of pending requests keyed by fingerprint.

    Looking up a key and registering a new task for it happen in one
    synchronous step, so two callers can never both start work for a key.
    Joined callers await the task through ``asyncio.shield``: a caller that
    gives up leaves the exchange running for the others, and the task is only
    cancelled once its last caller is gone.

    Usage:
        dedup = RequestDeduplicator()
        response = await dedup.dedupe(fingerprint(request), lambda: send(request))
    """

    def __init__(self, debug: bool = False):
        self._pending: dict[str, asyncio.Task[Any]] = {}
        self._callers: dict[str, int] = {}
        self._debug = debug
        self._stats = DeduplicatorStats()

    async def dedupe(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        """
        Run factory() for key unless an identical request is already pending.

        Args:
            key: Request fingerprint
            factory: Starts the real work; only called when nothing is pending

        Returns:
            The shared result
        """
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._pending[key] = task
            task.add_done_callback(lambda done, key=key: self._settle(key, done))
            self._stats.started += 1
            self._log(f"START: {key[:50]}...")
        else:
            self._stats.joined += 1
            self._log(f"JOIN: {key[:50]}...")

        self._callers[key] = self._callers.get(key, 0) + 1
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._callers.get(key, 0) <= 1 and not task.done():
                task.cancel()
            raise
        finally:
            left = self._callers.get(key, 1) - 1
            if left > 0:
                self._callers[key] = left
            else:
                self._callers.pop(key, None)

    def _settle(self, key: str, task: asyncio.Task[Any]) -> None:
        """Forget a finished task so the next identical request starts fresh."""
        if self._pending.get(key) is task:
            del self._pending[key]
        if task.cancelled():
            self._stats.cancelled += 1
            return
        if task.exception() is not None:
            # Retrieved here so an unobserved failure is not reported twice
            self._stats.failed += 1

    def is_in_flight(self, key: str) -> bool:
        return key in self._pending

    def pending_count(self) -> int:
        return len(self._pending)

    def pending_keys(self) -> list[str]:
        return list(self._pending)

    async def cancel(self, key: str) -> bool:
        """Cancel the pending request for key. Returns False if none."""
        task = self._pending.pop(key, None)
        if task is None:
            return False
        task.cancel()
        self._log(f"CANCEL: {key[:50]}...")
        return True

    async def cancel_all(self) -> int:
        """Cancel every pending request; returns how many were cancelled."""
        tasks = list(self._pending.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            self._log(f"CANCEL_ALL: {len(tasks)} pending requests")
        return len(tasks)

    def get_stats(self) -> "DeduplicatorStats":
        self._stats.pending = len(self._pending)
        return self._stats

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[Deduplicator] {message}")


@dataclass
class DeduplicatorStats:
    """Counters for the pending-request table."""

    started: int = 0  # Exchanges actually started
    joined: int = 0  # Callers that shared a pending exchange
    failed: int = 0
    cancelled: int = 0
    pending: int = 0

    @property
    def join_rate(self) -> float:
        calls = self.started + self.joined
        return self.joined / calls if calls else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "started": self.started,
            "joined": self.joined,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "pending": self.pending,
            "join_rate": f"{self.join_rate:.2%}",
        }
