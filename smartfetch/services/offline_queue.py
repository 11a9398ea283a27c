"""
OfflineQueue - persistent list of requests deferred while offline.

Entries are stored one per key through any StorageAdapter, with an ordered id
index under a reserved key so replay happens in FIFO order. Because the
adapter is persistent, queued requests survive process restarts.

Draining replays entries one at a time. An entry leaves the queue only once
its replay succeeded, or once it failed more than ``max_failures`` times.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from smartfetch.datastore.base import StorageAdapter
from smartfetch.services.types import FetchRequest

INDEX_KEY = "offline-queue:index"
ENTRY_PREFIX = "offline-queue:entry:"
MAX_REPLAY_FAILURES = 3


@dataclass
class OfflineQueueEntry:
    """A deferred request."""

    id: str
    request: FetchRequest
    queued_at: float
    retry_count: int = 0

    def to_record(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request": self.request.to_record(),
            "queued_at": self.queued_at,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "OfflineQueueEntry":
        return cls(
            id=record["id"],
            request=FetchRequest.from_record(record["request"]),
            queued_at=float(record["queued_at"]),
            retry_count=int(record.get("retry_count", 0)),
        )


@dataclass
class DrainResult:
    """Outcome of one drain cycle."""

    replayed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    dropped: list[str] = field(default_factory=list)
    skipped: bool = False  # Another drain was already running

    def to_dict(self) -> dict[str, Any]:
        return {
            "replayed": len(self.replayed),
            "failed": len(self.failed),
            "dropped": len(self.dropped),
            "skipped": self.skipped,
        }


class OfflineQueue:
    """
    Backend-agnostic persistent request queue.

    Usage:
        queue = OfflineQueue(SQLStorage(db, namespace="offline"))
        entry_id = await queue.enqueue(request)

        # Later, once back online
        result = await queue.drain(client.request)
    """

    def __init__(
        self,
        storage: StorageAdapter,
        clock: Callable[[], float] = time.time,
        max_failures: int = MAX_REPLAY_FAILURES,
        debug: bool = False,
    ):
        self._storage = storage
        self._clock = clock
        self._max_failures = max_failures
        self._debug = debug
        self._index_lock = asyncio.Lock()
        self._draining = False

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def enqueue(self, request: FetchRequest) -> str:
        """Persist request and return its queue id."""
        entry = OfflineQueueEntry(
            id=uuid.uuid4().hex,
            request=request,
            queued_at=self._clock(),
        )
        await self._storage.set(ENTRY_PREFIX + entry.id, entry.to_record())
        async with self._index_lock:
            ids = await self._read_index()
            ids.append(entry.id)
            await self._storage.set(INDEX_KEY, {"ids": ids})

        self._log(f"ENQUEUE: {request.method} {request.url} as {entry.id}")
        return entry.id

    async def dequeue(self, entry_id: str) -> None:
        """Remove an entry. Unknown ids are ignored."""
        async with self._index_lock:
            ids = await self._read_index()
            if entry_id in ids:
                ids.remove(entry_id)
                await self._storage.set(INDEX_KEY, {"ids": ids})
        await self._storage.delete(ENTRY_PREFIX + entry_id)
        self._log(f"DEQUEUE: {entry_id}")

    async def get(self, entry_id: str) -> OfflineQueueEntry | None:
        record = await self._storage.get(ENTRY_PREFIX + entry_id)
        return OfflineQueueEntry.from_record(record) if record else None

    async def list_all(self) -> list[OfflineQueueEntry]:
        """All queued entries, oldest first."""
        entries = []
        for entry_id in await self._read_index():
            entry = await self.get(entry_id)
            if entry is not None:
                entries.append(entry)
        return entries

    async def size(self) -> int:
        return len(await self._read_index())

    async def clear(self) -> None:
        """Remove every queued entry."""
        async with self._index_lock:
            ids = await self._read_index()
            for entry_id in ids:
                await self._storage.delete(ENTRY_PREFIX + entry_id)
            await self._storage.delete(INDEX_KEY)
        self._log(f"CLEAR: {len(ids)} entries removed")

    async def drain(
        self,
        replay: Callable[[FetchRequest], Awaitable[Any]],
        should_continue: Callable[[], bool] = lambda: True,
    ) -> DrainResult:
        """
        Replay queued requests one at a time.

        Args:
            replay: Re-runs one request; raising marks the replay as failed
            should_continue: Checked before each entry; returning False stops
                the drain early (e.g. connectivity dropped again)

        Returns:
            DrainResult; ``skipped`` is True when a drain was already running
        """
        result = DrainResult()
        if self._draining:
            result.skipped = True
            return result

        self._draining = True
        try:
            entries = await self.list_all()
            if entries:
                logger.info(f"Draining offline queue: {len(entries)} requests")

            for entry in entries:
                if not should_continue():
                    logger.info("Offline queue drain interrupted")
                    break
                await self._replay_entry(entry, replay, result)

            if entries:
                logger.info(
                    f"Offline queue drained: {len(result.replayed)} replayed, "
                    f"{len(result.failed)} failed, {len(result.dropped)} dropped"
                )
        finally:
            self._draining = False

        return result

    async def _replay_entry(
        self,
        entry: OfflineQueueEntry,
        replay: Callable[[FetchRequest], Awaitable[Any]],
        result: DrainResult,
    ) -> None:
        try:
            await replay(entry.request)
        except Exception as e:
            entry.retry_count += 1
            if entry.retry_count > self._max_failures:
                logger.warning(
                    f"Dropping offline request {entry.request.method} "
                    f"{entry.request.url} after {entry.retry_count} failed replays: {e}"
                )
                await self.dequeue(entry.id)
                result.dropped.append(entry.id)
            else:
                logger.warning(
                    f"Offline replay failed for {entry.request.url} "
                    f"({entry.retry_count}/{self._max_failures}): {e}"
                )
                await self._storage.set(ENTRY_PREFIX + entry.id, entry.to_record())
                result.failed.append(entry.id)
            return

        await self.dequeue(entry.id)
        result.replayed.append(entry.id)

    async def _read_index(self) -> list[str]:
        record = await self._storage.get(INDEX_KEY)
        if not record:
            return []
        return list(record.get("ids", []))

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[OfflineQueue] {message}")
