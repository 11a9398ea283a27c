"""
MemoryStorage - volatile in-process storage backend.

Features:
- Plain dict keyed by string
- Optional size cap with oldest-first eviction
- Async-compatible operations guarded by a lock
"""

import asyncio
from typing import Any

from loguru import logger

from smartfetch.datastore.base import StorageAdapter


class MemoryStorage(StorageAdapter):
    """
    In-memory storage adapter.

    Usage:
        storage = MemoryStorage(max_size=100)
        await storage.set("key", {"payload": 1})
        record = await storage.get("key")
    """

    name = "memory"

    def __init__(self, max_size: int | None = None, debug: bool = False):
        self._memory: dict[str, dict[str, Any]] = {}
        self._max_size = max_size
        self._debug = debug
        self._lock = asyncio.Lock()
        self.evictions = 0

    async def get(self, key: str) -> dict[str, Any] | None:
        return self._memory.get(key)

    async def set(self, key: str, record: dict[str, Any]) -> None:
        async with self._lock:
            if (
                self._max_size is not None
                and len(self._memory) >= self._max_size
                and key not in self._memory
            ):
                self._evict_oldest()
            self._memory[key] = record

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._memory.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._memory)
            self._memory.clear()
            self._log(f"CLEAR: {count} entries removed")

    async def has(self, key: str) -> bool:
        return key in self._memory

    def __len__(self) -> int:
        return len(self._memory)

    def _evict_oldest(self) -> None:
        """Evict the first inserted entry."""
        if not self._memory:
            return
        oldest_key = next(iter(self._memory))
        del self._memory[oldest_key]
        self.evictions += 1
        self._log(f"EVICT: {oldest_key[:50]}...")

    def _log(self, message: str) -> None:
        if self._debug:
            logger.debug(f"[MemoryStorage] {message}")
