"""
CacheCoordinator - response caching over pluggable storage backends.

Features:
- One StorageAdapter per CacheBackend (memory, file, sql)
- Per-entry TTL, evaluated lazily when an entry is read
- Expired entries are deleted by the read that finds them
- Storage failures never fail a request: they count as a miss
"""

import time
from dataclasses import dataclass
from typing import Any, Callable

from loguru import logger

from smartfetch.datastore.base import StorageAdapter
from smartfetch.services.fingerprint import fingerprint
from smartfetch.services.types import (
    CacheBackend,
    CachePolicy,
    FetchRequest,
    FetchResponse,
    resolve_cache_policy,
)


@dataclass
class CacheEntry:
    """A single cached payload with metadata. Times are epoch seconds."""

    payload: Any
    stored_at: float
    key: str
    ttl: float | None = None

    def is_expired(self, now: float) -> bool:
        """Check if entry is past its TTL."""
        if self.ttl is None:
            return False
        return now - self.stored_at > self.ttl

    def to_record(self) -> dict[str, Any]:
        return {
            "payload": self.payload,
            "stored_at": self.stored_at,
            "ttl": self.ttl,
            "key": self.key,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "CacheEntry":
        return cls(
            payload=record.get("payload"),
            stored_at=float(record["stored_at"]),
            key=record.get("key", ""),
            ttl=record.get("ttl"),
        )


class CacheCoordinator:
    """
    Looks up and stores responses for requests that opted into caching.

    Usage:
        cache = CacheCoordinator({CacheBackend.MEMORY: MemoryStorage()})

        cached = await cache.read(request)
        if cached:
            return cached

        response = await send(request)
        await cache.write(request, response)
    """

    def __init__(
        self,
        backends: dict[CacheBackend, StorageAdapter],
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self._backends = dict(backends)
        self._clock = clock
        self._debug = debug
        self._stats = CacheStats()

    @property
    def backends(self) -> dict[CacheBackend, StorageAdapter]:
        return dict(self._backends)

    def cache_key(self, request: FetchRequest, policy: CachePolicy) -> str:
        """Explicit policy key, or the request fingerprint."""
        return policy.key or fingerprint(request)

    async def read(self, request: FetchRequest) -> FetchResponse | None:
        """
        Get a cached response for request.

        Returns None when the request does not cache, nothing is stored, the
        stored entry expired, or the backend failed.
        """
        policy = resolve_cache_policy(request.cache)
        if policy is None:
            return None
        adapter = self._adapter(policy.backend)
        if adapter is None:
            return None

        key = self.cache_key(request, policy)
        try:
            record = await adapter.get(key)
        except Exception as e:
            self._stats.errors += 1
            logger.warning(f"Cache read failed on {policy.backend.value} backend: {e}")
            return None

        if record is None:
            self._stats.misses += 1
            self._log(f"MISS: {key[:50]}...")
            return None

        try:
            entry = CacheEntry.from_record(record)
        except (KeyError, TypeError, ValueError) as e:
            self._stats.errors += 1
            logger.warning(f"Discarding malformed cache entry {key[:50]}: {e}")
            await self._safe_delete(adapter, key)
            return None

        if entry.is_expired(self._clock()):
            self._stats.expired += 1
            self._log(f"EXPIRED: {key[:50]}...")
            await self._safe_delete(adapter, key)
            return None

        self._stats.hits += 1
        self._log(f"HIT: {key[:50]}...")
        return FetchResponse(
            data=entry.payload,
            status=200,
            status_text="OK",
            headers={},
            request=request,
            cached=True,
        )

    async def write(self, request: FetchRequest, response: FetchResponse) -> None:
        """Store the payload of a validated response."""
        policy = resolve_cache_policy(request.cache)
        if policy is None:
            return
        adapter = self._adapter(policy.backend)
        if adapter is None:
            return

        key = self.cache_key(request, policy)
        entry = CacheEntry(
            payload=response.data,
            stored_at=self._clock(),
            key=key,
            ttl=policy.ttl.total_seconds() if policy.ttl is not None else None,
        )
        try:
            await adapter.set(key, entry.to_record())
        except Exception as e:
            self._stats.errors += 1
            logger.warning(f"Cache write failed on {policy.backend.value} backend: {e}")
            return

        self._stats.writes += 1
        self._log(f"SET: {key[:50]}... (TTL: {entry.ttl}s)")

    async def clear(self, backend: CacheBackend | None = None) -> None:
        """Clear one backend, or every backend when none is given."""
        targets = [backend] if backend is not None else list(self._backends)
        for target in targets:
            adapter = self._adapter(target)
            if adapter is None:
                continue
            await adapter.clear()
            self._log(f"CLEAR: {target.value}")

    async def invalidate(self, pattern: str, backend: CacheBackend | None = None) -> None:
        """
        Invalidate entries matching pattern.

        Adapters cannot enumerate their keys, so this clears the whole
        backend regardless of the pattern.
        """
        self._log(f"INVALIDATE: '{pattern}' (full clear)")
        await self.clear(backend)

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        return self._stats

    def _adapter(self, backend: CacheBackend) -> StorageAdapter | None:
        backend = CacheBackend(backend)
        if backend == CacheBackend.NONE:
            return None
        adapter = self._backends.get(backend)
        if adapter is None:
            logger.warning(f"No storage configured for cache backend '{backend.value}'")
        return adapter

    async def _safe_delete(self, adapter: StorageAdapter, key: str) -> None:
        try:
            await adapter.delete(key)
        except Exception as e:
            logger.warning(f"Cache delete failed for {key[:50]}: {e}")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheCoordinator] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    writes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses + self.expired
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "expired": self.expired,
            "writes": self.writes,
            "errors": self.errors,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
