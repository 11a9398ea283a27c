"""
Request/response value types and per-call policies.

FetchRequest and FetchResponse are frozen dataclasses: hooks that want to
change them build a new value with dataclasses.replace().
"""

import re
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Callable

from smartfetch.services.cancellation import CancelToken

HTTP_METHODS = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"})

# Methods whose body never changes the identity of a request
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


class CacheBackend(str, Enum):
    """Storage backends a response can be cached in."""

    NONE = "none"
    MEMORY = "memory"
    FILE = "file"
    SQL = "sql"


@dataclass(frozen=True)
class CachePolicy:
    """Where and for how long a response is cached."""

    backend: CacheBackend = CacheBackend.MEMORY
    ttl: timedelta | None = None  # None: never expires
    key: str | None = None  # Overrides the request fingerprint

    def __post_init__(self) -> None:
        object.__setattr__(self, "backend", CacheBackend(self.backend))
        if self.ttl is not None and self.ttl < timedelta(0):
            raise ValueError("cache ttl must not be negative")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Delays are in seconds."""

    max_retries: int = 3
    delay: float = 1.0
    backoff: float = 2.0
    max_delay: float | None = None
    retry_on: tuple[int, ...] | None = None  # Explicit status allow-list
    retry_condition: Callable[[Exception], bool] | None = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.delay < 0:
            raise ValueError("retry delay must not be negative")
        if self.backoff <= 0:
            raise ValueError("backoff multiplier must be positive")
        if self.retry_on is not None:
            object.__setattr__(self, "retry_on", tuple(self.retry_on))


@dataclass(frozen=True)
class RateLimitPolicy:
    """Token bucket: max_requests per period seconds."""

    max_requests: int
    period: float = 1.0
    queue_requests: bool = False  # Wait for the next window instead of failing
    key: str | None = None  # Bucket key, defaults to the request url

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.period <= 0:
            raise ValueError("rate limit period must be positive")


DEFAULT_RETRY_POLICY = RetryPolicy(max_retries=3, delay=1.0, backoff=2.0)


def resolve_cache_policy(value: "CachePolicy | bool | None") -> CachePolicy | None:
    """Normalize a cache setting; True means the memory backend without TTL."""
    if value is None or value is False:
        return None
    if value is True:
        return CachePolicy()
    if value.backend == CacheBackend.NONE:
        return None
    return value


def resolve_retry_policy(value: "RetryPolicy | bool | None") -> RetryPolicy | None:
    """Normalize a retry setting; True maps to DEFAULT_RETRY_POLICY."""
    if value is None or value is False:
        return None
    if value is True:
        return DEFAULT_RETRY_POLICY
    return value


@dataclass(frozen=True)
class FetchRequest:
    """
    A single logical request.

    Policy fields left as None inherit the client defaults when the request
    is merged with the client configuration.
    """

    url: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    params: dict[str, Any] | None = None
    timeout: float | None = None
    cache: CachePolicy | bool | None = None
    retry: RetryPolicy | bool | None = None
    rate_limit: RateLimitPolicy | None = None
    deduplicate: bool | None = None
    offline_queueable: bool | None = None
    transform_request: Callable[[Any], Any] | None = None
    transform_response: Callable[[Any], Any] | None = None
    validate_response: Any = None
    cancel_token: CancelToken | None = field(default=None, compare=False)
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        method = self.method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {self.method}")
        object.__setattr__(self, "method", method)

    def to_record(self) -> dict[str, Any]:
        """JSON-able form used by persistent storage. Callables are dropped."""
        cache = self.cache
        if isinstance(cache, CachePolicy):
            cache = {
                "backend": cache.backend.value,
                "ttl": cache.ttl.total_seconds() if cache.ttl is not None else None,
                "key": cache.key,
            }
        retry = self.retry
        if isinstance(retry, RetryPolicy):
            retry = {
                "max_retries": retry.max_retries,
                "delay": retry.delay,
                "backoff": retry.backoff,
                "max_delay": retry.max_delay,
                "retry_on": list(retry.retry_on) if retry.retry_on else None,
            }
        rate_limit = None
        if self.rate_limit is not None:
            rate_limit = {
                "max_requests": self.rate_limit.max_requests,
                "period": self.rate_limit.period,
                "queue_requests": self.rate_limit.queue_requests,
                "key": self.rate_limit.key,
            }
        return {
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body,
            "params": self.params,
            "timeout": self.timeout,
            "cache": cache,
            "retry": retry,
            "rate_limit": rate_limit,
            "deduplicate": self.deduplicate,
            "offline_queueable": self.offline_queueable,
            "metadata": self.metadata,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "FetchRequest":
        """Rebuild a request persisted with to_record()."""
        cache = record.get("cache")
        if isinstance(cache, dict):
            ttl = cache.get("ttl")
            cache = CachePolicy(
                backend=CacheBackend(cache["backend"]),
                ttl=timedelta(seconds=ttl) if ttl is not None else None,
                key=cache.get("key"),
            )
        retry = record.get("retry")
        if isinstance(retry, dict):
            retry = RetryPolicy(
                max_retries=retry["max_retries"],
                delay=retry["delay"],
                backoff=retry["backoff"],
                max_delay=retry.get("max_delay"),
                retry_on=tuple(retry["retry_on"]) if retry.get("retry_on") else None,
            )
        rate_limit = record.get("rate_limit")
        if isinstance(rate_limit, dict):
            rate_limit = RateLimitPolicy(**rate_limit)
        return cls(
            url=record["url"],
            method=record.get("method", "GET"),
            headers=dict(record.get("headers") or {}),
            body=record.get("body"),
            params=record.get("params"),
            timeout=record.get("timeout"),
            cache=cache,
            retry=retry,
            rate_limit=rate_limit,
            deduplicate=record.get("deduplicate"),
            offline_queueable=record.get("offline_queueable"),
            metadata=dict(record.get("metadata") or {}),
        )


@dataclass(frozen=True)
class FetchResponse:
    """Result of one completed request."""

    data: Any
    status: int
    status_text: str
    headers: dict[str, str]
    request: FetchRequest
    cached: bool = False
    retry_count: int = 0

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class MockResponse:
    """Canned response returned in mock mode for a matching url and method."""

    url: str | re.Pattern[str]
    response: Any = None
    method: str | None = None  # None matches any method
    status: int = 200
    delay: float = 0.0

    def matches(self, request: FetchRequest) -> bool:
        if self.method is not None and self.method.upper() != request.method:
            return False
        if isinstance(self.url, re.Pattern):
            return self.url.search(request.url) is not None
        return self.url == request.url

    @property
    def key(self) -> str:
        return self.url.pattern if isinstance(self.url, re.Pattern) else self.url
