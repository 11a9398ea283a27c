"""
Service layer - request orchestration for HTTP APIs.

Provides:
- SmartFetch: Client combining all of the below, built with create_client()
- CacheCoordinator: Response caching over memory, file and SQL storage
- RequestDeduplicator: Prevents duplicate concurrent requests
- RateLimiter: Per-endpoint token buckets
- RetryEngine: Exponential backoff for transient failures
- OfflineQueue: Persistent queue replayed when connectivity returns
- HookPipeline: Interceptors and named middleware
"""

from smartfetch.services.errors import ErrorKind, FetchError
from smartfetch.services.cancellation import CancelToken
from smartfetch.services.types import (
    CacheBackend,
    CachePolicy,
    FetchRequest,
    FetchResponse,
    MockResponse,
    RateLimitPolicy,
    RetryPolicy,
)
from smartfetch.services.cache import CacheCoordinator, CacheEntry, CacheStats
from smartfetch.services.connectivity import ConnectivityMonitor
from smartfetch.services.deduplicator import RequestDeduplicator
from smartfetch.services.rate_limiter import RateLimiter
from smartfetch.services.retry import RetryEngine
from smartfetch.services.offline_queue import DrainResult, OfflineQueue, OfflineQueueEntry
from smartfetch.services.hooks import (
    HookPipeline,
    Middleware,
    RequestInterceptor,
    ResponseInterceptor,
    auth_middleware,
    logger_middleware,
    timing_middleware,
)
from smartfetch.services.transport import HttpxTransport, RawResponse, Transport
from smartfetch.services.client import ClientConfig, SmartFetch, create_client

__all__ = [
    # Errors
    "ErrorKind",
    "FetchError",
    # Types
    "CancelToken",
    "CacheBackend",
    "CachePolicy",
    "FetchRequest",
    "FetchResponse",
    "MockResponse",
    "RateLimitPolicy",
    "RetryPolicy",
    # Cache
    "CacheCoordinator",
    "CacheEntry",
    "CacheStats",
    # Connectivity and offline queue
    "ConnectivityMonitor",
    "DrainResult",
    "OfflineQueue",
    "OfflineQueueEntry",
    # Deduplicator, rate limiter, retries
    "RequestDeduplicator",
    "RateLimiter",
    "RetryEngine",
    # Hooks
    "HookPipeline",
    "Middleware",
    "RequestInterceptor",
    "ResponseInterceptor",
    "auth_middleware",
    "logger_middleware",
    "timing_middleware",
    # Transport
    "HttpxTransport",
    "RawResponse",
    "Transport",
    # Client
    "ClientConfig",
    "SmartFetch",
    "create_client",
]
