"""
SmartFetch - request orchestrator.

Combines, in this order for every request:
- HookPipeline pre hooks (middleware, then request interceptors)
- mock responses (mock mode only)
- CacheCoordinator lookup
- RequestDeduplicator for identical in-flight requests
- RateLimiter token bucket
- OfflineQueue when the connectivity monitor reports offline
- RetryEngine around the transport exchange
- HookPipeline post hooks, or error hooks on failure
"""

import asyncio
import dataclasses
import json
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from smartfetch.datastore.base import StorageAdapter
from smartfetch.datastore.engine import Database
from smartfetch.datastore.file import FileStorage
from smartfetch.datastore.memory import MemoryStorage
from smartfetch.datastore.sql import SQLStorage
from smartfetch.services.cache import CacheCoordinator
from smartfetch.services.cancellation import run_cancellable
from smartfetch.services.connectivity import ConnectivityMonitor
from smartfetch.services.deduplicator import RequestDeduplicator
from smartfetch.services.errors import ErrorKind, FetchError
from smartfetch.services.fingerprint import fingerprint
from smartfetch.services.graphql import (
    GraphQLRequest,
    build_graphql_request,
    parse_graphql_response,
)
from smartfetch.services.hooks import (
    HookPipeline,
    Middleware,
    RequestInterceptor,
    ResponseInterceptor,
)
from smartfetch.services.offline_queue import DrainResult, OfflineQueue
from smartfetch.services.rate_limiter import RateLimiter
from smartfetch.services.retry import RetryEngine
from smartfetch.services.transport import (
    ExchangeOptions,
    HttpxTransport,
    RawResponse,
    Transport,
)
from smartfetch.services.types import (
    CacheBackend,
    CachePolicy,
    FetchRequest,
    FetchResponse,
    MockResponse,
    RateLimitPolicy,
    RetryPolicy,
    resolve_retry_policy,
)
from smartfetch.settings import Settings
from smartfetch.utils import build_url


def default_validate_status(status: int) -> bool:
    return 200 <= status < 300


@dataclass
class ClientConfig:
    """Configuration for one SmartFetch client."""

    base_url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    timeout: float = 30.0
    cache: CachePolicy | bool = False
    retry: RetryPolicy | bool = False
    rate_limit: RateLimitPolicy | None = None
    request_interceptors: list[RequestInterceptor] = field(default_factory=list)
    response_interceptors: list[ResponseInterceptor] = field(default_factory=list)
    middleware: list[Middleware] = field(default_factory=list)
    debug: bool = False
    mock_mode: bool = False
    offline_queue_enabled: bool = True
    validate_status: Callable[[int], bool] = default_validate_status


class SmartFetch:
    """
    HTTP client with caching, deduplication, rate limiting, offline
    queueing, retries and hooks.

    Usage:
        async with create_client(ClientConfig(base_url="https://api.example.com")) as client:
            # Simple request
            response = await client.get("/users", params={"page": 1})

            # Cached for a minute, retried on network errors and 5xx
            response = await client.get(
                "/config",
                cache=CachePolicy(ttl=timedelta(minutes=1)),
                retry=True,
            )
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
        cache_backends: dict[CacheBackend, StorageAdapter] | None = None,
        offline_storage: StorageAdapter | None = None,
        connectivity: ConnectivityMonitor | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_engine: RetryEngine | None = None,
    ):
        self.config = config or ClientConfig()
        debug = self.config.debug

        self._transport = transport or HttpxTransport(default_timeout=self.config.timeout)
        self._cache = CacheCoordinator(
            cache_backends or {CacheBackend.MEMORY: MemoryStorage(debug=debug)},
            debug=debug,
        )
        self._offline_storage = offline_storage or MemoryStorage(debug=debug)
        self._offline_queue = OfflineQueue(self._offline_storage, debug=debug)
        self._deduplicator = RequestDeduplicator(debug=debug)
        self._rate_limiter = rate_limiter or RateLimiter(debug=debug)
        self._retry = retry_engine or RetryEngine(debug=debug)
        self._hooks = HookPipeline(
            middleware=self.config.middleware,
            request_interceptors=self.config.request_interceptors,
            response_interceptors=self.config.response_interceptors,
        )
        self._mocks: dict[str, MockResponse] = {}
        self._drain_tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

        self.connectivity = connectivity or ConnectivityMonitor()
        self._unsubscribe = self.connectivity.subscribe(self._on_connectivity_change)

    @property
    def hooks(self) -> HookPipeline:
        return self._hooks

    @property
    def offline_queue(self) -> OfflineQueue:
        return self._offline_queue

    @property
    def cache(self) -> CacheCoordinator:
        return self._cache

    # Request lifecycle

    async def request(self, request: FetchRequest | str, **fields: Any) -> FetchResponse:
        """
        Run one request through the full pipeline.

        Args:
            request: A FetchRequest, or a url to build one from
            **fields: FetchRequest fields to set or override

        Returns:
            FetchResponse (``cached`` is True when served from cache)

        Raises:
            FetchError: After the error hooks ran; ``error.kind`` tells what
                went wrong and ``error.request`` what was attempted
        """
        if isinstance(request, str):
            request = FetchRequest(url=request, **fields)
        elif fields:
            request = dataclasses.replace(request, **fields)

        request = self._merge_defaults(request)
        self._log(f"Request: {request.method} {request.url}")

        request = await self._hooks.run_pre(request)

        try:
            if self.config.mock_mode:
                mock = self._match_mock(request)
                if mock is not None:
                    return await self._mock_response(mock, request)

            response = await self._cache.read(request)
            if response is not None:
                self._log(f"Cache hit: {request.method} {request.url}")
            else:
                response = await self._fetch(request)

            return await self._hooks.run_post(response)

        except Exception as error:
            processed = await self._hooks.run_error(error)
            if processed is error:
                raise
            raise processed from error

    async def _fetch(self, request: FetchRequest) -> FetchResponse:
        """Deduplicate, then rate limit, offline check and execute."""
        if request.deduplicate:
            return await self._deduplicator.dedupe(
                fingerprint(request), lambda: self._dispatch(request)
            )
        return await self._dispatch(request)

    async def _dispatch(self, request: FetchRequest) -> FetchResponse:
        if request.rate_limit is not None:
            await self._rate_limiter.acquire(request, request.rate_limit)

        if (
            not self.connectivity.is_online
            and request.offline_queueable
            and self.config.offline_queue_enabled
        ):
            queue_id = await self._offline_queue.enqueue(request)
            logger.info(f"Offline: queued {request.method} {request.url} ({queue_id})")
            raise FetchError.queued(request, queue_id)

        return await self._retry.run(
            lambda retry_count: self._attempt(request, retry_count),
            resolve_retry_policy(request.retry),
            request,
        )

    async def _attempt(self, request: FetchRequest, retry_count: int) -> FetchResponse:
        """One exchange: send, check status, parse, transform, validate, cache."""
        url = build_url(self.config.base_url, request.url, request.params)
        headers, content = self._prepare_body(request)
        options = ExchangeOptions(
            method=request.method,
            headers=headers,
            content=content,
            timeout=request.timeout,
        )

        try:
            raw = await run_cancellable(
                self._transport.exchange(url, options), request, request.timeout
            )
        except FetchError as e:
            if e.request is None:
                e.request = request
            raise
        except Exception as e:
            raise FetchError.network(str(e) or type(e).__name__, request) from e

        if not self.config.validate_status(raw.status):
            raise FetchError.http_status(request, raw.status, raw.text()[:200])

        data = self._parse_payload(raw, request)
        if request.transform_response is not None:
            data = self._transform(request, request.transform_response, data)
        data = self._validate(request, data)

        token = request.cancel_token
        if token is not None and token.cancelled:
            raise FetchError.aborted(request, token.reason)

        response = FetchResponse(
            data=data,
            status=raw.status,
            status_text=raw.reason or _status_phrase(raw.status),
            headers=raw.headers,
            request=request,
            cached=False,
            retry_count=retry_count,
        )
        await self._cache.write(request, response)
        return response

    def _merge_defaults(self, request: FetchRequest) -> FetchRequest:
        """Fill policy fields the request left unset from the client config."""
        config = self.config
        return dataclasses.replace(
            request,
            timeout=request.timeout if request.timeout is not None else config.timeout,
            cache=request.cache if request.cache is not None else config.cache,
            retry=request.retry if request.retry is not None else config.retry,
            rate_limit=request.rate_limit or config.rate_limit,
            deduplicate=request.deduplicate is not False,
            offline_queueable=request.offline_queueable is not False,
        )

    def _prepare_body(self, request: FetchRequest) -> tuple[dict[str, str], bytes | None]:
        headers = {**self.config.headers, **request.headers}
        body = request.body
        if body is None:
            return headers, None

        if request.transform_request is not None:
            body = self._transform(request, request.transform_request, body)

        if isinstance(body, bytes):
            return headers, body
        if isinstance(body, str):
            return headers, body.encode("utf-8")

        if not any(name.lower() == "content-type" for name in headers):
            headers["Content-Type"] = "application/json"
        return headers, json.dumps(body, default=str).encode("utf-8")

    @staticmethod
    def _transform(request: FetchRequest, transform: Callable[[Any], Any], value: Any) -> Any:
        """Run a user transform; anything but a FetchError becomes VALIDATION."""
        try:
            return transform(value)
        except FetchError:
            raise
        except Exception as e:
            raise FetchError.validation(request, str(e)) from e

    @staticmethod
    def _parse_payload(raw: RawResponse, request: FetchRequest) -> Any:
        content_type = raw.content_type.split(";")[0].strip()
        if content_type == "application/json" or content_type.endswith("+json"):
            if not raw.content.strip():
                return None
            try:
                return raw.json()
            except ValueError as e:
                raise FetchError(
                    ErrorKind.VALIDATION,
                    "Response body is not valid JSON",
                    request,
                    validation_errors=str(e),
                ) from e
        if content_type.startswith("text/"):
            return raw.text()
        if "application/octet-stream" in content_type or content_type.startswith("image/"):
            return raw.read()
        return raw.text()

    @staticmethod
    def _validate(request: FetchRequest, data: Any) -> Any:
        """Apply the request's schema; any failure is a VALIDATION error."""
        validator = request.validate_response
        if validator is None:
            return data

        try:
            if isinstance(validator, type) and issubclass(validator, BaseModel):
                return validator.model_validate(data)
            if isinstance(validator, TypeAdapter):
                return validator.validate_python(data)
            parse = getattr(validator, "parse", None)
            if callable(parse):
                return parse(data)
            return validator(data)
        except PydanticValidationError as e:
            raise FetchError.validation(request, e.errors()) from e
        except Exception as e:
            raise FetchError.validation(request, str(e)) from e

    # Convenience methods

    async def get(self, url: str, **kwargs: Any) -> FetchResponse:
        return await self.request(FetchRequest(url=url, method="GET", **kwargs))

    async def post(self, url: str, body: Any = None, **kwargs: Any) -> FetchResponse:
        return await self.request(FetchRequest(url=url, method="POST", body=body, **kwargs))

    async def put(self, url: str, body: Any = None, **kwargs: Any) -> FetchResponse:
        return await self.request(FetchRequest(url=url, method="PUT", body=body, **kwargs))

    async def patch(self, url: str, body: Any = None, **kwargs: Any) -> FetchResponse:
        return await self.request(FetchRequest(url=url, method="PATCH", body=body, **kwargs))

    async def delete(self, url: str, **kwargs: Any) -> FetchResponse:
        return await self.request(FetchRequest(url=url, method="DELETE", **kwargs))

    async def head(self, url: str, **kwargs: Any) -> FetchResponse:
        return await self.request(FetchRequest(url=url, method="HEAD", **kwargs))

    async def options(self, url: str, **kwargs: Any) -> FetchResponse:
        return await self.request(FetchRequest(url=url, method="OPTIONS", **kwargs))

    async def graphql(
        self,
        endpoint: str,
        query: str,
        variables: dict[str, Any] | None = None,
        operation_name: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Send a GraphQL query or mutation and return its ``data`` member.

        Payload-level ``errors`` raise a GRAPHQL FetchError, which goes
        through the error hooks like any other failure and is never cached.
        """
        user_transform = kwargs.pop("transform_response", None)
        headers = kwargs.pop("headers", None)
        gql = GraphQLRequest(query, variables, operation_name)
        request = build_graphql_request(endpoint, gql, headers=headers, **kwargs)

        def unwrap(payload: Any) -> Any:
            data = parse_graphql_response(payload, request)
            return user_transform(data) if user_transform else data

        response = await self.request(dataclasses.replace(request, transform_response=unwrap))
        return response.data

    # Mocks

    def add_mock(self, mock: MockResponse) -> None:
        self._mocks[mock.key] = mock

    def clear_mocks(self) -> None:
        self._mocks.clear()

    def _match_mock(self, request: FetchRequest) -> MockResponse | None:
        for mock in self._mocks.values():
            if mock.matches(request):
                return mock
        return None

    async def _mock_response(self, mock: MockResponse, request: FetchRequest) -> FetchResponse:
        if mock.delay > 0:
            await asyncio.sleep(mock.delay)
        self._log(f"Mock response: {request.method} {request.url}")
        return FetchResponse(
            data=mock.response,
            status=mock.status,
            status_text=_status_phrase(mock.status),
            headers={},
            request=request,
        )

    # Hooks

    def use(self, middleware: Middleware) -> None:
        self._hooks.use(middleware)

    def remove_middleware(self, name: str) -> bool:
        return self._hooks.remove(name)

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> None:
        self._hooks.add_request_interceptor(interceptor)

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> None:
        self._hooks.add_response_interceptor(interceptor)

    # Cache management

    async def clear_cache(self, backend: CacheBackend | None = None) -> None:
        """Clear one cache backend, or all of them."""
        await self._cache.clear(backend)

    async def invalidate_cache(self, pattern: str, backend: CacheBackend | None = None) -> None:
        """Invalidate cached entries for pattern (clears the whole backend)."""
        await self._cache.invalidate(pattern, backend)

    # Offline queue

    async def drain_offline_queue(self) -> DrainResult:
        """Replay queued requests now. A no-op while another drain runs."""
        result = await self._offline_queue.drain(
            self._replay,
            should_continue=lambda: self.connectivity.is_online,
        )
        self._log(f"Drain finished: {result.to_dict()}")
        return result

    async def _replay(self, request: FetchRequest) -> None:
        # Never re-queue during a drain; a failure counts against the entry
        await self.request(dataclasses.replace(request, offline_queueable=False))

    def _on_connectivity_change(self, online: bool) -> Any:
        if online and self.config.offline_queue_enabled:
            return self._drain_on_reconnect()
        return None

    async def _drain_on_reconnect(self) -> DrainResult | None:
        # Tracked so close() can stop a drain still running on this client
        if self._closed:
            return None
        task = asyncio.current_task()
        self._drain_tasks.add(task)
        try:
            return await self.drain_offline_queue()
        finally:
            self._drain_tasks.discard(task)

    # Lifecycle and status

    async def close(self) -> None:
        """Close the transport and storage backends and cancel in-flight work."""
        self._closed = True
        self._unsubscribe()
        drains = list(self._drain_tasks)
        for task in drains:
            task.cancel()
        if drains:
            await asyncio.gather(*drains, return_exceptions=True)
        await self._deduplicator.cancel_all()
        await self._transport.aclose()

        adapters = list(self._cache.backends.values()) + [self._offline_storage]
        closed: set[int] = set()
        for adapter in adapters:
            if id(adapter) not in closed:
                closed.add(id(adapter))
                await adapter.close()
        logger.debug("SmartFetch closed")

    async def __aenter__(self) -> "SmartFetch":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    def get_health_status(self) -> dict[str, Any]:
        """Get status of all components."""
        return {
            "online": self.connectivity.is_online,
            "cache": self._cache.get_stats().to_dict(),
            "deduplicator": self._deduplicator.get_stats().to_dict(),
            "rate_limiter": self._rate_limiter.get_status(),
            "retries": self._retry.retries,
            "offline_queue_draining": self._offline_queue.is_draining,
            "middleware": self._hooks.middleware_names,
            "mocks": len(self._mocks),
        }

    def _log(self, message: str) -> None:
        if self.config.debug:
            logger.debug(f"[SmartFetch] {message}")


def _status_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return ""


def create_client(
    config: ClientConfig | None = None,
    settings: Settings | None = None,
    *,
    transport: Transport | None = None,
    connectivity: ConnectivityMonitor | None = None,
    **overrides: Any,
) -> SmartFetch:
    """
    Build a fully wired client.

    Settings (from the environment unless given) provide the defaults and the
    storage locations: a memory, a file and a SQL cache backend, and a SQL
    offline queue sharing the cache database. ``overrides`` replace fields of
    the resulting ClientConfig.
    """
    settings = settings or Settings()
    if config is None:
        config = ClientConfig(
            base_url=settings.base_url,
            timeout=settings.timeout,
            debug=settings.debug,
            mock_mode=settings.mock_mode,
            offline_queue_enabled=settings.offline_queue_enabled,
        )
    if overrides:
        config = dataclasses.replace(config, **overrides)

    database = Database(settings.database_url)
    cache_backends: dict[CacheBackend, StorageAdapter] = {
        CacheBackend.MEMORY: MemoryStorage(max_size=settings.cache_max_size, debug=config.debug),
        CacheBackend.FILE: FileStorage(settings.cache_dir),
        CacheBackend.SQL: SQLStorage(database, namespace="cache"),
    }
    offline_storage = SQLStorage(database, namespace="offline_queue", owns_database=True)

    return SmartFetch(
        config,
        transport=transport or HttpxTransport(default_timeout=config.timeout),
        cache_backends=cache_backends,
        offline_storage=offline_storage,
        connectivity=connectivity,
    )
