"""
Hook pipeline - interceptors and named middleware around every request.

Three chains are folded in strict registration order, never concurrently:
- pre:   middleware.pre, then request interceptors
- post:  response interceptors, then middleware.post
- error: response error interceptors, then middleware.error

Each stage receives the current value and returns the (possibly new) value
for the next stage; sync and async callables are both accepted. A stage that
raises stops the chain and its exception propagates.
"""

import dataclasses
import inspect
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar

from loguru import logger

from smartfetch.services.types import FetchRequest, FetchResponse

T = TypeVar("T")

Stage = Callable[[T], "T | Awaitable[T]"]
RequestHook = Callable[[FetchRequest], "FetchRequest | Awaitable[FetchRequest]"]
ResponseHook = Callable[[FetchResponse], "FetchResponse | Awaitable[FetchResponse]"]
ErrorHook = Callable[[Exception], "Exception | None | Awaitable[Exception | None]"]


class Pipeline(Generic[T]):
    """Ordered list of transform stages run as a sequential fold."""

    def __init__(self, stages: Iterable[Stage] = ()):
        self._stages: list[Stage] = list(stages)

    async def run(self, value: T) -> T:
        for stage in self._stages:
            result = stage(value)
            if inspect.isawaitable(result):
                result = await result
            value = result
        return value


@dataclass
class RequestInterceptor:
    """Global hook applied to every outgoing request."""

    on_request: RequestHook | None = None


@dataclass
class ResponseInterceptor:
    """Global hooks applied to every response or failure."""

    on_response: ResponseHook | None = None
    on_response_error: ErrorHook | None = None


@dataclass
class Middleware:
    """Named bundle of pre/post/error hooks; removable by name."""

    name: str
    pre: RequestHook | None = None
    post: ResponseHook | None = None
    error: ErrorHook | None = None


def _keep_error(hook: ErrorHook) -> Stage:
    """Adapt an error hook so returning a non-exception keeps the current error."""

    async def stage(error: Exception) -> Exception:
        result = hook(error)
        if inspect.isawaitable(result):
            result = await result
        return result if isinstance(result, Exception) else error

    return stage


class HookPipeline:
    """
    Registry of interceptors and middleware for one client.

    Usage:
        hooks = HookPipeline()
        hooks.use(auth_middleware(lambda: "secret"))
        hooks.add_request_interceptor(RequestInterceptor(on_request=add_trace_id))

        request = await hooks.run_pre(request)
    """

    def __init__(
        self,
        middleware: Iterable[Middleware] = (),
        request_interceptors: Iterable[RequestInterceptor] = (),
        response_interceptors: Iterable[ResponseInterceptor] = (),
    ):
        self._middleware: list[Middleware] = list(middleware)
        self._request_interceptors = list(request_interceptors)
        self._response_interceptors = list(response_interceptors)

    def use(self, middleware: Middleware) -> None:
        self._middleware.append(middleware)
        logger.debug(f"Registered middleware: {middleware.name}")

    def remove(self, name: str) -> bool:
        """Remove all middleware called name. Returns True if any was removed."""
        before = len(self._middleware)
        self._middleware = [m for m in self._middleware if m.name != name]
        return len(self._middleware) != before

    def add_request_interceptor(self, interceptor: RequestInterceptor) -> None:
        self._request_interceptors.append(interceptor)

    def add_response_interceptor(self, interceptor: ResponseInterceptor) -> None:
        self._response_interceptors.append(interceptor)

    @property
    def middleware_names(self) -> list[str]:
        return [m.name for m in self._middleware]

    def pre_pipeline(self) -> Pipeline[FetchRequest]:
        stages = [m.pre for m in self._middleware if m.pre]
        stages += [i.on_request for i in self._request_interceptors if i.on_request]
        return Pipeline(stages)

    def post_pipeline(self) -> Pipeline[FetchResponse]:
        stages = [i.on_response for i in self._response_interceptors if i.on_response]
        stages += [m.post for m in self._middleware if m.post]
        return Pipeline(stages)

    def error_pipeline(self) -> Pipeline[Exception]:
        hooks = [
            i.on_response_error
            for i in self._response_interceptors
            if i.on_response_error
        ]
        hooks += [m.error for m in self._middleware if m.error]
        return Pipeline(_keep_error(hook) for hook in hooks)

    async def run_pre(self, request: FetchRequest) -> FetchRequest:
        return await self.pre_pipeline().run(request)

    async def run_post(self, response: FetchResponse) -> FetchResponse:
        return await self.post_pipeline().run(response)

    async def run_error(self, error: Exception) -> Exception:
        return await self.error_pipeline().run(error)


# Built-in middleware


def logger_middleware() -> Middleware:
    """Log every request, response and failure."""

    def pre(request: FetchRequest) -> FetchRequest:
        logger.info(f"[Request] {request.method} {request.url}")
        return request

    def post(response: FetchResponse) -> FetchResponse:
        suffix = " (cached)" if response.cached else ""
        logger.info(f"[Response] {response.status} {response.request.url}{suffix}")
        return response

    def error(exc: Exception) -> Exception:
        logger.error(f"[Error] {exc}")
        return exc

    return Middleware(name="logger", pre=pre, post=post, error=error)


def timing_middleware() -> Middleware:
    """Stamp requests with a start time and log the elapsed time on response."""

    def pre(request: FetchRequest) -> FetchRequest:
        metadata = {**request.metadata, "start_time": time.perf_counter()}
        return dataclasses.replace(request, metadata=metadata)

    def post(response: FetchResponse) -> FetchResponse:
        start = response.request.metadata.get("start_time")
        if start is not None:
            elapsed_ms = (time.perf_counter() - start) * 1000
            logger.info(f"{response.request.url} took {elapsed_ms:.1f}ms")
        return response

    return Middleware(name="timing", pre=pre, post=post)


def auth_middleware(get_token: Callable[[], Any]) -> Middleware:
    """Add a bearer token; get_token may be sync or async."""

    async def pre(request: FetchRequest) -> FetchRequest:
        token = get_token()
        if inspect.isawaitable(token):
            token = await token
        headers = {**request.headers, "Authorization": f"Bearer {token}"}
        return dataclasses.replace(request, headers=headers)

    return Middleware(name="auth", pre=pre)
