"""
Unit tests for the hook pipeline and built-in middleware.
"""

import dataclasses

import pytest

from smartfetch.services.errors import FetchError
from smartfetch.services.hooks import (
    HookPipeline,
    Middleware,
    RequestInterceptor,
    ResponseInterceptor,
    auth_middleware,
    timing_middleware,
)
from smartfetch.services.types import FetchRequest, FetchResponse


def tag_request(label: str, trail: list[str]):
    def hook(request: FetchRequest) -> FetchRequest:
        trail.append(label)
        return request

    return hook


def tag_response(label: str, trail: list[str]):
    async def hook(response: FetchResponse) -> FetchResponse:
        trail.append(label)
        return response

    return hook


def make_response() -> FetchResponse:
    return FetchResponse(
        data=None, status=200, status_text="OK", headers={}, request=FetchRequest(url="/x")
    )


class TestHookPipeline:
    @pytest.mark.asyncio
    async def test_pre_order(self):
        trail: list[str] = []
        hooks = HookPipeline(
            middleware=[Middleware("m1", pre=tag_request("m1", trail))],
            request_interceptors=[RequestInterceptor(on_request=tag_request("i1", trail))],
        )
        hooks.use(Middleware("m2", pre=tag_request("m2", trail)))
        hooks.add_request_interceptor(RequestInterceptor(on_request=tag_request("i2", trail)))

        await hooks.run_pre(FetchRequest(url="/x"))

        assert trail == ["m1", "m2", "i1", "i2"]

    @pytest.mark.asyncio
    async def test_post_order(self):
        trail: list[str] = []
        hooks = HookPipeline(
            middleware=[Middleware("m1", post=tag_response("m1", trail))],
            response_interceptors=[ResponseInterceptor(on_response=tag_response("i1", trail))],
        )

        await hooks.run_post(make_response())

        assert trail == ["i1", "m1"]

    @pytest.mark.asyncio
    async def test_values_flow_between_stages(self):
        def add_header(request: FetchRequest) -> FetchRequest:
            return dataclasses.replace(request, headers={**request.headers, "X-A": "1"})

        async def read_header(request: FetchRequest) -> FetchRequest:
            assert request.headers["X-A"] == "1"
            return dataclasses.replace(request, url="/changed")

        hooks = HookPipeline(
            middleware=[Middleware("a", pre=add_header), Middleware("b", pre=read_header)]
        )
        result = await hooks.run_pre(FetchRequest(url="/x"))
        assert result.url == "/changed"

    @pytest.mark.asyncio
    async def test_error_hooks_can_replace_or_keep(self):
        replacement = FetchError.network("replaced")
        seen: list[Exception] = []

        def observe(error: Exception) -> None:
            seen.append(error)

        hooks = HookPipeline(
            middleware=[Middleware("observer", error=observe)],
            response_interceptors=[
                ResponseInterceptor(on_response_error=lambda error: replacement)
            ],
        )

        result = await hooks.run_error(FetchError.network("original"))

        assert result is replacement
        assert seen == [replacement]

    @pytest.mark.asyncio
    async def test_stage_exception_propagates(self):
        def explode(request: FetchRequest) -> FetchRequest:
            raise RuntimeError("hook failed")

        hooks = HookPipeline(middleware=[Middleware("boom", pre=explode)])
        with pytest.raises(RuntimeError):
            await hooks.run_pre(FetchRequest(url="/x"))

    def test_remove_middleware_by_name(self):
        hooks = HookPipeline(middleware=[Middleware("a"), Middleware("b"), Middleware("a")])
        assert hooks.remove("a")
        assert hooks.middleware_names == ["b"]
        assert not hooks.remove("missing")


class TestBuiltinMiddleware:
    @pytest.mark.asyncio
    async def test_auth_with_async_token(self):
        async def get_token() -> str:
            return "secret"

        hooks = HookPipeline(middleware=[auth_middleware(get_token)])
        request = await hooks.run_pre(FetchRequest(url="/x", headers={"Accept": "a"}))
        assert request.headers == {"Accept": "a", "Authorization": "Bearer secret"}

    @pytest.mark.asyncio
    async def test_timing_stamps_metadata(self):
        hooks = HookPipeline(middleware=[timing_middleware()])
        request = await hooks.run_pre(FetchRequest(url="/x"))
        assert isinstance(request.metadata["start_time"], float)
