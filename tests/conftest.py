"""
Shared fixtures: controllable clocks, recorded sleeps and an httpx mock server.
"""

import json
from typing import Any, Callable

import httpx
import pytest

from smartfetch.services.client import ClientConfig, SmartFetch
from smartfetch.services.connectivity import ConnectivityMonitor
from smartfetch.services.retry import RetryEngine
from smartfetch.services.transport import HttpxTransport


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and optionally advances a clock."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self._clock = clock

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._clock is not None:
            self._clock.advance(delay)


class MockServer:
    """
    Routes httpx requests to a handler and counts calls.

    The handler receives the httpx.Request and returns an httpx.Response.
    """

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def transport(self) -> HttpxTransport:
        return HttpxTransport(transport=httpx.MockTransport(self))


def json_response(payload: Any, status: int = 200) -> httpx.Response:
    return httpx.Response(
        status,
        content=json.dumps(payload).encode(),
        headers={"Content-Type": "application/json"},
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_client(recording_sleep: RecordingSleep):
    """Build a SmartFetch over a MockServer with instant retry backoff."""

    def factory(
        server: MockServer,
        config: ClientConfig | None = None,
        connectivity: ConnectivityMonitor | None = None,
        **kwargs: Any,
    ) -> SmartFetch:
        client = SmartFetch(
            config or ClientConfig(base_url="https://api.example.com"),
            transport=server.transport(),
            connectivity=connectivity,
            retry_engine=RetryEngine(sleep=recording_sleep),
            **kwargs,
        )
        return client

    return factory
