"""
Transport - performs exactly one network exchange.

The orchestrator only depends on the Transport interface; HttpxTransport is
the default implementation on top of httpx.AsyncClient.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from smartfetch.services.errors import FetchError


@dataclass
class ExchangeOptions:
    """Everything the transport needs besides the url."""

    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes | None = None
    timeout: float | None = None


@dataclass
class RawResponse:
    """Status, headers and fully read body of one exchange."""

    status: int
    reason: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""
    encoding: str = "utf-8"

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value.lower()
        return ""

    def json(self) -> Any:
        return json.loads(self.content.decode(self.encoding))

    def text(self) -> str:
        return self.content.decode(self.encoding, errors="replace")

    def read(self) -> bytes:
        return self.content


class Transport(ABC):
    """Abstract network exchange primitive."""

    @abstractmethod
    async def exchange(self, url: str, options: ExchangeOptions) -> RawResponse:
        """
        Perform one request/response round trip.

        Raises:
            FetchError: kind NETWORK on connection failures, kind TIMEOUT when
                the exchange timed out
        """
        ...

    async def aclose(self) -> None:
        return None


class HttpxTransport(Transport):
    """
    Transport backed by httpx.AsyncClient.

    Usage:
        transport = HttpxTransport()
        raw = await transport.exchange(
            "https://api.example.com/items", ExchangeOptions(method="GET")
        )

        # In tests
        transport = HttpxTransport(transport=httpx.MockTransport(handler))
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        default_timeout: float = 30.0,
        follow_redirects: bool = True,
    ):
        self._http_client = client
        self._owns_client = client is None
        self._transport = transport
        self._default_timeout = default_timeout
        self._follow_redirects = follow_redirects

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._default_timeout),
                follow_redirects=self._follow_redirects,
                transport=self._transport,
            )
        return self._http_client

    async def exchange(self, url: str, options: ExchangeOptions) -> RawResponse:
        client = await self._get_http_client()
        timeout = options.timeout if options.timeout is not None else self._default_timeout

        try:
            response = await client.request(
                method=options.method,
                url=url,
                headers=options.headers,
                content=options.content,
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise FetchError.timeout(None, timeout) from e
        except httpx.RequestError as e:
            raise FetchError.network(str(e) or type(e).__name__) from e

        return RawResponse(
            status=response.status_code,
            reason=response.reason_phrase,
            headers=dict(response.headers),
            content=response.content,
            encoding=response.encoding or "utf-8",
        )

    async def aclose(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
            logger.debug("HttpxTransport closed")
