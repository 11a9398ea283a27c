"""
Service layer exceptions.

Every request failure is a FetchError tagged with an ErrorKind; callers
branch on ``error.kind`` instead of on exception subclasses.
"""

from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from smartfetch.services.types import FetchRequest


class ErrorKind(str, Enum):
    """Closed set of request failure kinds."""

    NETWORK = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT_ERROR"
    ABORT = "ABORT_ERROR"
    VALIDATION = "VALIDATION_ERROR"
    RATE_LIMIT = "RATE_LIMIT_ERROR"
    GRAPHQL = "GRAPHQL_ERROR"
    HTTP_STATUS = "HTTP_STATUS_ERROR"
    QUEUED = "QUEUED_OFFLINE"


class FetchError(Exception):
    """A failed request, carrying the request that produced it."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        request: "FetchRequest | None" = None,
        *,
        status: int | None = None,
        response_text: str | None = None,
        retry_after: float | None = None,
        validation_errors: Any = None,
        graphql_errors: list[dict[str, Any]] | None = None,
        queue_id: str | None = None,
        attempts: int = 1,
    ):
        self.kind = kind
        self.request = request
        self.status = status
        self.response_text = response_text
        self.retry_after = retry_after
        self.validation_errors = validation_errors
        self.graphql_errors = graphql_errors or []
        self.queue_id = queue_id
        self.attempts = attempts
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def is_transient(self) -> bool:
        """Network and timeout failures and 5xx responses may succeed later."""
        if self.kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT):
            return True
        return self.kind == ErrorKind.HTTP_STATUS and (self.status or 0) >= 500

    def __repr__(self) -> str:
        url = self.request.url if self.request else None
        return f"FetchError(kind={self.kind.name}, message={str(self)!r}, url={url!r})"

    @classmethod
    def network(cls, message: str, request: "FetchRequest | None" = None) -> "FetchError":
        return cls(ErrorKind.NETWORK, message, request)

    @classmethod
    def timeout(cls, request: "FetchRequest | None", timeout: float | None) -> "FetchError":
        return cls(ErrorKind.TIMEOUT, f"Request timed out after {timeout}s", request)

    @classmethod
    def aborted(
        cls, request: "FetchRequest | None", reason: str | None = None
    ) -> "FetchError":
        msg = "Request aborted"
        if reason:
            msg += f": {reason}"
        return cls(ErrorKind.ABORT, msg, request)

    @classmethod
    def validation(
        cls, request: "FetchRequest | None", errors: Any = None
    ) -> "FetchError":
        return cls(
            ErrorKind.VALIDATION,
            "Response validation failed",
            request,
            validation_errors=errors,
        )

    @classmethod
    def rate_limited(
        cls, request: "FetchRequest | None", retry_after: float
    ) -> "FetchError":
        return cls(
            ErrorKind.RATE_LIMIT,
            f"Rate limit exceeded, retry after {retry_after:.3f}s",
            request,
            retry_after=retry_after,
        )

    @classmethod
    def graphql(
        cls, request: "FetchRequest | None", errors: list[dict[str, Any]]
    ) -> "FetchError":
        return cls(
            ErrorKind.GRAPHQL,
            "GraphQL request returned errors",
            request,
            graphql_errors=errors,
        )

    @classmethod
    def http_status(
        cls,
        request: "FetchRequest | None",
        status: int,
        response_text: str | None = None,
    ) -> "FetchError":
        return cls(
            ErrorKind.HTTP_STATUS,
            f"Request failed with status {status}",
            request,
            status=status,
            response_text=response_text,
        )

    @classmethod
    def queued(cls, request: "FetchRequest | None", queue_id: str) -> "FetchError":
        return cls(
            ErrorKind.QUEUED,
            "Request queued for offline processing",
            request,
            queue_id=queue_id,
        )
