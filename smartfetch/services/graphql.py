"""
GraphQL request shaping.

Queries and mutations travel as POST requests with a JSON body; a response
whose payload carries ``errors`` becomes a GRAPHQL FetchError.
"""

from dataclasses import dataclass
from typing import Any

from smartfetch.services.errors import FetchError
from smartfetch.services.types import FetchRequest


@dataclass
class GraphQLRequest:
    """A query or mutation document with its variables."""

    query: str
    variables: dict[str, Any] | None = None
    operation_name: str | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"query": self.query}
        if self.variables is not None:
            body["variables"] = self.variables
        if self.operation_name is not None:
            body["operationName"] = self.operation_name
        return body


def build_graphql_request(
    endpoint: str,
    gql: GraphQLRequest,
    headers: dict[str, str] | None = None,
    **overrides: Any,
) -> FetchRequest:
    """Build the POST request carrying gql to endpoint."""
    return FetchRequest(
        url=endpoint,
        method="POST",
        headers={"Content-Type": "application/json", **(headers or {})},
        body=gql.to_body(),
        **overrides,
    )


def parse_graphql_response(payload: Any, request: FetchRequest) -> Any:
    """
    Return the ``data`` member of a GraphQL response payload.

    Raises:
        FetchError: kind GRAPHQL when the payload lists errors
    """
    if not isinstance(payload, dict):
        return payload

    errors = payload.get("errors")
    if errors:
        raise FetchError.graphql(request, list(errors))
    return payload.get("data")
