"""
Request fingerprinting.

The fingerprint is the join key shared by the cache, the deduplication table
and the offline queue.
"""

from smartfetch.services.types import IDEMPOTENT_METHODS, FetchRequest
from smartfetch.utils import clean_params, stable_json


def fingerprint(request: FetchRequest) -> str:
    """
    Deterministic identity string for a request.

    Combines method, url and key-sorted query parameters. The body only
    takes part for methods that are not idempotent, so two GETs differing
    only in an ignored body are the same request.
    """
    parts = [request.method, request.url]

    params = clean_params(request.params)
    if params:
        parts.append(stable_json(params))

    if request.body is not None and request.method not in IDEMPOTENT_METHODS:
        body = request.body
        if isinstance(body, bytes):
            body = body.decode("utf-8", errors="replace")
        parts.append(body if isinstance(body, str) else stable_json(body))

    return "|".join(parts)
