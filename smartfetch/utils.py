import json
import re
from typing import Any
from urllib.parse import urlencode

_ABSOLUTE_URL = re.compile(r"^([a-z][a-z\d+\-.]*:)?//", re.IGNORECASE)


def is_absolute_url(url: str) -> bool:
    return _ABSOLUTE_URL.match(url) is not None


def combine_urls(base_url: str, relative_url: str) -> str:
    if not relative_url:
        return base_url
    return base_url.rstrip("/") + "/" + relative_url.lstrip("/")


def clean_params(params: dict[str, Any] | None) -> dict[str, Any]:
    """Drop None-valued query parameters."""
    if not params:
        return {}
    return {k: v for k, v in params.items() if v is not None}


def build_url(base_url: str | None, url: str, params: dict[str, Any] | None = None) -> str:
    """Resolve url against base_url and append the query string."""
    full_url = url
    if base_url and not is_absolute_url(url):
        full_url = combine_urls(base_url, url)

    query = urlencode(
        [(k, _query_value(v)) for k, v in clean_params(params).items()], doseq=True
    )
    if query:
        full_url += ("&" if "?" in full_url else "?") + query
    return full_url


def _query_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def stable_json(value: Any) -> str:
    """Key-sorted compact JSON used wherever a deterministic string is needed."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
