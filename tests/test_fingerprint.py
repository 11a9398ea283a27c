"""
Unit tests for request fingerprinting and url helpers.
"""

from smartfetch.services.fingerprint import fingerprint
from smartfetch.services.types import FetchRequest
from smartfetch.utils import build_url, is_absolute_url, stable_json


class TestFingerprint:
    def test_param_order_does_not_matter(self):
        a = FetchRequest(url="/items", params={"page": 1, "sort": "asc"})
        b = FetchRequest(url="/items", params={"sort": "asc", "page": 1})
        assert fingerprint(a) == fingerprint(b)

    def test_none_params_are_ignored(self):
        a = FetchRequest(url="/items", params={"page": 1, "q": None})
        b = FetchRequest(url="/items", params={"page": 1})
        assert fingerprint(a) == fingerprint(b)

    def test_method_is_part_of_identity(self):
        assert fingerprint(FetchRequest(url="/x")) != fingerprint(
            FetchRequest(url="/x", method="DELETE")
        )

    def test_get_body_is_ignored(self):
        a = FetchRequest(url="/x", body={"a": 1})
        b = FetchRequest(url="/x", body={"a": 2})
        assert fingerprint(a) == fingerprint(b)

    def test_post_body_is_part_of_identity(self):
        a = FetchRequest(url="/x", method="POST", body={"a": 1})
        b = FetchRequest(url="/x", method="POST", body={"a": 2})
        assert fingerprint(a) != fingerprint(b)

    def test_post_body_key_order_does_not_matter(self):
        a = FetchRequest(url="/x", method="POST", body={"a": 1, "b": 2})
        b = FetchRequest(url="/x", method="POST", body={"b": 2, "a": 1})
        assert fingerprint(a) == fingerprint(b)

    def test_bytes_and_str_bodies(self):
        a = FetchRequest(url="/x", method="PUT", body=b"raw")
        b = FetchRequest(url="/x", method="PUT", body="raw")
        assert fingerprint(a) == fingerprint(b)


class TestUrlHelpers:
    def test_absolute_urls(self):
        assert is_absolute_url("https://example.com/a")
        assert is_absolute_url("//cdn.example.com/a")
        assert not is_absolute_url("/a/b")

    def test_relative_url_joined_to_base(self):
        assert build_url("https://api.example.com/", "/users") == "https://api.example.com/users"

    def test_absolute_url_ignores_base(self):
        assert build_url("https://api.example.com", "https://other.com/x") == "https://other.com/x"

    def test_query_string(self):
        url = build_url(None, "/search", {"q": "a b", "flag": True, "skip": None, "tag": [1, 2]})
        assert url == "/search?q=a+b&flag=true&tag=1&tag=2"

    def test_query_appends_to_existing(self):
        assert build_url(None, "/search?x=1", {"y": 2}) == "/search?x=1&y=2"

    def test_stable_json_sorted(self):
        assert stable_json({"b": 1, "a": [2, 1]}) == '{"a":[2,1],"b":1}'
