"""
Unit tests for static file serving.
"""

import os
from pathlib import Path

import pytest

from frontdoor.handlers.static import StaticFileHandler, parse_range, RangeNotSatisfiable
from frontdoor.http.request import HTTPRequest
from frontdoor.http.response import HTTPStatus, ResponseBuilder, format_http_date
from datetime import datetime, timedelta, timezone


def get(path: str, method: str = "GET", **headers) -> HTTPRequest:
    target = path
    return HTTPRequest(
        method=method,
        path=path.partition("?")[0],
        target=target,
        query=path.partition("?")[2],
        headers={k.replace("_", "-").lower(): v for k, v in headers.items()},
    )


class TestParseRange:

    @pytest.mark.parametrize("header, expected", [
        ("bytes=0-4", (0, 4)),
        ("bytes=5-", (5, 9)),
        ("bytes=-3", (7, 9)),
        ("bytes=-50", (0, 9)),
        ("bytes=8-100", (8, 9)),
        ("BYTES = 1-2", (1, 2)),
    ])
    def test_satisfiable(self, header, expected):
        assert parse_range(header, 10) == expected

    @pytest.mark.parametrize("header", [
        "bytes=0-1,3-4",   # multiple ranges
        "items=0-4",       # other unit
        "bytes=abc",
        "bytes=4-1",       # inverted
        "bytes=x-1",
    ])
    def test_ignored(self, header):
        assert parse_range(header, 10) is None

    def test_empty_file_ignores_range(self):
        assert parse_range("bytes=0-4", 0) is None

    @pytest.mark.parametrize("header", ["bytes=10-", "bytes=20-30", "bytes=-0"])
    def test_unsatisfiable(self, header):
        with pytest.raises(RangeNotSatisfiable):
            parse_range(header, 10)


class TestStaticFileHandler:

    def test_missing_root(self, tmp_path: Path):
        with pytest.raises(ValueError):
            StaticFileHandler(tmp_path / "nope")

    def test_serves_file_bytes(self, doc_root: Path):
        handler = StaticFileHandler(doc_root)
        response = handler(get("/data.bin"))

        assert response.status == HTTPStatus.OK
        assert response.body == bytes(range(256))
        assert response.headers["Content-Type"] == "application/octet-stream"
        assert response.headers["Content-Length"] == "256"
        assert response.headers["Accept-Ranges"] == "bytes"
        assert "Last-Modified" in response.headers

    def test_content_type_from_extension(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/hello.txt"))
        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"

    def test_missing_file_is_not_found(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/missing.html"))

        assert response.status == HTTPStatus.NOT_FOUND
        assert response.body == b"Not found"

    def test_head_has_headers_without_body(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/hello.txt", method="HEAD"))

        assert response.status == HTTPStatus.OK
        assert response.headers["Content-Length"] == "13"
        assert response.body == b""

    def test_other_methods_not_allowed(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/hello.txt", method="POST"))

        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, HEAD"

    def test_directory_serves_index(self, doc_root: Path):
        handler = StaticFileHandler(doc_root)

        assert handler(get("/")).body == b"<h1>home</h1>"
        assert handler(get("/sub/")).body == b"<h1>sub</h1>"

    def test_directory_without_slash_redirects(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/sub?x=1"))

        assert response.status == HTTPStatus.MOVED_PERMANENTLY
        assert response.headers["Location"] == "/sub/?x=1"

    def test_directory_without_index_is_not_found(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/empty/"))
        assert response.status == HTTPStatus.NOT_FOUND

    def test_file_with_trailing_slash_is_not_found(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/hello.txt/"))
        assert response.status == HTTPStatus.NOT_FOUND

    def test_dot_dot_cannot_escape_root(self, doc_root: Path):
        (doc_root.parent / "secret.txt").write_text("secret")
        response = StaticFileHandler(doc_root)(get("/../secret.txt"))

        assert response.status == HTTPStatus.NOT_FOUND
        assert b"secret" not in response.body

    def test_symlink_out_of_root_is_forbidden(self, doc_root: Path):
        outside = doc_root.parent / "outside.txt"
        outside.write_text("outside")
        os.symlink(outside, doc_root / "link.txt")

        response = StaticFileHandler(doc_root)(get("/link.txt"))
        assert response.status == HTTPStatus.FORBIDDEN

    def test_prefix_limits_what_is_served(self, doc_root: Path):
        handler = StaticFileHandler(doc_root, prefix="/.well-known/")

        assert handler(get("/.well-known/acme-challenge/token123")).body == b"abc"
        assert handler(get("/hello.txt")).status == HTTPStatus.NOT_FOUND
        assert handler(get("/.well-known/../hello.txt")).status == HTTPStatus.NOT_FOUND

    def test_fallback_for_missing(self, doc_root: Path):
        def fallback(request):
            return ResponseBuilder().status(HTTPStatus.FOUND).build()

        handler = StaticFileHandler(doc_root, fallback=fallback)
        assert handler(get("/missing")).status == HTTPStatus.FOUND

    def test_range_request(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/data.bin", range="bytes=10-19"))

        assert response.status == HTTPStatus.PARTIAL_CONTENT
        assert response.body == bytes(range(10, 20))
        assert response.headers["Content-Range"] == "bytes 10-19/256"
        assert response.headers["Content-Length"] == "10"

    def test_unsatisfiable_range(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/data.bin", range="bytes=500-"))

        assert response.status == HTTPStatus.RANGE_NOT_SATISFIABLE
        assert response.headers["Content-Range"] == "bytes */256"

    def test_multi_range_gets_whole_file(self, doc_root: Path):
        response = StaticFileHandler(doc_root)(get("/data.bin", range="bytes=0-1,5-6"))

        assert response.status == HTTPStatus.OK
        assert len(response.body) == 256

    def test_if_modified_since(self, doc_root: Path):
        handler = StaticFileHandler(doc_root)
        later = format_http_date(datetime.now(timezone.utc) + timedelta(hours=1))
        earlier = format_http_date(datetime.now(timezone.utc) - timedelta(days=365))

        assert handler(get("/hello.txt", if_modified_since=later)).status == HTTPStatus.NOT_MODIFIED
        assert handler(get("/hello.txt", if_modified_since=earlier)).status == HTTPStatus.OK
        assert handler(get("/hello.txt", if_modified_since="garbage")).status == HTTPStatus.OK
