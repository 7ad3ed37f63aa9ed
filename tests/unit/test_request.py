"""
Unit tests for HTTP request parsing.
"""

import pytest

from frontdoor.http.request import (
    HTTPRequest,
    RequestParser,
    HTTPParseError,
    parse_request,
    parse_content_length,
    split_host_port,
)


class TestRequestParser:
    """Tests for RequestParser class."""

    def test_parse_simple_get(self, sample_get_request: bytes):
        parser = RequestParser()
        request = parser.parse(sample_get_request, ("127.0.0.1", 12345))

        assert request.method == "GET"
        assert request.path == "/docs/index.html"
        assert request.query == "page=1&limit=10"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)
        assert request.scheme == "http"

    def test_parse_headers(self, sample_get_request: bytes):
        request = parse_request(sample_get_request)

        assert request.host == "example.com:8000"
        assert request.hostname == "example.com"
        assert request.user_agent == "pytest"
        assert request.headers["accept"] == "text/html"
        assert request.get_header("ACCEPT") == "text/html"
        assert request.is_keep_alive is True

    def test_target_is_kept_verbatim(self):
        """The raw target survives parsing even where the path is decoded."""
        raw = b"GET /a%20b/../c?x=1&y=%2F HTTP/1.1\r\nHost: test\r\n\r\n"
        request = parse_request(raw)

        assert request.target == "/a%20b/../c?x=1&y=%2F"
        assert request.path == "/a b/../c"
        assert request.query == "x=1&y=%2F"

    def test_absolute_form_is_reduced_to_origin_form(self):
        raw = b"GET http://example.com/foo?x=1 HTTP/1.1\r\nHost: example.com\r\n\r\n"
        request = parse_request(raw)

        assert request.target == "/foo?x=1"
        assert request.path == "/foo"

    def test_scheme_passed_through(self, sample_get_request: bytes):
        request = RequestParser().parse(sample_get_request, scheme="https")
        assert request.scheme == "https"

    def test_any_token_method_is_accepted(self):
        """Method policy belongs to the router, not the parser."""
        request = parse_request(b"PROPFIND / HTTP/1.1\r\nHost: test\r\n\r\n")
        assert request.method == "PROPFIND"

    def test_parse_invalid_request_line(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 400

    def test_parse_invalid_target(self):
        with pytest.raises(HTTPParseError):
            parse_request(b"GET foo HTTP/1.1\r\nHost: test\r\n\r\n")

    def test_parse_missing_headers(self):
        request = parse_request(b"GET / HTTP/1.1\r\n\r\n")

        assert request.method == "GET"
        assert request.path == "/"
        assert len(request.headers) == 0
        assert request.host == ""

    def test_parse_without_terminator(self):
        with pytest.raises(HTTPParseError):
            parse_request(b"GET / HTTP/1.1\r\nHost: test\r\n")

    def test_parse_request_too_large(self):
        parser = RequestParser(max_request_size=100)
        raw = b"GET / HTTP/1.1\r\n" + b"X-Large: " + b"A" * 200 + b"\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parser.parse(raw)

        assert exc_info.value.status_code == 413

    def test_unsupported_version(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/2.0\r\nHost: test\r\n\r\n")

        assert exc_info.value.status_code == 505

    def test_chunked_body_not_implemented(self):
        raw = (
            b"POST / HTTP/1.1\r\nHost: test\r\n"
            b"Transfer-Encoding: chunked\r\n\r\n"
            b"3\r\nabc\r\n0\r\n\r\n"
        )
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(raw)

        assert exc_info.value.status_code == 501

    def test_body_by_content_length(self):
        raw = b"POST /x HTTP/1.1\r\nHost: t\r\nContent-Length: 5\r\n\r\nhello"
        request = parse_request(raw)
        assert request.body == b"hello"

    def test_short_body(self):
        raw = b"POST /x HTTP/1.1\r\nHost: t\r\nContent-Length: 10\r\n\r\nhello"
        with pytest.raises(HTTPParseError):
            parse_request(raw)

    def test_folded_header_rejected(self):
        raw = b"GET / HTTP/1.1\r\nX-A: one\r\n two\r\n\r\n"
        with pytest.raises(HTTPParseError):
            parse_request(raw)

    def test_repeated_headers_are_joined(self):
        raw = b"GET / HTTP/1.1\r\nAccept: a\r\nAccept: b\r\n\r\n"
        assert parse_request(raw).headers["accept"] == "a, b"

    def test_http_version_parsing(self):
        request_10 = parse_request(b"GET / HTTP/1.0\r\nHost: test\r\n\r\n")
        assert request_10.version == "HTTP/1.0"
        assert request_10.is_keep_alive is False

        request_10_ka = parse_request(b"GET / HTTP/1.0\r\nConnection: keep-alive\r\n\r\n")
        assert request_10_ka.is_keep_alive is True

        request_11 = parse_request(b"GET / HTTP/1.1\r\nConnection: close\r\n\r\n")
        assert request_11.is_keep_alive is False


class TestContentLength:

    def test_missing(self):
        assert parse_content_length(None) == 0

    def test_repeated_identical_values(self):
        assert parse_content_length("5, 5") == 5

    @pytest.mark.parametrize("value", ["-1", "abc", "5, 6", "1.5"])
    def test_invalid(self, value):
        with pytest.raises(HTTPParseError):
            parse_content_length(value)


class TestSplitHostPort:

    @pytest.mark.parametrize("host, expected", [
        ("example.com", ("example.com", None)),
        ("example.com:8000", ("example.com", 8000)),
        ("[::1]:8443", ("[::1]", 8443)),
        ("[::1]", ("[::1]", None)),
        ("example.com:abc", ("example.com:abc", None)),
    ])
    def test_split(self, host, expected):
        assert split_host_port(host) == expected


class TestHTTPRequest:

    def test_target_defaults_from_path_and_query(self):
        request = HTTPRequest(method="GET", path="/a", query="b=1")
        assert request.target == "/a?b=1"

    def test_hostname_without_port(self):
        request = HTTPRequest(method="GET", path="/", headers={"host": "[::1]:80"})
        assert request.hostname == "[::1]"
