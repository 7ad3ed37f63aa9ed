"""
Unit tests for the HTTP → HTTPS redirect handler.
"""

import pytest

from frontdoor.handlers.redirect import HTTPSRedirectHandler
from frontdoor.http.request import parse_request
from frontdoor.http.response import HTTPStatus


def redirect_for(raw: bytes, **kwargs):
    return HTTPSRedirectHandler(**kwargs)(parse_request(raw))


class TestHTTPSRedirectHandler:

    def test_redirects_to_same_target(self):
        response = redirect_for(b"GET /foo?x=1 HTTP/1.1\r\nHost: example.com\r\n\r\n")

        assert response.status == HTTPStatus.MOVED_PERMANENTLY
        assert response.headers["Location"] == "https://example.com/foo?x=1"

    @pytest.mark.parametrize("target", [
        b"/",
        b"/a%20b/c?q=%2F&r=1",
        b"/../etc/passwd",
        b"/path;param?",
        b"/caf\xc3\xa9",
    ])
    def test_target_preserved_byte_for_byte(self, target):
        raw = b"GET " + target + b" HTTP/1.1\r\nHost: example.com\r\n\r\n"
        location = redirect_for(raw).headers["Location"]

        assert location.encode("latin-1") == b"https://example.com" + target

    @pytest.mark.parametrize("method", [b"GET", b"HEAD", b"POST", b"DELETE", b"OPTIONS"])
    def test_every_method_is_redirected(self, method):
        raw = method + b" /x HTTP/1.1\r\nHost: example.com\r\n\r\n"
        assert redirect_for(raw).status == HTTPStatus.MOVED_PERMANENTLY

    def test_host_port_is_dropped(self):
        response = redirect_for(b"GET /a HTTP/1.1\r\nHost: example.com:8000\r\n\r\n")
        assert response.headers["Location"] == "https://example.com/a"

    def test_redirect_port_is_added(self):
        response = redirect_for(
            b"GET /a HTTP/1.1\r\nHost: example.com:8000\r\n\r\n",
            redirect_port=4443,
        )
        assert response.headers["Location"] == "https://example.com:4443/a"

    def test_redirect_port_443_is_implied(self):
        response = redirect_for(b"GET /a HTTP/1.1\r\nHost: example.com\r\n\r\n", redirect_port=443)
        assert response.headers["Location"] == "https://example.com/a"

    def test_ipv6_host(self):
        response = redirect_for(b"GET /a HTTP/1.1\r\nHost: [::1]:8000\r\n\r\n", redirect_port=8443)
        assert response.headers["Location"] == "https://[::1]:8443/a"

    def test_missing_host_is_bad_request(self):
        response = redirect_for(b"GET /a HTTP/1.0\r\n\r\n")
        assert response.status == HTTPStatus.BAD_REQUEST

    def test_missing_host_uses_public_host(self):
        response = redirect_for(b"GET /a HTTP/1.0\r\n\r\n", public_host="example.org")
        assert response.headers["Location"] == "https://example.org/a"

    @pytest.mark.parametrize("host", [b"evil.com/path", b"user@evil.com", b"a b"])
    def test_invalid_host_is_bad_request(self, host):
        response = redirect_for(b"GET /a HTTP/1.1\r\nHost: " + host + b"\r\n\r\n")
        assert response.status == HTTPStatus.BAD_REQUEST

    def test_asterisk_target_is_bad_request(self):
        response = redirect_for(b"OPTIONS * HTTP/1.1\r\nHost: example.com\r\n\r\n")
        assert response.status == HTTPStatus.BAD_REQUEST

    def test_location_helper(self):
        handler = HTTPSRedirectHandler(redirect_port=8443)
        assert handler.location("example.com", "/x?y") == "https://example.com:8443/x?y"
