"""
End-to-end tests: both listeners on loopback, real clients.
"""

import http.client
import logging
import socket
import ssl
import time

import pytest

from frontdoor import LifecycleController, create_servers
from frontdoor.middleware import ACCESS_LOGGER_NAME


def tls_handshake(port: int, context: ssl.SSLContext) -> str:
    """Connect and handshake; returns the negotiated protocol version."""
    with socket.create_connection(("127.0.0.1", port), timeout=5) as raw:
        with context.wrap_socket(raw) as tls:
            return tls.version()


# =============================================================================
# PLAINTEXT LISTENER
# =============================================================================

class TestPlaintextListener:

    @pytest.mark.parametrize("target", [
        "/",
        "/foo?x=1",
        "/a%20b/c.html?q=1&r=2",
        "/a/../b",
    ])
    def test_redirects_to_https(self, frontdoor, target):
        response = frontdoor.http("GET", target, headers={"Host": "example.com:8000"})

        assert response.status == 301
        assert response.getheader("Location") == f"https://example.com{target}"

    @pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "HEAD"])
    def test_redirects_every_method(self, frontdoor, method):
        response = frontdoor.http(method, "/form", headers={"Host": "example.com"})

        assert response.status == 301
        assert response.getheader("Location") == "https://example.com/form"

    def test_redirect_port(self, start_frontdoor):
        running = start_frontdoor(redirect_port=8443)
        response = running.http("GET", "/foo", headers={"Host": "example.com:8000"})

        assert response.getheader("Location") == "https://example.com:8443/foo"

    def test_serves_well_known_files(self, frontdoor):
        response = frontdoor.http("GET", "/.well-known/acme-challenge/token123")

        assert response.status == 200
        assert response.body == b"abc"

    def test_missing_well_known_file(self, frontdoor):
        response = frontdoor.http("GET", "/.well-known/acme-challenge/nope")

        assert response.status == 404

    def test_doubled_leading_slash_is_redirected(self, frontdoor):
        response = frontdoor.http("GET", "//.well-known/acme-challenge/token123", headers={"Host": "example.com"})

        assert response.status == 301
        assert response.getheader("Location") == "https://example.com//.well-known/acme-challenge/token123"

    def test_malformed_request(self, frontdoor):
        with socket.create_connection(("127.0.0.1", frontdoor.http_port), timeout=5) as client:
            client.sendall(b"GARBAGE\r\n\r\n")
            reply = client.recv(1024)

        assert reply.startswith(b"HTTP/1.1 400 ")


# =============================================================================
# TLS LISTENER
# =============================================================================

class TestTLSListener:

    def test_serves_files(self, frontdoor):
        response = frontdoor.https("GET", "/hello.txt")

        assert response.status == 200
        assert response.body == b"Hello, World!"
        assert response.getheader("Content-Type").startswith("text/plain")

    def test_index(self, frontdoor):
        assert frontdoor.https("GET", "/").body == b"<h1>home</h1>"

    def test_not_found(self, frontdoor):
        response = frontdoor.https("GET", "/missing.html")

        assert response.status == 404
        assert response.body == b"Not found"

    def test_head_has_no_body(self, frontdoor):
        response = frontdoor.https("HEAD", "/hello.txt")

        assert response.status == 200
        assert response.getheader("Content-Length") == "13"
        assert response.body == b""

    def test_negotiates_modern_tls(self, frontdoor):
        assert tls_handshake(frontdoor.https_port, frontdoor.client_context()) in ("TLSv1.2", "TLSv1.3")

    def test_alpn_is_http11(self, frontdoor):
        context = frontdoor.client_context()
        context.set_alpn_protocols(["h2", "http/1.1"])

        with socket.create_connection(("127.0.0.1", frontdoor.https_port), timeout=5) as raw:
            with context.wrap_socket(raw) as tls:
                assert tls.selected_alpn_protocol() == "http/1.1"

    def test_rejects_tls_11(self, frontdoor):
        with pytest.raises((ssl.SSLError, OSError, ValueError)):
            context = frontdoor.client_context()
            context.minimum_version = ssl.TLSVersion.TLSv1_1
            context.maximum_version = ssl.TLSVersion.TLSv1_1
            tls_handshake(frontdoor.https_port, context)

        # The listener survives the failed handshake
        assert frontdoor.https("GET", "/hello.txt").status == 200

    def test_rejects_suites_without_forward_secrecy(self, frontdoor):
        with pytest.raises((ssl.SSLError, OSError)):
            context = frontdoor.client_context()
            context.maximum_version = ssl.TLSVersion.TLSv1_2
            context.set_ciphers("AES128-GCM-SHA256")
            tls_handshake(frontdoor.https_port, context)

        assert frontdoor.https("GET", "/hello.txt").status == 200

    def test_plaintext_on_tls_port(self, frontdoor):
        with socket.create_connection(("127.0.0.1", frontdoor.https_port), timeout=5) as client:
            client.sendall(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
            try:
                client.recv(1024)
            except OSError:
                pass

        assert frontdoor.https("GET", "/hello.txt").status == 200


# =============================================================================
# CONNECTIONS AND LOGGING
# =============================================================================

class TestConnections:

    def test_keep_alive(self, frontdoor):
        conn = http.client.HTTPSConnection(
            "127.0.0.1", frontdoor.https_port, timeout=5, context=frontdoor.client_context(),
        )
        try:
            conn.request("GET", "/hello.txt")
            first = conn.getresponse()
            assert first.read() == b"Hello, World!"
            sock = conn.sock

            conn.request("GET", "/")
            second = conn.getresponse()
            assert second.read() == b"<h1>home</h1>"
            assert conn.sock is sock
        finally:
            conn.close()

    def test_connection_close_is_honored(self, frontdoor):
        response = frontdoor.https("GET", "/hello.txt", headers={"Connection": "close"})

        assert response.getheader("Connection") == "close"

    def test_idle_clients_do_not_hold_workers(self, start_frontdoor):
        running = start_frontdoor(min_workers=1, max_workers=2)

        idle = []
        try:
            for _ in range(2):
                conn = http.client.HTTPConnection("127.0.0.1", running.http_port, timeout=5)
                conn.request("GET", "/a", headers={"Host": "example.com"})
                conn.getresponse().read()
                idle.append(conn)

            started = time.monotonic()
            response = running.http("GET", "/foo", headers={"Host": "example.com"})

            assert response.status == 301
            assert time.monotonic() - started < 2.0

            # The parked connections still work
            for conn in idle:
                sock = conn.sock
                conn.request("GET", "/b", headers={"Host": "example.com"})
                second = conn.getresponse()
                second.read()
                assert second.status == 301
                assert conn.sock is sock
        finally:
            for conn in idle:
                conn.close()

    def test_idle_connection_is_closed(self, start_frontdoor):
        running = start_frontdoor(idle_timeout=0.3)

        with socket.create_connection(("127.0.0.1", running.http_port), timeout=5) as client:
            client.sendall(b"GET / HTTP/1.1\r\nHost: example.com\r\n\r\n")
            reply = b""
            while b"\r\n\r\n" not in reply:
                chunk = client.recv(1024)
                assert chunk
                reply += chunk
            assert reply.startswith(b"HTTP/1.1 301 ")

            started = time.monotonic()
            while client.recv(1024):
                pass
            assert time.monotonic() - started < 3.0

    def test_access_log(self, frontdoor, caplog):
        with caplog.at_level(logging.INFO, logger=ACCESS_LOGGER_NAME):
            frontdoor.http("GET", "/foo", headers={"Host": "example.com"})
            frontdoor.https("GET", "/hello.txt")

        lines = [r.getMessage() for r in caplog.records if r.name == ACCESS_LOGGER_NAME]
        assert any('"GET /foo HTTP/1.1" 301' in line for line in lines)
        assert any('"GET /hello.txt HTTP/1.1" 200 13' in line for line in lines)


# =============================================================================
# SHUTDOWN
# =============================================================================

class TestShutdown:

    def test_stops_promptly_with_idle_connections(self, start_frontdoor):
        running = start_frontdoor()

        # An idle keep-alive connection must not hold up shutdown
        conn = http.client.HTTPConnection("127.0.0.1", running.http_port, timeout=5)
        conn.request("GET", "/", headers={"Host": "example.com"})
        conn.getresponse().read()

        started = time.monotonic()
        assert running.stop() is None
        assert time.monotonic() - started < 3.0
        conn.close()

        for port in (running.http_port, running.https_port):
            with pytest.raises(OSError):
                socket.create_connection(("127.0.0.1", port), timeout=1).close()

    def test_failed_listener_stops_the_other(self, config):
        occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        occupied.bind(("127.0.0.1", 0))
        occupied.listen(1)
        config.http_port = occupied.getsockname()[1]

        try:
            http_server, https_server = create_servers(config)
            https_port = https_server.bind()[1]

            controller = LifecycleController([http_server, https_server])
            error = controller.run(timeout=10.0)
        finally:
            occupied.close()

        assert isinstance(error, OSError)
        assert https_server.is_closing
        with pytest.raises(OSError):
            socket.create_connection(("127.0.0.1", https_port), timeout=1).close()
