"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes of one HTTP/1.x request (as framed by Connection) into an
HTTPRequest object.

=============================================================================
REQUEST TARGET VS PATH
=============================================================================

The front door needs the request URI in two shapes:

    GET /docs/a%20b.txt?x=1&y=2 HTTP/1.1
        ───────────────┬───────
                       │
        target  ───────┘   "/docs/a%20b.txt?x=1&y=2"   (exact bytes, as sent)
        path               "/docs/a b.txt"              (decoded, for the disk)
        query              "x=1&y=2"                    (raw)

The redirect handler copies `target` verbatim into the Location header, so a
client is sent back to exactly the URI it asked for, only with https://.
The static file handler uses `path`, because file names on disk are not
percent-encoded.

=============================================================================
WHAT WE REJECT
=============================================================================

    400 Bad Request               malformed request line or Content-Length
    413 Payload Too Large         request larger than max_request_size
    501 Not Implemented           Transfer-Encoding bodies (chunked)
    505 HTTP Version Not Supported anything but HTTP/1.0 and HTTP/1.1

Path traversal is NOT rejected here. "/a/../b" is a legal request target and
the plaintext listener must still redirect it; the static file handler
normalizes paths before touching the filesystem.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict
from urllib.parse import urlsplit, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the HTTP status code that should be returned to the client.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    Headers are stored with lowercase keys (HTTP header names are
    case-insensitive per RFC 9110).
    """

    method: str                          # GET, HEAD, POST, ...
    path: str                            # Decoded path without query string
    target: str = ""                     # Raw request-target, as received
    query: str = ""                      # Raw query string (no leading "?")
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    # Router-injected parameters
    path_params: Dict[str, str] = field(default_factory=dict)

    client_address: tuple[str, int] = ("", 0)
    scheme: str = "http"                 # "https" on the TLS listener

    def __post_init__(self):
        if not self.target:
            self.target = self.path + (f"?{self.query}" if self.query else "")

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def host(self) -> str:
        """The Host header value, including any port."""
        return self.headers.get("host", "")

    @property
    def hostname(self) -> str:
        """
        The Host header without its port.

            "example.com:8000" → "example.com"
            "[::1]:8000"       → "[::1]"
            "[::1]"            → "[::1]"
        """
        return split_host_port(self.host)[0]

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def referer(self) -> str:
        return self.headers.get("referer", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Check if this connection should be kept alive.

        HTTP/1.1 keeps alive unless the client sends "Connection: close";
        HTTP/1.0 closes unless the client sends "Connection: keep-alive".
        """
        tokens = {t.strip() for t in self.headers.get("connection", "").lower().split(",")}

        if self.version == "HTTP/1.1":
            return "close" not in tokens
        return "keep-alive" in tokens

    def get_header(self, name: str, default: str = "") -> str:
        """Get a header value (case-insensitive lookup)."""
        return self.headers.get(name.lower(), default)


def split_host_port(host: str) -> tuple[str, Optional[int]]:
    """
    Split a Host header value into (hostname, port).

    IPv6 literals keep their brackets so the hostname can be pasted back
    into a URL unchanged. A missing or non-numeric port yields None.
    """
    host = host.strip()
    if host.startswith("["):
        end = host.find("]")
        if end == -1:
            return host, None
        hostname, rest = host[:end + 1], host[end + 1:]
        if rest.startswith(":") and rest[1:].isdigit():
            return hostname, int(rest[1:])
        return hostname, None

    hostname, sep, port = host.rpartition(":")
    if sep and port.isdigit() and ":" not in hostname:
        return hostname, int(port)
    return host, None


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

    The parser is stateless and shared by every worker thread of a listener.
    """

    # METHOD SP REQUEST-TARGET SP HTTP-VERSION
    # The method is any RFC 9110 token; routing decides what is allowed.
    REQUEST_LINE_PATTERN = re.compile(
        r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+) ([^ ]+) (HTTP/\d\.\d)$"
    )
    HEADER_PATTERN = re.compile(r"^([^:\s]+):\s*(.*)$")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(self, max_request_size: int = 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0),
        scheme: str = "http",
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Raises:
            HTTPParseError: If the request is malformed.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # Header bytes outside ASCII are legal (obs-text); latin-1 keeps
        # every byte addressable without raising.
        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, target, path, query, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        # ─────────────────────────────────────────────────────────────────
        # BODY FRAMING
        # ─────────────────────────────────────────────────────────────────
        # Only Content-Length framing is implemented. Accepting a
        # Transfer-Encoding we do not decode would desynchronize the
        # connection (request smuggling), so refuse it outright.
        if "transfer-encoding" in headers:
            raise HTTPParseError("Transfer-Encoding is not supported", status_code=501)

        content_length = parse_content_length(headers.get("content-length"))
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            target=target,
            query=query,
            version=version,
            headers=headers,
            body=body[:content_length],
            client_address=client_address,
            scheme=scheme,
        )

    def _parse_request_line(self, line: str) -> tuple[str, str, str, str, str]:
        """
        Parse "METHOD TARGET VERSION".

        Returns:
            (method, target, decoded path, raw query, version)
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        if target == "*":
            # OPTIONS * addresses the server, not a resource
            return method, target, "*", "", version

        if target.startswith("/"):
            raw_path, _, query = target.partition("?")
        elif "://" in target:
            # absolute-form, sent to proxies; reduce it to origin-form
            parts = urlsplit(target)
            raw_path, query = parts.path or "/", parts.query
            target = raw_path + (f"?{query}" if query else "")
        else:
            raise HTTPParseError(f"Invalid request target: {target!r}")

        return method, target, unquote(raw_path) or "/", query, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a dictionary with lowercase names.

        Repeated headers are joined with ", " (RFC 9110 §5.3). Obsolete
        line folding is rejected rather than guessed at.
        """
        headers: Dict[str, str] = {}

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                raise HTTPParseError("Obsolete header line folding is not allowed")

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Malformed header line: {line!r}")

            name, value = match.groups()
            name = name.lower()
            value = value.strip()

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_content_length(value: Optional[str]) -> int:
    """
    Parse a Content-Length header value.

    Raises:
        HTTPParseError: On a negative, non-numeric or conflicting value.
    """
    if value is None:
        return 0

    # "5, 5" is what _parse_headers makes of a repeated header
    candidates = {v.strip() for v in value.split(",")}
    if len(candidates) != 1:
        raise HTTPParseError(f"Conflicting Content-Length: {value!r}")

    candidate = candidates.pop()
    if not candidate.isdigit():
        raise HTTPParseError(f"Invalid Content-Length: {value!r}")
    return int(candidate)


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 1024 * 1024,
) -> HTTPRequest:
    """Convenience function to parse one request with default settings."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
