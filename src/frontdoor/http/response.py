"""
=============================================================================
HTTP RESPONSE BUILDING
=============================================================================

HTTPResponse is the value every handler returns; ResponseBuilder is the fluent
way to make one; the helper functions at the bottom are one-liners for the
responses the front door sends most.

=============================================================================
RESPONSE FORMAT
=============================================================================

    HTTP/1.1 301 Moved Permanently\r\n      ← Status line
    Location: https://example.com/foo\r\n   ← Headers
    Content-Length: 0\r\n                   ← Auto-calculated
    Date: Sun, 18 Oct 2026 10:00:00 GMT\r\n ← Auto-added
    Server: frontdoor/1.0\r\n               ← Auto-added
    \r\n                                    ← Empty line
    (body)

=============================================================================
ERROR BODIES ARE PLAIN TEXT
=============================================================================

Every error the front door produces has a short text/plain body ("Not found",
"Bad Request", ...). A static site has no API clients that would parse JSON
errors, and a plain body makes it obvious the response came from this
application and not from some framework default page.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Dict, Union

from .status_codes import HTTPStatus


DEFAULT_SERVER_NAME = "frontdoor/1.0"

NOT_FOUND_BODY = "Not found"


@dataclass
class HTTPResponse:
    """
    Represents an HTTP response to be sent to the client.

    Content-Length is computed from the body unless a handler sets it
    explicitly (HEAD responses keep the length of the body they omit).
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        """Example: "HTTP/1.1 200 OK"."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a response header. Returns self for chaining."""
        self.headers[name] = value
        return self

    def set_body(self, body: Union[str, bytes]) -> "HTTPResponse":
        """Set the response body, encoding strings as UTF-8."""
        self.body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def to_bytes(
        self,
        server_name: str = DEFAULT_SERVER_NAME,
        include_body: bool = True,
    ) -> bytes:
        """
        Serialize the response to bytes for sending over the socket.

        Args:
            server_name: Value for the Server header.
            include_body: False for responses to HEAD requests; the headers
                          (Content-Length included) still describe the body.
        """
        response_headers = dict(self.headers)

        # 304 carries no body and must not advertise one
        if self.status != HTTPStatus.NOT_MODIFIED:
            response_headers.setdefault("Content-Length", str(len(self.body)))

        response_headers.setdefault("Date", format_http_date(datetime.now(timezone.utc)))
        response_headers.setdefault("Server", server_name)

        lines = [self.status_line]
        lines.extend(f"{name}: {value}" for name, value in response_headers.items())
        lines.append("")

        # latin-1: header values may carry raw request bytes (Location)
        header_bytes = "\r\n".join(lines).encode("latin-1") + b"\r\n"

        if not include_body or self.status == HTTPStatus.NOT_MODIFIED:
            return header_bytes
        return header_bytes + self.body


class ResponseBuilder:
    """
    Fluent builder for constructing HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .content_type("text/css; charset=utf-8")
            .body(data)
            .build())

    Each method returns `self` except build().
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        """Set the raw response body (strings are UTF-8 encoded)."""
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        """Set a plain text body and its Content-Type."""
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        """
        Make this a redirect.

        301 Moved Permanently tells clients (and search engines) to use the
        new URL from now on; 302 Found is a one-off detour.
        """
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        self._headers["Location"] = location
        return self

    def close_connection(self) -> "ResponseBuilder":
        """Tell the client the connection closes after this response."""
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=dict(self._headers),
            body=self._body,
        )


# =============================================================================
# HTTP DATES
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an IMF-fixdate (RFC 9110 §5.6.7).

    Example: Sun, 18 Oct 2026 10:00:00 GMT

    HTTP dates are always GMT; aware datetimes are converted first.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)

    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def parse_http_date(value: str) -> Optional[datetime]:
    """
    Parse an HTTP-date header value into an aware UTC datetime.

    Returns None for anything unparseable; a bad If-Modified-Since must be
    ignored, not rejected.
    """
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def error_response(status: HTTPStatus, message: Optional[str] = None) -> HTTPResponse:
    """A plain-text error response; the body defaults to the reason phrase."""
    return ResponseBuilder().status(status).text(message or status.phrase).build()


def redirect(location: str, permanent: bool = False) -> HTTPResponse:
    """Create a 301 or 302 response pointing at `location`."""
    return ResponseBuilder().redirect(location, permanent).build()


def not_found(message: str = NOT_FOUND_BODY) -> HTTPResponse:
    """404 with a plain-text body, "Not found" by default."""
    return error_response(HTTPStatus.NOT_FOUND, message)


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return error_response(HTTPStatus.BAD_REQUEST, message)


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_response(HTTPStatus.FORBIDDEN, message)


def method_not_allowed(allowed_methods: list[str]) -> HTTPResponse:
    """405 with the Allow header RFC 9110 requires."""
    response = error_response(HTTPStatus.METHOD_NOT_ALLOWED)
    response.headers["Allow"] = ", ".join(allowed_methods)
    return response


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return error_response(HTTPStatus.INTERNAL_SERVER_ERROR, message)
