"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The subset of RFC 9110 status codes the front door can emit.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                  WHO SENDS WHICH STATUS                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   200 OK                  static file served                        │
    │   206 Partial Content     static file, satisfiable Range header     │
    │   301 Moved Permanently   plaintext → HTTPS redirect                │
    │                           directory without trailing slash          │
    │   304 Not Modified        If-Modified-Since matched                 │
    │   400 Bad Request         malformed request, unusable Host          │
    │   403 Forbidden           symlink escaping the document root        │
    │   404 Not Found           no such file                              │
    │   405 Method Not Allowed  non GET/HEAD on a static route            │
    │   408 Request Timeout     read window expired                       │
    │   413 Payload Too Large   request over max_request_size             │
    │   416 Range Not Satisf.   Range outside the file                    │
    │   500 Internal Error      handler raised                            │
    │   501 Not Implemented     chunked request bodies                    │
    │   503 Service Unavail.    worker pool saturated                     │
    │   505 Version Not Supp.   anything but HTTP/1.0 and HTTP/1.1        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

    This enum extends IntEnum, so status codes can be used as integers:

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    # 2xx SUCCESS
    OK = 200
    PARTIAL_CONTENT = 206           # Range request fulfilled

    # 3xx REDIRECTION
    MOVED_PERMANENTLY = 301         # HTTP → HTTPS upgrade
    FOUND = 302
    NOT_MODIFIED = 304              # Conditional GET, client copy still valid

    # 4xx CLIENT ERRORS
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413
    RANGE_NOT_SATISFIABLE = 416

    # 5xx SERVER ERRORS
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    SERVICE_UNAVAILABLE = 503
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """
        Get the reason phrase for this status code.

            HTTP/1.1 404 Not Found
                     ─── ─────────
                      │   │
                      │   └── Reason phrase
                      └────── Status code
        """
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def is_redirect(self) -> bool:
        """Check if this is a 3xx (redirection) status code."""
        return 300 <= self < 400

    @property
    def is_error(self) -> bool:
        """Check if this is an error status code (4xx or 5xx)."""
        return self >= 400


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.PARTIAL_CONTENT: "Partial Content",
    HTTPStatus.MOVED_PERMANENTLY: "Moved Permanently",
    HTTPStatus.FOUND: "Found",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.RANGE_NOT_SATISFIABLE: "Range Not Satisfiable",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}
