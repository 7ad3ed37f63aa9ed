"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Request parsing, response building, routing, status codes and MIME types.
Nothing in here touches a socket; bytes come in from frontdoor.core and go
back out through it.

    raw bytes ──► RequestParser ──► HTTPRequest ──► Router ──► handler
                                                                  │
    raw bytes ◄── HTTPResponse.to_bytes() ◄───────────────────────┘

=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, split_host_port
from .response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    redirect,            # 301/302
    bad_request,         # 400
    forbidden,           # 403
    not_found,           # 404, body "Not found"
    method_not_allowed,  # 405
    internal_error,      # 500
    format_http_date,
    parse_http_date,
)
from .router import Router, Route, Handler
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "split_host_port",

    # Response building
    "HTTPResponse",
    "ResponseBuilder",
    "error_response",
    "redirect",
    "bad_request",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "internal_error",
    "format_http_date",
    "parse_http_date",

    # Routing
    "Router",
    "Route",
    "Handler",

    # Status codes
    "HTTPStatus",

    # MIME types
    "get_mime_type",
    "get_content_type",
]
