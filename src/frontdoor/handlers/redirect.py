"""
=============================================================================
HTTP → HTTPS REDIRECT HANDLER
=============================================================================

Everything the plaintext listener does not serve from the well-known prefix
lands here and is sent to the same URL over HTTPS:

    GET /foo?x=1 HTTP/1.1                 HTTP/1.1 301 Moved Permanently
    Host: example.com:8000       ──►      Location: https://example.com/foo?x=1

=============================================================================
BUILDING THE LOCATION
=============================================================================

    https://  +  host  +  [":" redirect_port]  +  request target
                  │              │                      │
                  │              │                      └── exactly as sent,
                  │              │                          percent-encoding
                  │              │                          and query intact
                  │              └── only when configured and not 443
                  └── Host header minus its port (the plaintext port
                      means nothing to the HTTPS side); public_host when
                      the client sent no usable Host

The Host port is dropped on purpose. A request to example.com:8000 must not
be redirected to https://example.com:8000, where nothing speaks TLS. When
the TLS listener is reachable on a non-default port, redirect_port says so
explicitly.

Without a Host header and without a configured public_host there is no
correct target, so the answer is 400, never a guess.

=============================================================================
"""

import logging
import re
from typing import Optional

from ..http.request import HTTPRequest, split_host_port
from ..http.response import HTTPResponse, ResponseBuilder, bad_request


logger = logging.getLogger(__name__)

# reg-name or IPv4 (RFC 3986 unreserved + sub-delims, no "@" or "/"),
# or a bracketed IPv6 literal
_VALID_HOSTNAME = re.compile(r"^(?:[A-Za-z0-9\-._~!$&'()*+,;=%]+|\[[0-9A-Fa-f:.]+\])$")


class HTTPSRedirectHandler:
    """
    Answers every request with a 301 to its HTTPS equivalent.

    Usage:
        redirect_handler = HTTPSRedirectHandler(redirect_port=4443)
        router = Router(not_found_handler=redirect_handler)
    """

    def __init__(self, redirect_port: Optional[int] = None, public_host: Optional[str] = None):
        """
        Args:
            redirect_port: Port to put in the Location header. None or 443
                           means the HTTPS default, so no port is written.
            public_host: Host to redirect to when a request has no Host
                         header (HTTP/1.0 clients, health checks).
        """
        self.redirect_port = redirect_port
        self.public_host = public_host

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        return self.handle(request)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        host = self._target_host(request)
        if host is None:
            logger.debug(f"No usable Host from {request.client_address[0]}, cannot redirect")
            return bad_request("Missing or invalid Host header")

        if not request.target.startswith("/"):
            # OPTIONS * and friends have no HTTPS equivalent URL
            return bad_request("Cannot redirect this request target")

        return ResponseBuilder().redirect(self.location(host, request.target), permanent=True).build()

    def location(self, host: str, target: str) -> str:
        """Build the https:// URL for a host and raw request target."""
        port = ""
        if self.redirect_port and self.redirect_port != 443:
            port = f":{self.redirect_port}"
        return f"https://{host}{port}{target}"

    def _target_host(self, request: HTTPRequest) -> Optional[str]:
        """The hostname to redirect to, or None if there is none we trust."""
        if request.host:
            hostname, _ = split_host_port(request.host)
            if hostname and _VALID_HOSTNAME.match(hostname):
                return hostname
            return None

        return self.public_host or None
