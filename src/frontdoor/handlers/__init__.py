"""
=============================================================================
REQUEST HANDLERS
=============================================================================

    StaticFileHandler     files from the document root (both listeners)
    HTTPSRedirectHandler  301 to https:// (plaintext listener)

Both are plain callables taking an HTTPRequest and returning an HTTPResponse,
so they plug into a Router directly:

    static = StaticFileHandler("public", prefix="/.well-known/")
    router = Router(not_found_handler=HTTPSRedirectHandler())
    router.add_route("/.well-known/*path", static, method="GET")

=============================================================================
"""

from .static import StaticFileHandler, parse_range, RangeNotSatisfiable
from .redirect import HTTPSRedirectHandler

__all__ = [
    "StaticFileHandler",
    "parse_range",
    "RangeNotSatisfiable",
    "HTTPSRedirectHandler",
]
