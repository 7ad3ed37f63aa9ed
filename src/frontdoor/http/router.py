"""
=============================================================================
URL ROUTER
=============================================================================

Each listener is built with its own Router instance; there is no
process-wide routing table. The front door needs very little routing:

    PLAINTEXT LISTENER                      TLS LISTENER
    ──────────────────                      ────────────
    GET|HEAD /.well-known/*path → static    GET|HEAD /*path → static
    anything else → not_found_handler       anything else → 405 / 404
                    (the HTTPS redirect)

=============================================================================
ROUTE PATTERNS
=============================================================================

1. STATIC PATHS: exact match

   Pattern: /robots.txt        Matches: /robots.txt

2. PARAMETERS (:param): one path segment

   Pattern: /files/:name       Matches: /files/a.txt → {"name": "a.txt"}

3. WILDCARD (*param): the rest of the path, must be last

   Pattern: /.well-known/*path
   Matches: /.well-known/acme-challenge/tok → {"path": "acme-challenge/tok"}

Patterns compile to anchored regexes with named groups:

    /.well-known/*path  →  ^/\\.well\\-known/(?P<path>.*)$

First registered, first matched.

=============================================================================
WHEN NOTHING MATCHES
=============================================================================

    path matches, method does not  →  405 with an Allow header
    path matches nothing           →  not_found_handler(request)

not_found_handler defaults to a plain "Not found" 404. The plaintext
listener replaces it with the redirect handler, which turns "no route" into
"go to HTTPS".

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Optional, Dict, List
import re

from .request import HTTPRequest
from .response import HTTPResponse, not_found, method_not_allowed


# Handler: takes a request, returns a response
Handler = Callable[[HTTPRequest], HTTPResponse]


@dataclass
class Route:
    """A URL pattern bound to a handler for one method (or any method)."""

    path: str
    method: Optional[str]            # None = any method
    handler: Handler

    _pattern: Optional[re.Pattern] = field(default=None, repr=False)
    _param_names: List[str] = field(default_factory=list, repr=False)


@dataclass
class RouteMatch:
    """A matched route and the parameters extracted from the path."""
    route: Route
    params: Dict[str, str]


def _default_not_found(request: HTTPRequest) -> HTTPResponse:
    return not_found()


class Router:
    """
    HTTP request router.

        router = Router()

        @router.get("/.well-known/*path")
        def well_known(request):
            ...

        router.not_found_handler = redirect_handler
        response = router.handle(request)
    """

    def __init__(self, not_found_handler: Optional[Handler] = None):
        self._routes: List[Route] = []
        self.not_found_handler: Handler = not_found_handler or _default_not_found

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    def add_route(self, path: str, handler: Handler, method: Optional[str] = None) -> Route:
        """
        Register a route.

        Args:
            path: URL pattern (e.g. /.well-known/*path)
            handler: Called with the request, returns the response
            method: HTTP method (None for any)
        """
        pattern, param_names = self._compile_pattern(path)

        route = Route(
            path=path,
            method=method.upper() if method else None,
            handler=handler,
            _pattern=pattern,
            _param_names=param_names,
        )
        self._routes.append(route)
        return route

    def _compile_pattern(self, path: str) -> tuple[re.Pattern, List[str]]:
        """
        Compile a path pattern into an anchored regex.

            "/files/:name"        → ^/files/(?P<name>[^/]+)$
            "/.well-known/*path"  → ^/\\.well\\-known/(?P<path>.*)$
        """
        param_names: List[str] = []
        regex_parts = ["^"]

        for segment in path.split("/"):
            if not segment:
                continue

            regex_parts.append("/")

            if segment.startswith(":"):
                param_name = segment[1:]
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>[^/]+)")

            elif segment.startswith("*"):
                param_name = segment[1:] or "wildcard"
                param_names.append(param_name)
                regex_parts.append(f"(?P<{param_name}>.*)")
                break  # Wildcard consumes everything

            else:
                regex_parts.append(re.escape(segment))

        if len(regex_parts) == 1:
            regex_parts.append("/")  # The root pattern "/"

        regex_parts.append("$")
        return re.compile("".join(regex_parts)), param_names

    # =========================================================================
    # ROUTE MATCHING
    # =========================================================================

    def match(self, method: str, path: str) -> Optional[RouteMatch]:
        """
        Find the first route matching method and path.

        Matches the path exactly as requested: "//.well-known/x" is not under
        "/.well-known/".
        """
        for route in self._routes:
            if route.method and route.method != method.upper():
                continue

            match = route._pattern.match(path)
            if match:
                return RouteMatch(route=route, params=match.groupdict())

        return None

    def get_allowed_methods(self, path: str) -> List[str]:
        """Methods registered for a path, for the Allow header of a 405."""
        methods = set()

        for route in self._routes:
            if route._pattern.match(path):
                if route.method is None:
                    return []  # Any method matches; nothing to refuse
                methods.add(route.method)

        return sorted(methods)

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Route a request: matching handler, else 405, else not_found_handler.
        """
        match = self.match(request.method, request.path)

        if match:
            request.path_params = match.params
            return match.route.handler(request)

        allowed = self.get_allowed_methods(request.path)
        if allowed:
            return method_not_allowed(allowed)

        return self.not_found_handler(request)

    # =========================================================================
    # DECORATORS
    # =========================================================================

    def route(self, path: str, method: Optional[str] = None) -> Callable[[Handler], Handler]:
        """Decorator form of add_route()."""
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, method)
            return handler
        return decorator

    def get(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "GET")

    def head(self, path: str) -> Callable[[Handler], Handler]:
        return self.route(path, "HEAD")

    def routes(self) -> List[Route]:
        """All registered routes, in match order."""
        return list(self._routes)

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        return self.handle(request)
