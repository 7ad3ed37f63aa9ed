"""
=============================================================================
APPLICATION ASSEMBLY
=============================================================================

Builds the two listeners from one FrontDoorConfig. Each listener gets its
own Router; there is no shared routing table.

    ┌──────────────── plaintext listener (http_port) ─────────────────────┐
    │                                                                      │
    │   GET|HEAD  /.well-known/*path  →  StaticFileHandler(prefix=...)    │
    │   anything else                 →  HTTPSRedirectHandler (301)       │
    │                                                                      │
    └──────────────────────────────────────────────────────────────────────┘

    ┌──────────────── TLS listener (https_port) ──────────────────────────┐
    │                                                                      │
    │   CertificateStore(certfile, keyfile)   hardened TLSPolicy          │
    │   GET|HEAD  /*path              →  StaticFileHandler(prefix="/")    │
    │   no such file                  →  404 "Not found"                  │
    │                                                                      │
    └──────────────────────────────────────────────────────────────────────┘

Both routers are wrapped in the access log middleware when access_log is on.

Everything that can be wrong with the setup (bad config, missing document
root, unreadable certificate) fails here, before any socket is opened.

=============================================================================
"""

import logging
from typing import Tuple

from .config import FrontDoorConfig
from .handlers import StaticFileHandler, HTTPSRedirectHandler
from .http import Router
from .middleware import MiddlewarePipeline, LoggingMiddleware
from .server import HTTPServer, RequestHandler
from .tls import CertificateStore, build_tls_policy


logger = logging.getLogger(__name__)

STATIC_METHODS = ("GET", "HEAD")


def build_plaintext_router(config: FrontDoorConfig) -> Router:
    """Well-known files from the document root, a 301 for everything else."""
    redirect_handler = HTTPSRedirectHandler(
        redirect_port=config.redirect_port,
        public_host=config.public_host,
    )
    router = Router(not_found_handler=redirect_handler)

    well_known = StaticFileHandler(config.doc_root, prefix=config.well_known_prefix)
    for method in STATIC_METHODS:
        router.add_route(f"{config.well_known_prefix}*path", well_known, method=method)

    return router


def build_tls_router(config: FrontDoorConfig) -> Router:
    """Every path from the document root, 404 "Not found" otherwise."""
    router = Router()

    static = StaticFileHandler(config.doc_root, prefix="/")
    for method in STATIC_METHODS:
        router.add_route("/*path", static, method=method)

    return router


def wrap_handler(router: Router, config: FrontDoorConfig, listener: str) -> RequestHandler:
    """The router, behind the access log when it is enabled."""
    pipeline = MiddlewarePipeline()
    if config.access_log:
        pipeline.add(LoggingMiddleware(listener=listener))
    return pipeline.wrap(router.handle)


def create_servers(config: FrontDoorConfig) -> Tuple[HTTPServer, HTTPServer]:
    """
    Validate the configuration and build both listeners (not yet bound).

    Returns:
        (plaintext server, TLS server)

    Raises:
        ValueError: Invalid configuration or document root.
        OSError, ssl.SSLError: Certificate or key missing or unusable.
    """
    config.validate()

    certificates = CertificateStore(config.certfile, config.keyfile, policy=build_tls_policy())

    http_server = HTTPServer(
        wrap_handler(build_plaintext_router(config), config, "http"),
        config,
        port=config.http_port,
        name="http",
    )
    https_server = HTTPServer(
        wrap_handler(build_tls_router(config), config, "https"),
        config,
        port=config.https_port,
        name="https",
        tls=certificates,
    )

    logger.debug(f"Serving {config.doc_root} (well-known prefix {config.well_known_prefix})")
    return http_server, https_server

