"""
=============================================================================
FRONTDOOR - Static HTTPS Front Door
=============================================================================

A small HTTP(S) server that sits in front of a directory of static files:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   :8000  plaintext   /.well-known/*  → files (ACME challenges)      │
    │                      everything else → 301 https://host/same/target │
    │                                                                      │
    │   :4443  TLS 1.2+    every path      → files, 404 "Not found"       │
    │          ECDHE+AEAD                                                  │
    │                                                                      │
    │   both listeners start together and stop together                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    frontdoor/
    ├── __init__.py          # This file - package exports
    ├── __main__.py          # CLI entry point (python -m frontdoor)
    ├── app.py               # Builds both listeners from the config
    ├── config.py            # FrontDoorConfig dataclass
    ├── lifecycle.py         # LifecycleController, ShutdownSignal
    ├── server.py            # HTTPServer (one listener)
    ├── tls.py               # TLSPolicy, SSLContext, CertificateStore
    ├── core/                # Sockets, connections, worker threads
    ├── http/                # Parsing, responses, routing
    ├── middleware/          # Access log
    └── handlers/            # Static files, HTTPS redirect

=============================================================================
QUICK START
=============================================================================

    from frontdoor import FrontDoorConfig, LifecycleController, create_servers

    config = FrontDoorConfig(doc_root="public", https_port=8443, redirect_port=8443)
    controller = LifecycleController(create_servers(config))
    error = controller.run()

=============================================================================
"""

from .config import FrontDoorConfig
from .server import HTTPServer
from .lifecycle import LifecycleController, CancellationSignal, ShutdownSignal
from .tls import TLSPolicy, build_tls_policy, create_ssl_context, CertificateStore
from .app import create_servers, build_plaintext_router, build_tls_router
from .core import ServerClosed


__version__ = "1.0.0"

__all__ = [
    "FrontDoorConfig",
    "HTTPServer",
    "LifecycleController",
    "CancellationSignal",
    "ShutdownSignal",
    "TLSPolicy",
    "build_tls_policy",
    "create_ssl_context",
    "CertificateStore",
    "create_servers",
    "build_plaintext_router",
    "build_tls_router",
    "ServerClosed",
    "__version__",
]
