"""
=============================================================================
MIDDLEWARE
=============================================================================

Cross-cutting request processing that wraps each listener's router.

LoggingMiddleware:
    Access log in Apache combined format (or JSON) on "frontdoor.access".

=============================================================================
"""

from .base import Middleware, MiddlewarePipeline, NextHandler
from .logging import LoggingMiddleware, AccessLogEntry, ACCESS_LOGGER_NAME

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "LoggingMiddleware",
    "AccessLogEntry",
    "ACCESS_LOGGER_NAME",
]
