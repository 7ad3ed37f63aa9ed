"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One log line per request on the "frontdoor.access" logger, in Apache
combined log format by default:

    203.0.113.9 - - [18/Oct/2026:10:55:36 +0000] "GET /foo?x=1 HTTP/1.1" 301 0 "-" "curl/8.5.0"
    ───────────       ──────────────────────────  ──────────────────────── ─── ─ ─── ────────────
    client            time                        request line             st. size referer  UA

Every log analyzer (GoAccess, AWStats, fail2ban filters) reads this format,
and it is what operators of a front door expect to grep. A JSON format is
available for log shippers.

The access logger is separate from the application loggers so it can be
routed or silenced on its own:

    logging.getLogger("frontdoor.access").setLevel(logging.WARNING)

=============================================================================
"""

import time
import json
import logging
from dataclasses import dataclass, asdict

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


ACCESS_LOGGER_NAME = "frontdoor.access"

logger = logging.getLogger(ACCESS_LOGGER_NAME)


@dataclass
class AccessLogEntry:
    """One request/response pair, as logged."""

    client_ip: str
    timestamp: str
    method: str
    target: str
    version: str
    status_code: int
    content_length: int
    referer: str
    user_agent: str
    duration_ms: float
    listener: str = ""

    def to_combined(self) -> str:
        """Apache combined log format."""
        size = str(self.content_length) if self.content_length else "-"
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.target} {self.version}" {self.status_code} {size} '
            f'"{self.referer or "-"}" "{self.user_agent or "-"}"'
        )

    def to_json(self) -> str:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return json.dumps(entry)


class LoggingMiddleware(Middleware):
    """
    Access log middleware. Add it first so it sees every response.

        pipeline.add(LoggingMiddleware(listener="https"))
    """

    def __init__(self, log_format: str = "combined", log_level: int = logging.INFO, listener: str = ""):
        """
        Args:
            log_format: "combined" (Apache) or "json".
            log_level: Level the access lines are logged at.
            listener: Listener name, included in JSON entries.
        """
        if log_format not in ("combined", "json"):
            raise ValueError(f"Unknown access log format: {log_format!r}")
        self.log_format = log_format
        self.log_level = log_level
        self.listener = listener

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        start_time = time.time()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.target} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        if not logger.isEnabledFor(self.log_level):
            return response

        entry = AccessLogEntry(
            client_ip=request.client_address[0] or "-",
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
            method=request.method,
            target=request.target,
            version=request.version,
            status_code=int(response.status),
            content_length=len(response.body),
            referer=request.referer,
            user_agent=request.user_agent,
            duration_ms=(time.time() - start_time) * 1000,
            listener=self.listener,
        )

        if self.log_format == "json":
            logger.log(self.log_level, entry.to_json())
        else:
            logger.log(self.log_level, entry.to_combined())

        return response
