"""
=============================================================================
FRONT DOOR CONFIGURATION
=============================================================================

Every tunable of the front door in one dataclass.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── frontdoor --https-port 8443                                │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── FRONTDOOR_HTTPS_PORT=8443 frontdoor                        │
    │                                                                      │
    │   3. Default values (in this dataclass)                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
PORTS FROM THE ENVIRONMENT
=============================================================================

Platforms that assign the plaintext port hand it over in PORT; the
front door also reads FRONTDOOR_HTTP_PORT, which wins when both are set.

    variable unset             → warning, default port 8000
    variable set to a number   → that port
    variable set but empty,    → ValueError at startup
    or not a number

An empty port would otherwise bind ":" (any port the OS likes) and the
service would come up somewhere nobody is looking. Failing loudly is the
only useful answer.

=============================================================================
"""

import os
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Mapping


logger = logging.getLogger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass
class FrontDoorConfig:
    """
    Configuration for both listeners.

    Development:
        FrontDoorConfig(host="127.0.0.1", http_port=8000, https_port=8443,
                        redirect_port=8443, log_level="DEBUG")

    Production behind a 443 → 4443 port forward:
        FrontDoorConfig()   # 0.0.0.0:8000 and 0.0.0.0:4443, redirects omit the port
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Address both listeners bind to. "::" for IPv6."""

    http_port: int = 8000
    """Plaintext listener port (well-known files + redirects). 0 = any free port."""

    https_port: int = 4443
    """TLS listener port. 0 = any free port."""

    redirect_port: Optional[int] = None
    """
    Port written into redirect Locations. None (or 443) writes no port.
    Set it when clients reach the TLS listener on a non-default port.
    """

    public_host: Optional[str] = None
    """Host used in redirects for requests that carry no Host header."""

    backlog: int = 128
    """Accept queue length for each listening socket."""

    buffer_size: int = 8192
    """Bytes per recv() call."""

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    doc_root: str = "public"
    """Directory of static files. Read-only, owned by someone else."""

    well_known_prefix: str = "/.well-known/"
    """Path prefix the plaintext listener serves instead of redirecting."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    certfile: str = "fullchain.pem"
    """PEM certificate chain. Rewritten on disk by the renewal process."""

    keyfile: str = "privkey.pem"
    """PEM private key matching certfile."""

    # ─────────────────────────────────────────────────────────────────────
    # TIMEOUTS (seconds)
    # ─────────────────────────────────────────────────────────────────────

    read_timeout: float = 5.0
    """Deadline for the TLS handshake plus reading one whole request."""

    write_timeout: float = 10.0
    """Deadline for writing one whole response."""

    idle_timeout: float = 120.0
    """How long a kept-alive connection may sit between requests."""

    shutdown_timeout: float = 10.0
    """How long close() waits for in-flight requests to finish."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP / THREADS
    # ─────────────────────────────────────────────────────────────────────

    max_request_size: int = 1024 * 1024
    """Largest accepted request (headers plus body), in bytes."""

    min_workers: int = 4
    """Worker threads started per listener."""

    max_workers: int = 64
    """Upper bound on worker threads per listener (= concurrent connections)."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """DEBUG, INFO, WARNING, ERROR or CRITICAL."""

    access_log: bool = True
    """Log every request in Apache combined format on "frontdoor.access"."""

    server_name: str = "frontdoor"
    """Value of the Server response header."""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FrontDoorConfig":
        """
        Create configuration from environment variables.

        FRONTDOOR_HOST, FRONTDOOR_HTTP_PORT (or PORT), FRONTDOOR_HTTPS_PORT,
        FRONTDOOR_REDIRECT_PORT, FRONTDOOR_PUBLIC_HOST, FRONTDOOR_ROOT,
        FRONTDOOR_CERT, FRONTDOOR_KEY, FRONTDOOR_WELL_KNOWN_PREFIX,
        FRONTDOOR_READ_TIMEOUT, FRONTDOOR_WRITE_TIMEOUT,
        FRONTDOOR_IDLE_TIMEOUT, FRONTDOOR_SHUTDOWN_TIMEOUT,
        FRONTDOOR_MIN_WORKERS, FRONTDOOR_MAX_WORKERS, FRONTDOOR_LOG_LEVEL,
        FRONTDOOR_ACCESS_LOG

        A FRONTDOOR_MAX_WORKERS below the default minimum lowers the minimum
        with it unless FRONTDOOR_MIN_WORKERS is set too.

        Raises:
            ValueError: A variable is set to something unusable.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        http_port = _env_port(env, "FRONTDOOR_HTTP_PORT")
        if http_port is None:
            http_port = _env_port(env, "PORT")
        if http_port is None:
            logger.warning(
                f"Neither FRONTDOOR_HTTP_PORT nor PORT is set, "
                f"plaintext listener uses default port {defaults.http_port}"
            )
            http_port = defaults.http_port

        https_port = _env_port(env, "FRONTDOOR_HTTPS_PORT")

        max_workers = _env_int(env, "FRONTDOOR_MAX_WORKERS", defaults.max_workers)
        min_workers = _env_int(env, "FRONTDOOR_MIN_WORKERS", min(defaults.min_workers, max_workers))

        return cls(
            host=env.get("FRONTDOOR_HOST", defaults.host),
            http_port=http_port,
            https_port=defaults.https_port if https_port is None else https_port,
            redirect_port=_env_port(env, "FRONTDOOR_REDIRECT_PORT"),
            public_host=env.get("FRONTDOOR_PUBLIC_HOST") or None,
            doc_root=env.get("FRONTDOOR_ROOT", defaults.doc_root),
            certfile=env.get("FRONTDOOR_CERT", defaults.certfile),
            keyfile=env.get("FRONTDOOR_KEY", defaults.keyfile),
            well_known_prefix=env.get("FRONTDOOR_WELL_KNOWN_PREFIX", defaults.well_known_prefix),
            read_timeout=_env_float(env, "FRONTDOOR_READ_TIMEOUT", defaults.read_timeout),
            write_timeout=_env_float(env, "FRONTDOOR_WRITE_TIMEOUT", defaults.write_timeout),
            idle_timeout=_env_float(env, "FRONTDOOR_IDLE_TIMEOUT", defaults.idle_timeout),
            shutdown_timeout=_env_float(env, "FRONTDOOR_SHUTDOWN_TIMEOUT", defaults.shutdown_timeout),
            min_workers=min_workers,
            max_workers=max_workers,
            log_level=env.get("FRONTDOOR_LOG_LEVEL", defaults.log_level).upper(),
            access_log=_env_bool(env, "FRONTDOOR_ACCESS_LOG", defaults.access_log),
        )

    def validate(self) -> None:
        """
        Validate configuration values. Fail fast, at startup.

        Certificate files are not checked here; loading them is the real
        check and happens when the TLS context is built.

        Raises:
            ValueError: With a message naming the bad setting.
        """
        for name in ("http_port", "https_port"):
            port = getattr(self, name)
            if not 0 <= port < 65536:
                raise ValueError(f"Invalid {name}: {port}. Must be 0-65535.")

        if self.http_port and self.http_port == self.https_port:
            raise ValueError(f"http_port and https_port are both {self.http_port}")

        if self.redirect_port is not None and not 0 < self.redirect_port < 65536:
            raise ValueError(f"Invalid redirect_port: {self.redirect_port}. Must be 1-65535.")

        if not (self.well_known_prefix.startswith("/") and self.well_known_prefix.endswith("/")):
            raise ValueError(f"well_known_prefix must start and end with '/': {self.well_known_prefix!r}")

        for name in ("read_timeout", "write_timeout", "idle_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")

        if self.shutdown_timeout < 0:
            raise ValueError("shutdown_timeout must be >= 0")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.max_request_size < self.buffer_size:
            raise ValueError("max_request_size must be >= buffer_size")

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log_level: {self.log_level!r}")

        if not Path(self.doc_root).is_dir():
            raise ValueError(f"Document root is not a directory: {self.doc_root}")


def _env_port(env: Mapping[str, str], name: str) -> Optional[int]:
    """A port from the environment; None when unset, ValueError when unusable."""
    value = env.get(name)
    if value is None:
        return None

    value = value.strip()
    if not value.isdigit():
        raise ValueError(f"{name} must be a port number, got {value!r}")

    port = int(value)
    if port > 65535:
        raise ValueError(f"{name} out of range: {port}")
    return port


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be a whole number, got {value!r}") from None


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None:
        return default
    if value.strip().lower() in _TRUE:
        return True
    if value.strip().lower() in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")
