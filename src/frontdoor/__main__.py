"""
=============================================================================
FRONTDOOR CLI ENTRY POINT
=============================================================================

    # Defaults: 0.0.0.0:8000 (plaintext) and 0.0.0.0:4443 (TLS)
    python -m frontdoor

    # Local development with a self-signed certificate
    frontdoor --host 127.0.0.1 --https-port 8443 --redirect-port 8443 \\
              --cert dev.pem --key dev-key.pem --log-level DEBUG

Configuration is read from the environment first (FRONTDOOR_*, PORT), then
overridden by any command-line argument given.

=============================================================================
EXIT CODES
=============================================================================

    0   clean shutdown (SIGINT / SIGTERM)
    1   anything else: bad configuration, unreadable certificate, a port
        already in use, a listener that failed while running

=============================================================================
"""

import argparse
import logging
import signal
import ssl
import sys
from typing import List, Optional

from . import __version__
from .app import create_servers
from .config import FrontDoorConfig, LOG_LEVELS
from .lifecycle import LifecycleController, ShutdownSignal


logger = logging.getLogger("frontdoor")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="frontdoor",
        description="Static file server with HTTPS redirects and hardened TLS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  frontdoor                                   # Run with defaults
  frontdoor --root /srv/www                   # Serve another directory
  frontdoor --https-port 8443 --redirect-port 8443
        """,
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Address both listeners bind to (default: 0.0.0.0)")
    parser.add_argument("--http-port", type=int, help="Plaintext port (default: $PORT or 8000)")
    parser.add_argument("--https-port", type=int, help="TLS port (default: 4443)")
    parser.add_argument(
        "--redirect-port",
        type=int,
        help="Port written into redirect URLs (default: none, i.e. 443)",
    )
    parser.add_argument("--public-host", help="Redirect host for requests without a Host header")

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT AND TLS ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--root", "-r", help="Document root (default: public)")
    parser.add_argument("--cert", help="PEM certificate chain (default: fullchain.pem)")
    parser.add_argument("--key", help="PEM private key (default: privkey.pem)")
    parser.add_argument(
        "--well-known-prefix",
        help="Path prefix served over plaintext (default: /.well-known/)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING / META ARGUMENTS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--log-level", "-l", choices=LOG_LEVELS, type=str.upper, help="Logging level (default: INFO)")
    parser.add_argument("--no-access-log", action="store_true", help="Do not log every request")
    parser.add_argument("--version", "-v", action="version", version=f"frontdoor {__version__}")

    return parser


def build_config(args: argparse.Namespace, environ=None) -> FrontDoorConfig:
    """Environment first, then command-line overrides."""
    config = FrontDoorConfig.from_env(environ)

    overrides = {
        "host": args.host,
        "http_port": args.http_port,
        "https_port": args.https_port,
        "redirect_port": args.redirect_port,
        "public_host": args.public_host,
        "doc_root": args.root,
        "certfile": args.cert,
        "keyfile": args.key,
        "well_known_prefix": args.well_known_prefix,
        "log_level": args.log_level,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(config, name, value)

    if args.no_access_log:
        config.access_log = False

    return config


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def install_signal_handlers(shutdown: ShutdownSignal) -> None:
    """SIGINT and SIGTERM cancel the shutdown signal."""
    def handle(signum, frame):
        shutdown.cancel(signal.Signals(signum).name)

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the front door until it is told to stop.

    Returns:
        The process exit code.
    """
    args = build_parser().parse_args(argv)

    # Logging first, so configuration problems are reported like the rest
    setup_logging(args.log_level or "INFO")

    try:
        config = build_config(args)
        logging.getLogger().setLevel(config.log_level.upper())
        servers = create_servers(config)
    except (ValueError, OSError, ssl.SSLError) as e:
        logger.error(f"Startup failed: {e}")
        return 1

    shutdown = ShutdownSignal()
    install_signal_handlers(shutdown)

    controller = LifecycleController(servers, signal=shutdown)
    error = controller.run()

    if error is not None:
        logger.error(f"Stopped with error: {error}")
        return 1

    logger.info("Shut down cleanly")
    return 0


if __name__ == "__main__":
    sys.exit(main())
