"""
=============================================================================
TLS CONFIGURATION
=============================================================================

The TLS listener's hardening policy, the ssl.SSLContext built from it, and
the store that swaps in a fresh context when the certificate is renewed.

=============================================================================
THE POLICY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        TLSPolicy (frozen)                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   minimum version   TLS 1.2       (1.0 / 1.1 handshakes fail)       │
    │                                                                      │
    │   cipher suites     ECDHE-ECDSA-AES256-GCM-SHA384                   │
    │   (TLS 1.2 only)    ECDHE-RSA-AES256-GCM-SHA384                     │
    │                     ECDHE-ECDSA-CHACHA20-POLY1305                   │
    │                     ECDHE-RSA-CHACHA20-POLY1305                     │
    │                     ECDHE-ECDSA-AES128-GCM-SHA256                   │
    │                     ECDHE-RSA-AES128-GCM-SHA256                     │
    │                                                                      │
    │                     all forward secret (ECDHE), all AEAD            │
    │                                                                      │
    │   curves            P-256, X25519                                   │
    │   ALPN              h2, http/1.1                                    │
    │   server chooses    yes (OP_CIPHER_SERVER_PREFERENCE)              │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

TLS 1.3 suites are fixed by the protocol (all AEAD, all forward secret), so
the cipher list only matters for TLS 1.2 handshakes.

Two parts of the policy meet limits of the platform:

    ALPN    The context only advertises protocols the HTTP engine speaks.
            This engine speaks HTTP/1.1, so "h2" is filtered out; offering
            it would make HTTP/2 clients send frames we cannot parse.

    curves  Python's ssl module sets exactly one ECDH curve, so the first
            (P-256) is pinned.

=============================================================================
CERTIFICATE RENEWAL
=============================================================================

An external process (certbot, an ACME sidecar) rewrites the certificate and
key files in place. CertificateStore notices changed modification times and
builds a new context for the next handshakes; connections already
established keep the context they started with.

    files unchanged         → current context
    files changed, load OK  → new context, logged at INFO
    files changed, load bad → ERROR logged, previous context stays in use

A half-written renewal must never take the TLS listener down.

=============================================================================
"""

import os
import ssl
import time
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TLSPolicy:
    """
    Immutable TLS hardening policy, shared by every handshake.

    Cipher and curve names are OpenSSL names, in preference order.
    """

    minimum_version: ssl.TLSVersion
    cipher_suites: Tuple[str, ...]
    curves: Tuple[str, ...]
    alpn_protocols: Tuple[str, ...]
    prefer_server_ciphers: bool


def build_tls_policy() -> TLSPolicy:
    """Return the front door's hardened TLS policy."""
    return TLSPolicy(
        minimum_version=ssl.TLSVersion.TLSv1_2,
        cipher_suites=(
            "ECDHE-ECDSA-AES256-GCM-SHA384",
            "ECDHE-RSA-AES256-GCM-SHA384",
            "ECDHE-ECDSA-CHACHA20-POLY1305",
            "ECDHE-RSA-CHACHA20-POLY1305",
            "ECDHE-ECDSA-AES128-GCM-SHA256",
            "ECDHE-RSA-AES128-GCM-SHA256",
        ),
        curves=("prime256v1", "X25519"),   # P-256 first
        alpn_protocols=("h2", "http/1.1"),
        prefer_server_ciphers=True,
    )


# What frontdoor.server can actually speak after the handshake
SUPPORTED_PROTOCOLS = ("http/1.1",)


def create_ssl_context(
    certfile: str,
    keyfile: str,
    policy: Optional[TLSPolicy] = None,
    supported_protocols: Sequence[str] = SUPPORTED_PROTOCOLS,
) -> ssl.SSLContext:
    """
    Build a server-side SSLContext from a policy and load the certificate.

    Raises:
        FileNotFoundError: certfile or keyfile does not exist.
        ssl.SSLError: The files are not a valid PEM chain/key pair, or the
                      local OpenSSL rejects part of the policy.
    """
    policy = policy or build_tls_policy()

    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.minimum_version = policy.minimum_version
    context.set_ciphers(":".join(policy.cipher_suites))

    # create_default_context() already sets server preference; clear it when
    # the policy asks for client order
    if policy.prefer_server_ciphers:
        context.options |= ssl.OP_CIPHER_SERVER_PREFERENCE
    else:
        context.options &= ~ssl.OP_CIPHER_SERVER_PREFERENCE
    context.options |= ssl.OP_NO_COMPRESSION

    if policy.curves:
        context.set_ecdh_curve(policy.curves[0])

    alpn = [p for p in policy.alpn_protocols if p in supported_protocols]
    if alpn:
        context.set_alpn_protocols(alpn)

    context.load_cert_chain(certfile=certfile, keyfile=keyfile)
    return context


class CertificateStore:
    """
    Holds the TLS listener's current SSLContext and reloads it when the
    certificate files change on disk.

        store = CertificateStore("fullchain.pem", "privkey.pem")
        context = store.get_context()   # per connection
    """

    def __init__(
        self,
        certfile: str,
        keyfile: str,
        policy: Optional[TLSPolicy] = None,
        check_interval: float = 5.0,
    ):
        """
        Loads the certificate immediately; failures propagate (fatal at
        startup).

        Args:
            check_interval: Minimum seconds between checks of the files'
                            modification times.
        """
        self.certfile = certfile
        self.keyfile = keyfile
        self.policy = policy or build_tls_policy()
        self.check_interval = check_interval

        self._lock = threading.Lock()
        self._mtimes = self._read_mtimes()
        self._context = create_ssl_context(certfile, keyfile, self.policy)
        self._last_check = time.monotonic()

        logger.info(f"Loaded TLS certificate {certfile}")

    def _read_mtimes(self) -> Tuple[int, int]:
        return (
            os.stat(self.certfile).st_mtime_ns,
            os.stat(self.keyfile).st_mtime_ns,
        )

    def get_context(self) -> ssl.SSLContext:
        """The context to use for a new connection."""
        now = time.monotonic()
        if now - self._last_check >= self.check_interval:
            with self._lock:
                if now - self._last_check >= self.check_interval:
                    self._last_check = now
                    self._reload_if_changed()
        return self._context

    def reload(self) -> bool:
        """
        Check the files now, regardless of check_interval.

        Returns:
            True if a new context was installed.
        """
        with self._lock:
            self._last_check = time.monotonic()
            return self._reload_if_changed()

    def _reload_if_changed(self) -> bool:
        try:
            mtimes = self._read_mtimes()
        except OSError as e:
            logger.error(f"Cannot stat TLS certificate files, keeping current certificate: {e}")
            return False

        if mtimes == self._mtimes:
            return False

        # Remembered even on failure: retry when the files change again,
        # not on every handshake
        self._mtimes = mtimes

        try:
            context = create_ssl_context(self.certfile, self.keyfile, self.policy)
        except (OSError, ssl.SSLError) as e:
            logger.error(f"Reloading TLS certificate failed, keeping current certificate: {e}")
            return False

        self._context = context
        logger.info(f"Reloaded TLS certificate {self.certfile}")
        return True
