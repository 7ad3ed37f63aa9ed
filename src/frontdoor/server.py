"""
=============================================================================
HTTP LISTENER
=============================================================================

One listening endpoint of the front door. The plaintext and the TLS
listener are the same class; they differ only in their handler and in
whether a certificate store is attached.

=============================================================================
ARCHITECTURE OVERVIEW
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         HTTPServer                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    ┌──────────────┐   client    ┌──────────────┐                    │
    │    │ SocketServer │ ──socket──► │  ThreadPool  │                    │
    │    │ (accept loop)│             │ (1 task per  │                    │
    │    └──────────────┘             │  connection) │                    │
    │                                 └──────┬───────┘                    │
    │                                        │                            │
    │                                        ▼                            │
    │                      ┌───────────────────────────────────┐          │
    │                      │ Connection                        │          │
    │                      │   [TLS handshake: CertificateStore]│         │
    │                      │   read → parse → handler → write  │          │
    │                      │   idle? ──► KeepAliveMonitor ──┐  │          │
    │                      │   ◄── readable again ──────────┘  │          │
    │                      └───────────────────────────────────┘          │
    │                                        │                            │
    │                                        ▼                            │
    │                      handler = middleware.wrap(router.handle)        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SHUTDOWN
=============================================================================

close() may run on any thread while serve_forever() runs on another:

    1. Mark the listener closing
    2. Close the listening socket         serve_forever() raises ServerClosed
    3. Close the keep-alive monitor       parked idle connections are closed;
       and interrupt KEEP_ALIVE ones      they sit between requests, nothing
       still held by a worker             is lost
    4. serve_forever() drains the pool    in-flight requests finish (bounded
       for up to shutdown_timeout         by the read/write windows) and are
                                          answered with "Connection: close"

A worker marks its connection KEEP_ALIVE before it checks the closing flag,
and close() sets the flag before it looks for KEEP_ALIVE connections. Either
the worker sees the flag, or close() sees the connection; no connection can
slip into an idle wait after shutdown began. A connection parked after the
monitor closed is refused by park() and closed by its worker.

=============================================================================
"""

import ssl
import socket
import logging
import threading
from typing import Callable, Dict, Optional, Tuple

from .config import FrontDoorConfig
from .core import SocketServer, Connection, ConnectionState, KeepAliveMonitor, ThreadPool
from .http import (
    HTTPRequest, RequestParser, HTTPParseError,
    HTTPResponse, HTTPStatus, error_response, internal_error,
)
from .tls import CertificateStore


logger = logging.getLogger(__name__)


RequestHandler = Callable[[HTTPRequest], HTTPResponse]


class HTTPServer:
    """
    An HTTP/1.1 listener, optionally terminating TLS.

    Usage:
        server = HTTPServer(router.handle, config, port=8000, name="http")
        server.bind()                 # optional: fail fast / learn the port
        try:
            server.serve_forever()    # blocks
        except ServerClosed:
            pass

        # From another thread:
        server.close()
    """

    def __init__(
        self,
        handler: RequestHandler,
        config: FrontDoorConfig,
        port: int,
        name: str = "http",
        tls: Optional[CertificateStore] = None,
    ):
        """
        Args:
            handler: Called with every parsed request (a Router, usually
                     wrapped in a MiddlewarePipeline).
            config: Timeouts, limits and thread counts.
            port: Port to listen on (the config holds two).
            name: Listener name for logs and thread names.
            tls: Certificate store; None for a plaintext listener.
        """
        self.handler = handler
        self.config = config
        self.name = name
        self.tls = tls

        self._socket_server = SocketServer(
            config.host, port, backlog=config.backlog, name=name,
        )
        self._thread_pool = ThreadPool(
            min_workers=config.min_workers,
            max_workers=config.max_workers,
            name=name,
        )
        self._keep_alive = KeepAliveMonitor(self._resume, name=name)
        self._parser = RequestParser(max_request_size=config.max_request_size)

        # ─────────────────────────────────────────────────────────────────
        # RUNTIME STATE
        # ─────────────────────────────────────────────────────────────────
        self._lock = threading.Lock()
        self._closing = False
        self._connections: Dict[str, Connection] = {}

    @property
    def scheme(self) -> str:
        return "https" if self.tls is not None else "http"

    @property
    def address(self) -> Tuple[str, int]:
        return self._socket_server.address

    @property
    def is_closing(self) -> bool:
        return self._closing

    @property
    def active_connections(self) -> int:
        with self._lock:
            return len(self._connections)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def bind(self) -> Tuple[str, int]:
        """Bind the listening socket now. Returns the bound address."""
        return self._socket_server.bind()

    def serve_forever(self) -> None:
        """
        Accept and serve connections until close() is called.

        Raises:
            ServerClosed: close() was called (the normal way out).
            OSError: The listener failed (bind or accept error).
        """
        self.bind()
        self._thread_pool.start()
        self._keep_alive.start()
        logger.info(f"[{self.name}] Serving {self.scheme} on {self.address[0]}:{self.address[1]}")

        try:
            self._socket_server.serve_forever(self._dispatch)
        finally:
            # Also reached when the listener failed on its own
            self.close()
            self._keep_alive.join(self.config.shutdown_timeout)
            drained = self._thread_pool.shutdown(wait=True, timeout=self.config.shutdown_timeout)
            if not drained:
                logger.warning(
                    f"[{self.name}] {self.active_connections} connections still open "
                    f"after {self.config.shutdown_timeout}s"
                )
            logger.info(f"[{self.name}] Stopped")

    def close(self) -> None:
        """
        Stop accepting connections and wind down the open ones. Idempotent,
        callable from any thread.
        """
        with self._lock:
            if self._closing:
                return
            self._closing = True
            idle = [conn for conn in self._connections.values() if conn.is_idle]

        self._socket_server.close()
        self._keep_alive.close()

        for conn in idle:
            conn.interrupt()

        if idle:
            logger.debug(f"[{self.name}] Interrupted {len(idle)} idle connections")

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _dispatch(self, client_socket: socket.socket, address: Tuple[str, int]) -> None:
        """Runs on the accept thread: wrap the socket and queue it."""
        conn = Connection(
            socket=client_socket,
            address=address,
            buffer_size=self.config.buffer_size,
            read_timeout=self.config.read_timeout,
            write_timeout=self.config.write_timeout,
            idle_timeout=self.config.idle_timeout,
            max_request_size=self.config.max_request_size,
        )

        if self._thread_pool.submit(self._process_connection, args=(conn,)):
            return

        logger.warning(f"[{self.name}] Thread pool full, rejecting {conn.client_ip}")
        if self.tls is None:
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE)
        conn.close()

    def _process_connection(self, conn: Connection, resumed: bool = False) -> None:
        """
        Serve a connection until it closes or goes idle (runs in a worker
        thread). Idle connections are parked in the keep-alive monitor,
        which resubmits them here with resumed=True.
        """
        with self._lock:
            self._connections[conn.id] = conn

        park = False
        try:
            if not resumed:
                conn.start_read_window()
                if self.tls is not None and not self._start_tls(conn):
                    return
            park = self._serve_requests(conn)
        except Exception as e:
            logger.exception(f"[{self.name}] [{conn.id}] Connection error: {e}")
        finally:
            with self._lock:
                self._connections.pop(conn.id, None)
            if not (park and self._keep_alive.park(conn)):
                conn.close()

    def _resume(self, conn: Connection) -> None:
        """Runs on the keep-alive monitor thread: the idle client spoke."""
        if self._thread_pool.submit(self._process_connection, args=(conn, True)):
            return

        logger.warning(f"[{self.name}] Thread pool full, dropping idle connection from {conn.client_ip}")
        conn.close(drain=False)

    def _start_tls(self, conn: Connection) -> bool:
        try:
            conn.start_tls(self.tls.get_context())
        except (ssl.SSLError, TimeoutError, OSError) as e:
            # Scanners, old clients and dropped connections; never fatal
            logger.info(f"[{self.name}] [{conn.id}] TLS handshake with {conn.client_ip} failed: {e}")
            return False
        return True

    def _serve_requests(self, conn: Connection) -> bool:
        """
        The keep-alive loop.

            read → parse → handler → write → (pipelined? read again : park or stop)

        Returns:
            True when the connection is idle and should be parked, False
            when it should be closed.
        """
        while True:
            # ─────────────────────────────────────────────────────────────
            # READ REQUEST
            # ─────────────────────────────────────────────────────────────
            try:
                raw_request = conn.read_request()
            except TimeoutError:
                logger.info(f"[{self.name}] [{conn.id}] Read timeout from {conn.client_ip}")
                self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT)
                return False
            except ValueError as e:
                logger.info(f"[{self.name}] [{conn.id}] {e}")
                self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE)
                return False

            if raw_request is None:
                return False  # Client closed, or idle window over

            # ─────────────────────────────────────────────────────────────
            # PARSE REQUEST
            # ─────────────────────────────────────────────────────────────
            try:
                request = self._parser.parse(raw_request, conn.address, self.scheme)
            except HTTPParseError as e:
                logger.info(f"[{self.name}] [{conn.id}] Bad request from {conn.client_ip}: {e}")
                self._send_error(conn, HTTPStatus(e.status_code))
                return False

            # ─────────────────────────────────────────────────────────────
            # PROCESS REQUEST (middleware + router)
            # ─────────────────────────────────────────────────────────────
            conn.state = ConnectionState.PROCESSING
            try:
                response = self.handler(request)
            except Exception as e:
                logger.exception(f"[{self.name}] [{conn.id}] Handler error: {e}")
                response = internal_error()

            # ─────────────────────────────────────────────────────────────
            # CONNECTION HEADERS
            # ─────────────────────────────────────────────────────────────
            keep_alive = (
                request.is_keep_alive
                and not self._closing
                and response.headers.get("Connection", "").lower() != "close"
            )
            if keep_alive:
                response.headers.setdefault("Connection", "keep-alive")
                response.headers.setdefault("Keep-Alive", f"timeout={int(self.config.idle_timeout)}")
            else:
                response.headers["Connection"] = "close"

            # ─────────────────────────────────────────────────────────────
            # SEND RESPONSE
            # ─────────────────────────────────────────────────────────────
            response_bytes = response.to_bytes(
                self.config.server_name,
                include_body=request.method != "HEAD",
            )
            if not conn.send_response(response_bytes) or not keep_alive:
                return False

            # Order matters: see SHUTDOWN in the module docstring
            conn.set_keep_alive()
            if self._closing:
                return False

            # Pipelined requests are already here; anything else waits parked
            if not conn.has_buffered_data:
                return True

    def _send_error(self, conn: Connection, status: HTTPStatus) -> None:
        """Answer a request that never reached the handler, then close."""
        response = error_response(status)
        response.headers["Connection"] = "close"
        conn.send_response(response.to_bytes(self.config.server_name))

