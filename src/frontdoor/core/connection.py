"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket (plain TCP or TLS) with the buffered,
deadline-bounded reads and writes an HTTP/1.x exchange needs.

=============================================================================
THREE WINDOWS, NOT ONE TIMEOUT
=============================================================================

A slow client must not be able to pin a worker thread forever. Every phase of
a connection therefore runs against its own window:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     CONNECTION TIME WINDOWS                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   worker ──► TLS handshake ──► request 1 read ──► response 1 write  │
    │   └──────── read window (5s) ────────┘            └─ write (10s) ─┘ │
    │                                                                      │
    │   ──► wait for first byte of request 2 ──► request 2 read ──► ...   │
    │       └──────── idle window (120s) ───┘   └─ read (5s) ─┘           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The read window is a DEADLINE over the whole request, not a per-recv()
timeout: a client that trickles one byte every four seconds still runs out
of time after five. Running out of the idle window is normal (the client
simply has nothing more to ask) and ends the connection quietly; running out
of the read window is an error answered with 408.

The idle window is normally spent parked in the listener's KeepAliveMonitor,
not in a worker: see core/keep_alive.py.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► HANDSHAKE ──► READING ──► PROCESSING ──► WRITING ──► KEEP_ALIVE
     │         │            │                           │            │
     │         │            │                           │            │
     │         │            │          ◄────────────────┼────────────┘
     ▼         ▼            ▼                           ▼      (next request)
     └──────► CLOSING ◄─────┴───────────────────────────┘
                 │
                 ▼
               CLOSED

Only connections in KEEP_ALIVE are safe to interrupt during shutdown: they
sit between requests, so cutting them off loses nothing.

=============================================================================
"""

import socket
import ssl
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)

# Upper bound on reading leftovers while closing, however the client trickles
DRAIN_TIMEOUT = 0.5


class ConnectionState(Enum):
    """Connection lifecycle states."""
    NEW = "new"              # Just accepted
    HANDSHAKE = "handshake"  # TLS handshake in progress
    READING = "reading"      # Reading request data
    PROCESSING = "processing"  # Handler is executing
    WRITING = "writing"      # Sending response data
    KEEP_ALIVE = "keep_alive"  # Between requests, waiting for the next one
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    Represents a client connection.

    Attributes:
        socket: The client socket (replaced by an SSLSocket after start_tls).
        address: Client's (ip, port) tuple.
        id: Short connection identifier for logs.
        state: Current connection state.
        requests_handled: Number of requests read on this connection.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    # Configuration (passed from FrontDoorConfig)
    buffer_size: int = 8192
    read_timeout: float = 5.0
    write_timeout: float = 10.0
    idle_timeout: float = 120.0
    max_request_size: int = 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)
    _read_deadline: float = field(default=0.0, repr=False)
    _data_waiting: bool = field(default=False, repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        self.start_read_window()

    def start_read_window(self) -> None:
        """
        Start the first request's read window, which also covers the TLS
        handshake. Called again when a worker picks the connection up, so
        time spent queued for a worker is not charged to the client.
        """
        self._read_deadline = time.monotonic() + self.read_timeout

    def resume(self) -> None:
        """Note that the idle socket became readable while parked."""
        self._data_waiting = True

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def is_tls(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    @property
    def is_idle(self) -> bool:
        """True while the connection waits between requests."""
        return self.state == ConnectionState.KEEP_ALIVE

    @property
    def has_buffered_data(self) -> bool:
        """
        True when the next request is already in memory: pipelined bytes in
        our buffer, or decrypted bytes inside the SSL object. A selector
        cannot see either.
        """
        if self._buffer:
            return True
        return self.is_tls and self.socket.pending() > 0

    # =========================================================================
    # TLS
    # =========================================================================

    def start_tls(self, context: ssl.SSLContext) -> None:
        """
        Wrap the socket in TLS and run the server-side handshake.

        The handshake is bounded by the first request's read window, so a
        client that connects and never says hello is dropped on schedule.

        Raises:
            ssl.SSLError: Handshake rejected (protocol, cipher, garbage).
            TimeoutError: The read window expired mid-handshake.
            OSError: The client went away.
        """
        self.state = ConnectionState.HANDSHAKE
        tls_socket = context.wrap_socket(
            self.socket,
            server_side=True,
            do_handshake_on_connect=False,
        )
        self.socket = tls_socket

        tls_socket.settimeout(self._remaining_read_time())
        tls_socket.do_handshake()
        self.last_activity = time.time()

        logger.debug(
            f"[{self.id}] TLS established: {tls_socket.version()} "
            f"{(tls_socket.cipher() or ('?',))[0]} alpn={tls_socket.selected_alpn_protocol()}"
        )

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request from the socket.

        For the first request the read window is already running (it started
        when a worker picked the connection up). For later requests the
        connection first waits up to the idle window for a byte to arrive
        (unless resume() says one is there), then gives the rest of the
        request a fresh read window.

        Returns:
            Complete HTTP request bytes, or None when the client closed the
            connection or stayed idle too long.

        Raises:
            TimeoutError: The read window expired mid-request.
            ValueError: The request exceeds max_request_size.
        """
        if self.requests_handled > 0 and not self._buffer:
            if self._data_waiting:
                # Parked until readable; the idle window is already spent
                self._data_waiting = False
            elif not self._wait_for_next_request():
                return None
            self._read_deadline = time.monotonic() + self.read_timeout

        self.state = ConnectionState.READING

        # ─────────────────────────────────────────────────────────────────
        # STEP 1: Read until the header terminator
        # ─────────────────────────────────────────────────────────────────
        while b"\r\n\r\n" not in self._buffer:
            chunk = self._recv_before_deadline()
            if not chunk:
                if self._buffer:
                    logger.debug(f"[{self.id}] Client closed mid-request")
                return None

            self._buffer += chunk
            if len(self._buffer) > self.max_request_size:
                raise ValueError(f"Request too large: {len(self._buffer)} bytes")

        header_end = self._buffer.find(b"\r\n\r\n")
        body_start = header_end + 4

        # ─────────────────────────────────────────────────────────────────
        # STEP 2: Read the body announced by Content-Length
        # ─────────────────────────────────────────────────────────────────
        content_length = self._parse_content_length(self._buffer[:header_end])
        if body_start + content_length > self.max_request_size:
            raise ValueError(f"Request too large: {body_start + content_length} bytes")

        while len(self._buffer) - body_start < content_length:
            chunk = self._recv_before_deadline()
            if not chunk:
                break  # The parser reports the short body
            self._buffer += chunk

        # ─────────────────────────────────────────────────────────────────
        # STEP 3: Hand out one request, keep pipelined leftovers
        # ─────────────────────────────────────────────────────────────────
        request_end = body_start + content_length
        request_data = self._buffer[:request_end]
        self._buffer = self._buffer[request_end:]

        self.requests_handled += 1
        self.last_activity = time.time()
        return request_data

    def _wait_for_next_request(self) -> bool:
        """
        Block for up to the idle window waiting for the next request.

        Returns:
            True once data is buffered, False on idle timeout or close.
        """
        self.state = ConnectionState.KEEP_ALIVE
        try:
            self.socket.settimeout(self.idle_timeout)
            chunk = self._recv()
        except socket.timeout:
            logger.debug(f"[{self.id}] Idle timeout after {self.requests_handled} requests")
            return False

        if not chunk:
            return False
        self._buffer += chunk
        return True

    def _remaining_read_time(self) -> float:
        remaining = self._read_deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("Request read timeout")
        return remaining

    def _recv_before_deadline(self) -> bytes:
        self.socket.settimeout(self._remaining_read_time())
        try:
            return self._recv()
        except socket.timeout:
            raise TimeoutError("Request read timeout") from None

    def _recv(self) -> bytes:
        """
        socket.recv() that maps an abrupt disconnect to end-of-stream.

        Timeouts propagate; callers decide whether they are errors.
        """
        try:
            data = self.socket.recv(self.buffer_size)
        except socket.timeout:
            raise
        except (ConnectionError, ssl.SSLError):
            return b""
        except OSError as e:
            # Interrupted by shutdown() from another thread
            logger.debug(f"[{self.id}] Receive failed: {e}")
            return b""
        self.last_activity = time.time()
        return data

    def _parse_content_length(self, headers: bytes) -> int:
        """
        Find Content-Length in raw header bytes.

        Malformed values count as 0 here; RequestParser rejects them with a
        proper 400 once the headers are parsed.
        """
        for line in headers.decode("latin-1").lower().split("\r\n"):
            if line.startswith("content-length:"):
                value = line.split(":", 1)[1].strip()
                return int(value) if value.isdigit() else 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """
        Send response bytes within the write window.

        Returns:
            True if everything was sent, False if the client went away or
            was too slow to take the response.
        """
        self.state = ConnectionState.WRITING
        try:
            # sendall() treats the timeout as a bound on the whole call
            self.socket.settimeout(self.write_timeout)
            self.socket.sendall(data)
        except socket.timeout:
            logger.info(f"[{self.id}] Write timeout to {self.client_ip}")
            return False
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

        self.last_activity = time.time()
        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def set_keep_alive(self):
        """Mark the connection idle (ready for the next request)."""
        self.state = ConnectionState.KEEP_ALIVE

    def interrupt(self) -> None:
        """
        Wake a thread blocked reading this connection.

        Used by shutdown for connections sitting in KEEP_ALIVE. The base
        socket.shutdown is called even for TLS sockets: SSLSocket.shutdown
        would also tear down the TLS object under the reading thread.
        """
        try:
            socket.socket.shutdown(self.socket, socket.SHUT_RDWR)
        except OSError:
            pass  # Already gone

    def close(self, drain: bool = True):
        """
        Close the connection: send FIN, drain briefly, release the socket.

        Args:
            drain: Read what the client still sends for up to
                   DRAIN_TIMEOUT seconds in total, so unread request bytes
                   do not turn the FIN into a reset. Skipped for idle
                   connections, which have nothing in flight.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # Already disconnected

        if drain:
            self._drain()

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def _drain(self) -> None:
        """Discard incoming bytes until EOF or DRAIN_TIMEOUT, whichever is first."""
        deadline = time.monotonic() + DRAIN_TIMEOUT
        try:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return
                self.socket.settimeout(remaining)
                if not self.socket.recv(1024):
                    return
        except OSError:
            pass  # Timed out, reset, or already shut down

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
