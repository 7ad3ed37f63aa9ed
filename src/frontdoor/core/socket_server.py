"""
=============================================================================
LOW-LEVEL TCP LISTENER
=============================================================================

Owns one listening socket: bind, listen, accept, close. Everything above TCP
(TLS, HTTP, threads) belongs to the caller, which receives each accepted
client socket through a callback.

=============================================================================
LISTENER STATE MACHINE
=============================================================================

    CREATED ──► LISTENING ──┬──► CLOSED    close() was called
                            │
                            └──► FAILED    bind/listen/accept error

Both end states are terminal. serve_forever() ends in CLOSED by raising
ServerClosed, the shutdown sentinel; in FAILED by raising the OSError that
caused it.

=============================================================================
WAKING A BLOCKED accept()
=============================================================================

Closing a socket from another thread does not reliably wake a thread blocked
in accept() on it. So the accept loop never blocks in accept(). It blocks in
a selector watching two sockets:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   selector.select()  ◄── blocks, no timeout, no polling             │
    │        │                                                             │
    │        ├── listening socket readable  →  accept() one client        │
    │        │                                                             │
    │        └── wake socket readable       →  close() was called,        │
    │                                          raise ServerClosed          │
    │                                                                      │
    │   close()  ──►  wake_w.send(b"\\0")                                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The listening socket is only ever closed by the thread that runs the loop,
so a file descriptor is never closed underneath a select() call.

=============================================================================
"""

import socket
import selectors
import logging
import threading
from enum import Enum
from typing import Optional, Callable, Tuple


logger = logging.getLogger(__name__)


class ServerClosed(Exception):
    """
    Raised by serve_forever() after close() was called.

    This is the expected way for a listener to stop. It is not an error and
    is never logged as one.
    """


class ListenerState(Enum):
    CREATED = "created"
    LISTENING = "listening"
    CLOSED = "closed"
    FAILED = "failed"


ClientHandler = Callable[[socket.socket, Tuple[str, int]], None]


class SocketServer:
    """
    A TCP listener with an interruptible accept loop.

    Usage:
        def on_client(client_socket, address):
            ...

        listener = SocketServer("0.0.0.0", 8000, name="http")
        try:
            listener.serve_forever(on_client)   # Blocks
        except ServerClosed:
            pass

        # From any other thread:
        listener.close()
    """

    def __init__(self, host: str, port: int, backlog: int = 128, name: str = "listener"):
        self.host = host
        self.port = port
        self.backlog = backlog
        self.name = name

        self._socket: Optional[socket.socket] = None
        self._state = ListenerState.CREATED
        self._lock = threading.Lock()
        self._serving = False

        # close() writes one byte to _wake_w; the accept loop watches _wake_r
        self._wake_r, self._wake_w = socket.socketpair()

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == ListenerState.LISTENING

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port).

        After bind() the port is the real one, which matters when port 0
        asked the OS to pick a free port.
        """
        if self._socket is not None:
            return self._socket.getsockname()[:2]
        return (self.host, self.port)

    def _create_socket(self) -> socket.socket:
        """Create the listening socket with the options an HTTP server wants."""
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)

        # Restarting must not fail on connections lingering in TIME_WAIT
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

        # Responses go out as soon as they are written
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        return sock

    def bind(self) -> Tuple[str, int]:
        """
        Bind and start listening.

        Called by serve_forever() when needed; call it earlier to fail fast
        or to learn an OS-assigned port before serving.

        Returns:
            The bound address.

        Raises:
            ServerClosed: close() was already called.
            OSError: Address in use, permission denied, ...
        """
        with self._lock:
            if self._state in (ListenerState.CLOSED, ListenerState.FAILED):
                raise ServerClosed(f"{self.name} listener is closed")
            if self._socket is not None:
                return self.address

            sock = self._create_socket()
            try:
                sock.bind((self.host, self.port))
                sock.listen(self.backlog)
            except OSError as e:
                sock.close()
                self._state = ListenerState.FAILED
                logger.error(f"[{self.name}] Failed to bind to {self.host}:{self.port}: {e}")
                raise

            # select() decides when to accept; accept() itself must not block
            sock.setblocking(False)
            self._socket = sock
            self._state = ListenerState.LISTENING

        logger.info(f"[{self.name}] Listening on {self.address[0]}:{self.address[1]}")
        return self.address

    def serve_forever(self, client_handler: ClientHandler) -> None:
        """
        Accept connections until close() is called.

        Each accepted client socket is passed to client_handler, which must
        return quickly (hand the socket to a worker pool).

        This method never returns normally.

        Raises:
            ServerClosed: close() was called (the normal way out).
            OSError: The listener failed (bind or accept error).
        """
        self.bind()

        with self._lock:
            if self._state != ListenerState.LISTENING:
                raise ServerClosed(f"{self.name} listener is closed")
            self._serving = True

        selector = selectors.DefaultSelector()
        selector.register(self._socket, selectors.EVENT_READ, "accept")
        selector.register(self._wake_r, selectors.EVENT_READ, "wake")

        try:
            while True:
                for key, _ in selector.select():
                    if key.data == "wake":
                        raise ServerClosed(f"{self.name} listener closed")
                    self._accept_one(client_handler)
        finally:
            selector.close()
            self._cleanup()

    def _accept_one(self, client_handler: ClientHandler) -> None:
        try:
            client_socket, client_address = self._socket.accept()
        except (BlockingIOError, InterruptedError):
            return  # Another wakeup took it, or the client gave up
        except ConnectionAbortedError:
            return
        except OSError as e:
            if self._state == ListenerState.CLOSED:
                raise ServerClosed(f"{self.name} listener closed") from e
            self._state = ListenerState.FAILED
            logger.error(f"[{self.name}] Accept error: {e}")
            raise

        logger.debug(f"[{self.name}] Accepted connection from {client_address[0]}:{client_address[1]}")

        try:
            client_handler(client_socket, client_address)
        except Exception:
            # One bad connection must not take the listener down
            logger.exception(f"[{self.name}] Connection handler failed")
            client_socket.close()

    def close(self) -> None:
        """
        Stop accepting connections. Safe to call any number of times, from
        any thread, before or during serve_forever().
        """
        with self._lock:
            if self._state == ListenerState.CLOSED:
                return
            failed = self._state == ListenerState.FAILED
            if not failed:
                self._state = ListenerState.CLOSED
            serving = self._serving

        if failed:
            # Nothing to stop; only the wake-up pair may still be open
            if not serving:
                self._cleanup()
            return

        if serving:
            try:
                self._wake_w.send(b"\0")
            except OSError:
                pass  # Loop already gone
        else:
            self._cleanup()

        logger.info(f"[{self.name}] Listener closed")

    def _cleanup(self):
        """Release the listening socket and the wake-up pair."""
        with self._lock:
            sock, self._socket = self._socket, None
            self._serving = False

        if sock is not None:
            try:
                sock.close()
            except OSError:
                pass

        for wake in (self._wake_r, self._wake_w):
            try:
                wake.close()
            except OSError:
                pass
