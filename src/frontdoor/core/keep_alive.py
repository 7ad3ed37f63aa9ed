"""
=============================================================================
KEEP-ALIVE MONITOR
=============================================================================

Idle keep-alive connections wait here instead of in a worker thread.

A worker that finished a response on a keep-alive connection hands the
connection to the monitor and goes back to the pool. One thread watches
every parked socket in a selector:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        KEEP-ALIVE MONITOR                           │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   worker ── park(conn) ──► pending ──► selector ──┬─► readable      │
    │                              ▲                    │   on_ready(conn)│
    │                   wake-up pair                    │   (back to pool)│
    │                                                   │                  │
    │                                                   └─► idle window   │
    │                                                       over: close   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Without it, every idle client holds a worker for up to the idle window, and
a handful of them exhaust a bounded pool.

Selectors are not thread-safe, so workers never touch the selector: they
append to a pending list and write a byte to the wake-up pair, and the
monitor thread registers the socket itself.

=============================================================================
"""

import time
import socket
import logging
import selectors
import threading
from typing import Callable, Dict, List, Optional, Tuple

from .connection import Connection


logger = logging.getLogger(__name__)


class KeepAliveMonitor:
    """
    Watches idle connections and hands them back when the client speaks.

        monitor = KeepAliveMonitor(on_ready=resubmit, name="http")
        monitor.start()

        # In a worker, after a keep-alive response:
        if not monitor.park(conn):
            conn.close()            # Monitor closed: shutdown in progress

        # On shutdown (closes every parked connection):
        monitor.close()
        monitor.join(timeout=5.0)

    on_ready runs on the monitor thread and must return quickly (submit to
    a pool). It owns the connection from then on.
    """

    def __init__(self, on_ready: Callable[[Connection], None], name: str = "keep-alive"):
        self.on_ready = on_ready
        self.name = name

        self._selector = selectors.DefaultSelector()
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._wake_w.setblocking(False)
        self._selector.register(self._wake_r, selectors.EVENT_READ, None)

        self._lock = threading.Lock()
        self._pending: List[Connection] = []
        self._closed = False
        self._thread: Optional[threading.Thread] = None

        # Only touched by the monitor thread
        self._parked: Dict[str, Tuple[Connection, float]] = {}

    @property
    def parked(self) -> int:
        return len(self._parked)

    def start(self) -> None:
        with self._lock:
            if self._thread is not None or self._closed:
                return
            self._thread = threading.Thread(target=self._run, name=f"{self.name}-keepalive", daemon=True)
        self._thread.start()

    def park(self, conn: Connection) -> bool:
        """
        Hand over an idle connection.

        Returns:
            False if the monitor is closed; the caller keeps the connection
            and must close it.
        """
        with self._lock:
            if self._closed:
                return False
            self._pending.append(conn)

        self._wake()
        return True

    def close(self) -> None:
        """Stop watching and close every parked connection. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            started = self._thread is not None

        if started:
            self._wake()
        else:
            self._release()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _wake(self) -> None:
        try:
            self._wake_w.send(b"\0")
        except OSError:
            pass  # Buffer full (a wake-up is already pending) or closed

    # ─────────────────────────────────────────────────────────────────────
    # MONITOR THREAD
    # ─────────────────────────────────────────────────────────────────────

    def _run(self) -> None:
        try:
            while True:
                for key, _ in self._selector.select(self._next_timeout()):
                    if key.data is None:
                        self._drain_wakeups()
                    else:
                        self._hand_back(key.data)

                with self._lock:
                    closed = self._closed
                    pending, self._pending = self._pending, []

                if closed:
                    for conn in pending:
                        conn.close(drain=False)
                    return

                for conn in pending:
                    self._watch(conn)

                self._expire()
        except Exception:
            logger.exception(f"[{self.name}] Keep-alive monitor failed")
        finally:
            self._release()

    def _watch(self, conn: Connection) -> None:
        try:
            self._selector.register(conn.socket, selectors.EVENT_READ, conn)
        except (ValueError, OSError) as e:
            # Socket already closed under us
            logger.debug(f"[{self.name}] [{conn.id}] Cannot park connection: {e}")
            conn.close(drain=False)
            return
        self._parked[conn.id] = (conn, time.monotonic() + conn.idle_timeout)

    def _hand_back(self, conn: Connection) -> None:
        self._selector.unregister(conn.socket)
        self._parked.pop(conn.id, None)

        conn.resume()
        try:
            self.on_ready(conn)
        except Exception:
            logger.exception(f"[{self.name}] [{conn.id}] Could not resume connection")
            conn.close(drain=False)

    def _expire(self) -> None:
        now = time.monotonic()
        expired = [conn for conn, deadline in self._parked.values() if deadline <= now]

        for conn in expired:
            self._selector.unregister(conn.socket)
            del self._parked[conn.id]
            logger.debug(f"[{self.name}] [{conn.id}] Idle timeout after {conn.requests_handled} requests")
            conn.close(drain=False)

    def _next_timeout(self) -> Optional[float]:
        if not self._parked:
            return None
        nearest = min(deadline for _, deadline in self._parked.values())
        return max(0.0, nearest - time.monotonic())

    def _drain_wakeups(self) -> None:
        try:
            while self._wake_r.recv(1024):
                pass
        except BlockingIOError:
            pass

    def _release(self) -> None:
        """Close every parked or pending connection and the selector."""
        with self._lock:
            self._closed = True
            pending, self._pending = self._pending, []

        connections = [conn for conn, _ in self._parked.values()] + pending
        self._parked.clear()

        for conn in connections:
            conn.close(drain=False)

        if connections:
            logger.debug(f"[{self.name}] Closed {len(connections)} idle connections")

        self._selector.close()
        for wake in (self._wake_r, self._wake_w):
            try:
                wake.close()
            except OSError:
                pass
