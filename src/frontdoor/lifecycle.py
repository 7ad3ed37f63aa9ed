"""
=============================================================================
LIFECYCLE CONTROLLER
=============================================================================

Runs both listeners side by side and stops them together.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     LifecycleController                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   thread "http"   ── server.serve_forever() ──┐                     │
    │                                               │ error?              │
    │   thread "https"  ── server.serve_forever() ──┤   → record it,      │
    │                                               │     signal.cancel() │
    │                                               ▼                     │
    │                                   ┌──────────────────────┐          │
    │   SIGINT / SIGTERM ─────────────► │  CancellationSignal  │          │
    │   (wired in __main__)             └──────────┬───────────┘          │
    │                                              │                      │
    │   thread "watcher" ── signal.wait() ─────────┘                      │
    │                       then close() every server                     │
    │                       → their loops raise ServerClosed              │
    │                                                                      │
    │   wait() ── joins the server threads, returns the first real error │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

ServerClosed is how a listener reports "I was asked to stop". It is never
an error and never the value wait() returns. Anything else a listener raises
(a bind failure, an accept failure) is an error: it takes the other listener
down with it and becomes the controller's result.

Once every server thread has finished, wait() cancels the signal itself so
the watcher is always released, even when nobody else ever cancels it.

=============================================================================
"""

import time
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from .core import ServerClosed


logger = logging.getLogger(__name__)


# =============================================================================
# CANCELLATION SIGNAL
# =============================================================================

class CancellationSignal(ABC):
    """
    Something that can be cancelled once and waited on by many threads.
    """

    @abstractmethod
    def cancel(self, reason: str = "") -> bool:
        """
        Cancel the signal.

        Returns:
            True for the call that cancelled it, False for every later one.
        """

    @abstractmethod
    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until cancelled. Returns False on timeout."""

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...

    @property
    @abstractmethod
    def reason(self) -> str:
        ...


class ShutdownSignal(CancellationSignal):
    """
    One-shot cancellation signal over a threading.Event.

        signal = ShutdownSignal()
        signal.cancel("SIGTERM")
        signal.cancel("again")   # no-op, returns False
        signal.reason            # "SIGTERM"
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason = ""

    def cancel(self, reason: str = "") -> bool:
        with self._lock:
            if self._event.is_set():
                return False
            self._reason = reason
            self._event.set()

        logger.debug(f"Shutdown requested: {reason or 'no reason given'}")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason


# =============================================================================
# CONTROLLER
# =============================================================================

class LifecycleController:
    """
    Starts every server in its own thread and closes them all when the
    signal is cancelled or any of them fails.

    Usage:
        controller = LifecycleController([http_server, https_server])
        error = controller.run()       # blocks
        sys.exit(1 if error else 0)

    Each server needs serve_forever() (raising ServerClosed once closed),
    close() (idempotent, any thread) and a name.
    """

    def __init__(self, servers: Sequence, signal: Optional[CancellationSignal] = None):
        if not servers:
            raise ValueError("LifecycleController needs at least one server")

        self.servers = list(servers)
        self.signal = signal or ShutdownSignal()

        self._threads: List[threading.Thread] = []
        self._watcher: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._error: Optional[BaseException] = None
        self._started = False

    @property
    def error(self) -> Optional[BaseException]:
        """The first error a server failed with, if any."""
        return self._error

    def start(self) -> None:
        """Start the server threads and the watcher. Returns immediately."""
        if self._started:
            raise RuntimeError("LifecycleController already started")
        self._started = True

        self._watcher = threading.Thread(
            target=self._watch, name="lifecycle-watcher", daemon=True,
        )
        self._watcher.start()

        for server in self.servers:
            thread = threading.Thread(
                target=self._run_server,
                args=(server,),
                name=f"{server.name}-listener",
                daemon=True,
            )
            self._threads.append(thread)
            thread.start()

    def wait(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        """
        Block until every server has stopped.

        Returns:
            The first error a server failed with, or None after a clean
            shutdown.

        Raises:
            TimeoutError: The servers were still running after `timeout`.
        """
        if not self._started:
            raise RuntimeError("LifecycleController not started")

        deadline = None if timeout is None else time.monotonic() + timeout

        for thread in self._threads:
            thread.join(None if deadline is None else max(0.0, deadline - time.monotonic()))
            if thread.is_alive():
                raise TimeoutError(f"{thread.name} still running after {timeout}s")

        # Release the watcher when the servers ended on their own
        self.signal.cancel("all servers stopped")
        if self._watcher is not None:
            self._watcher.join(None if deadline is None else max(0.0, deadline - time.monotonic()))

        return self._error

    def run(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        """start() + wait()."""
        self.start()
        return self.wait(timeout)

    # ─────────────────────────────────────────────────────────────────────
    # THREAD BODIES
    # ─────────────────────────────────────────────────────────────────────

    def _run_server(self, server) -> None:
        try:
            server.serve_forever()
        except ServerClosed:
            logger.debug(f"[{server.name}] Closed")
        except Exception as e:
            with self._lock:
                first = self._error is None
                if first:
                    self._error = e
            if first:
                logger.error(f"[{server.name}] Listener failed: {e}")
            self.signal.cancel(f"{server.name} failed: {e}")
        else:
            # serve_forever() only returns by raising
            logger.warning(f"[{server.name}] Stopped without being closed")
            self.signal.cancel(f"{server.name} stopped")

    def _watch(self) -> None:
        self.signal.wait()
        logger.info(f"Shutting down: {self.signal.reason}")

        for server in self.servers:
            try:
                server.close()
            except Exception:
                logger.exception(f"[{server.name}] Error while closing")
