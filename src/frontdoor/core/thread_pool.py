"""
=============================================================================
THREAD POOL
=============================================================================

Each listener owns one pool. Every accepted connection becomes one task, and
a worker keeps that task for the connection's whole life (TLS handshake,
every keep-alive request, close).

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   accept loop ──► submit(handle, conn) ──► [ TASK QUEUE ]           │
    │                                                 │                    │
    │                         ┌───────────────────────┼──────────┐        │
    │                         ▼                       ▼          ▼        │
    │                    ┌──────────┐          ┌──────────┐ ┌──────────┐  │
    │                    │ Worker 0 │          │ Worker 1 │ │ Worker n │  │
    │                    └──────────┘          └──────────┘ └──────────┘  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A task that raises is logged and forgotten; the worker goes back to the
queue. That is what isolates one misbehaving connection from the rest.

SCALING:
    min_workers are started up front. When every worker is busy and tasks
    are waiting, one more worker is added, up to max_workers. A full queue
    makes submit() return False and the caller sheds the connection.

SHUTDOWN:
    shutdown(wait=True, timeout=t) waits up to t seconds for queued AND
    running tasks, then sends each worker a poison pill (None).

=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Callable, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """
    A deferred function call.

    Attributes:
        func: The function to execute.
        args: Positional arguments.
        kwargs: Keyword arguments.
        submitted_at: When the task was queued.
    """
    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """
    Worker thread: take a task, run it, repeat until a poison pill arrives.
    """

    def __init__(self, task_queue: queue.Queue, worker_id: int, name_prefix: str = "Worker",
                 idle_timeout: float = 1.0):
        # Daemon: a wedged connection must not keep the process alive
        super().__init__(name=f"{name_prefix}-{worker_id}", daemon=True)

        self.task_queue = task_queue
        self.worker_id = worker_id
        self.idle_timeout = idle_timeout

        self.state = WorkerState.IDLE
        self._shutdown = threading.Event()

        self.tasks_completed = 0
        self.tasks_failed = 0

    def run(self):
        logger.debug(f"{self.name} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue

            try:
                if task is None:
                    break
                self._execute_task(task)
            finally:
                self.task_queue.task_done()

        self.state = WorkerState.STOPPED
        logger.debug(f"{self.name} stopped")

    def _execute_task(self, task: Task):
        self.state = WorkerState.BUSY
        start_time = time.time()

        try:
            task.func(*task.args, **task.kwargs)

            logger.debug(f"{self.name} completed task in {time.time() - start_time:.3f}s")
            self.tasks_completed += 1

        except Exception as e:
            logger.exception(f"{self.name} task failed after {time.time() - start_time:.3f}s: {e}")
            self.tasks_failed += 1

        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        self._shutdown.set()


class ThreadPool:
    """
    Auto-scaling pool of worker threads.

        pool = ThreadPool(min_workers=4, max_workers=64, name="https")
        pool.start()
        if not pool.submit(handle_connection, args=(conn,)):
            ...  # Saturated: shed the connection
        pool.shutdown(wait=True, timeout=10.0)
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 64,
        queue_size: int = 256,
        name: str = "Worker",
    ):
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.queue_size = queue_size
        self.name = name

        self._task_queue: queue.Queue[Optional[Task]] = queue.Queue(maxsize=queue_size)

        self._workers: list[Worker] = []
        self._lock = threading.Lock()  # Protects _workers
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    def start(self):
        if self._started:
            return

        logger.info(f"Starting {self.name} thread pool with {self.min_workers} workers")

        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker_locked()

        self._started = True

    def _add_worker_locked(self) -> Worker:
        """Start one more worker. The caller holds _lock."""
        worker = Worker(
            task_queue=self._task_queue,
            worker_id=self._next_worker_id,
            name_prefix=self.name,
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
    ) -> bool:
        """
        Queue a task without blocking.

        Returns:
            True if queued, False if the queue is full.

        Raises:
            RuntimeError: If the pool is not started or is shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")

        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        task = Task(func=func, args=args, kwargs=kwargs or {})

        try:
            self._task_queue.put(task, block=False)
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        """Add a worker when all are busy and work is waiting."""
        with self._lock:
            if len(self._workers) >= self.max_workers:
                return

            busy_count = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if busy_count == len(self._workers) and self._task_queue.qsize() > 0:
                logger.debug(
                    f"Scaling up {self.name}: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker_locked()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Stop the pool.

        Args:
            wait: Wait for queued and running tasks first.
            timeout: Upper bound on that wait (None = no bound).

        Returns:
            True if every task finished, False if the wait timed out.
        """
        if not self._started:
            return True

        logger.info(f"Shutting down {self.name} thread pool...")
        self._shutdown = True
        drained = True

        if wait:
            deadline = time.time() + timeout if timeout is not None else None
            # Counts queued tasks plus tasks a worker has taken but not finished
            while self._task_queue.unfinished_tasks:
                if deadline is not None and time.time() > deadline:
                    logger.warning(
                        f"{self.name} pool shutdown timeout with {self.busy_workers} "
                        f"busy workers, abandoning them"
                    )
                    drained = False
                    break
                time.sleep(0.05)

        # Poison pills
        for _ in self._workers:
            try:
                self._task_queue.put(None, block=False)
            except queue.Full:
                pass

        for worker in self._workers:
            worker.shutdown()
            if drained:
                worker.join(timeout=2.0)

        with self._lock:
            self._workers.clear()
        self._started = False

        logger.info(f"{self.name} thread pool shutdown complete")
        return drained

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def stats(self) -> dict:
        """Worker and task counts, for logging on shutdown."""
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
                "idle": self.idle_workers,
            },
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
