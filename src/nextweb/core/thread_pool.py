"""
=============================================================================
THREAD POOL
=============================================================================

Optional per-server worker pool for handling connections in parallel.

=============================================================================
WHEN IS THIS USED?
=============================================================================

By default each virtual server handles its connections one at a time on
its own accept thread; servers run in parallel with each other, but a slow
backend holds up every later connection of the same server.

With --workers N, each server gets a pool:

    accept thread                     worker threads
    ─────────────                     ──────────────
    accept() ──► pool.submit(conn) ──► [queue] ──► Worker-0: dispatcher.handle(conn)
                                               ──► Worker-1: dispatcher.handle(conn)
                                               ──► ...

This is safe without any locking because the only shared state is the
frozen RuntimeServerConfig and the stateless handlers built from it.

=============================================================================
WORKER LIFECYCLE
=============================================================================

    while not shutdown:
        task = queue.get()      ← blocks (with idle timeout)
        if task is None:        ← poison pill
            break
        task.func(*task.args)   ← exceptions logged, worker survives
        queue.task_done()

=============================================================================
"""

import threading
import queue
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """A deferred function call."""
    func: Callable[..., Any]
    args: tuple = ()
    submitted_at: float = field(default_factory=time.time)


class Worker(threading.Thread):
    """Daemon thread pulling tasks off the shared queue."""

    def __init__(self, task_queue: queue.Queue, name: str, idle_timeout: float = 60.0):
        super().__init__(name=name, daemon=True)

        self.task_queue = task_queue
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
            task.func(*task.args)
            self.tasks_completed += 1
            logger.debug(
                f"{self.name} completed task in {time.time() - start_time:.3f}s "
                f"(queued {start_time - task.submitted_at:.3f}s)"
            )
        except Exception as e:
            self.tasks_failed += 1
            logger.exception(f"{self.name} task failed after {time.time() - start_time:.3f}s: {e}")
        finally:
            self.state = WorkerState.IDLE

    def shutdown(self):
        self._shutdown.set()


class ThreadPool:
    """
    Bounded pool of worker threads with a bounded task queue.

    Usage:
        pool = ThreadPool(min_workers=4, max_workers=8, name="site")
        pool.start()
        if not pool.submit(dispatcher.handle, args=(conn,)):
            ...  # queue full, reject
        pool.shutdown()

    Starts with min_workers threads and adds one (up to max_workers)
    whenever every worker is busy and tasks are waiting.
    """

    def __init__(
        self,
        min_workers: int = 4,
        max_workers: int = 16,
        queue_size: int = 100,
        idle_timeout: float = 60.0,
        name: str = "pool",
    ):
        if min_workers < 1:
            raise ValueError("min_workers must be >= 1")
        if max_workers < min_workers:
            raise ValueError("max_workers must be >= min_workers")

        self.min_workers = min_workers
        self.max_workers = max_workers
        self.idle_timeout = idle_timeout
        self.name = name

        self._task_queue: queue.Queue[Optional[Task]] = queue.Queue(maxsize=queue_size)

        self._workers: list[Worker] = []
        self._lock = threading.Lock()
        self._started = False
        self._shutdown = False
        self._next_worker_id = 0

    def start(self):
        """Spawn the minimum set of workers. Idempotent."""
        if self._started:
            return

        logger.debug(f"Starting '{self.name}' thread pool with {self.min_workers} workers")
        with self._lock:
            for _ in range(self.min_workers):
                self._add_worker()

        self._started = True

    def _add_worker(self) -> Worker:
        # caller holds self._lock
        worker = Worker(
            task_queue=self._task_queue,
            name=f"nextweb-{self.name}-worker-{self._next_worker_id}",
            idle_timeout=self.idle_timeout,
        )
        self._next_worker_id += 1
        self._workers.append(worker)
        worker.start()
        return worker

    def submit(self, func: Callable[..., Any], args: tuple = ()) -> bool:
        """
        Queue a task without blocking the accept loop.

        Returns:
            True if queued, False if the queue is full.

        Raises:
            RuntimeError: Pool not started or shutting down.
        """
        if not self._started:
            raise RuntimeError("Thread pool not started")
        if self._shutdown:
            raise RuntimeError("Thread pool is shutting down")

        try:
            self._task_queue.put(Task(func=func, args=args), block=False)
        except queue.Full:
            return False

        self._maybe_scale_up()
        return True

    def _maybe_scale_up(self):
        with self._lock:
            busy = sum(1 for w in self._workers if w.state == WorkerState.BUSY)
            if (busy == len(self._workers)
                    and len(self._workers) < self.max_workers
                    and self._task_queue.qsize() > 0):
                logger.debug(
                    f"Scaling '{self.name}' up: {len(self._workers)} -> {len(self._workers) + 1} workers"
                )
                self._add_worker()

    def shutdown(self):
        """
        Stop the workers. Queued tasks are dropped; in-flight tasks finish
        on their own and are never interrupted.
        """
        if not self._started:
            return

        self._shutdown = True

        for _ in self._workers:
            try:
                self._task_queue.put(None, block=False)
            except queue.Full:
                break

        for worker in self._workers:
            worker.shutdown()
            worker.join(timeout=0.5)

        self._workers.clear()
        self._started = False
        logger.debug(f"'{self.name}' thread pool shut down")

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def stats(self) -> dict:
        """Worker and task counts, for diagnostics."""
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
            },
            "tasks": {
                "queued": self._task_queue.qsize(),
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
            },
        }
