"""Bounded worker pool for image generation.

Image calls are slow (tens of seconds) and the image service rate-limits, so
at most K of them run at once.  The pool is a single FIFO queue drained by K
long-lived worker threads: a job submitted while a worker is idle starts right
away, anything beyond K waits its turn, and a worker that finishes a job
immediately takes the next one.  Work is detached from whoever enqueued it;
nothing here can be cancelled short of :meth:`ImageScheduler.shutdown`.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

JobT = TypeVar("JobT")

# Placed on the queue once per worker to stop it.
_STOP = object()


@dataclass(frozen=True)
class SchedulerStats:
    """Snapshot of the pool counters."""

    queued: int
    in_flight: int
    started: int
    finished: int
    peak_in_flight: int
    max_concurrency: int


class ImageScheduler(Generic[JobT]):
    """FIFO queue feeding ``max_concurrency`` persistent worker threads.

    Args:
        handler: Called once per job on a worker thread.  Exceptions it
            raises are logged and swallowed so the worker keeps running;
            recording the outcome on the job is the handler's business.
        max_concurrency: Number of workers (K), at least 1.
        name: Prefix for worker thread names.
    """

    def __init__(
        self,
        handler: Callable[[JobT], None],
        max_concurrency: int = 5,
        name: str = "image-worker",
    ):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._handler = handler
        self.max_concurrency = max_concurrency
        self._name = name
        self._queue: queue.Queue = queue.Queue()
        self._workers: list[threading.Thread] = []
        self._start_lock = threading.Lock()
        self._closed = False

        self._cond = threading.Condition()
        self._queued = 0
        self._in_flight = 0
        self._started = 0
        self._finished = 0
        self._peak_in_flight = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start the worker threads.  Safe to call more than once."""
        with self._start_lock:
            self._start_workers()

    def _start_workers(self) -> None:
        # Caller holds _start_lock.
        if self._closed:
            raise RuntimeError("Scheduler has been shut down")
        if self._workers:
            return
        for index in range(self.max_concurrency):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"{self._name}-{index + 1}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)
        logger.info("Started %d %s thread(s)", self.max_concurrency, self._name)

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop the workers after the jobs already queued have run.

        Args:
            wait: Join the worker threads before returning.
            timeout: Per-thread join timeout when ``wait`` is set.
        """
        with self._start_lock:
            if self._closed:
                return
            self._closed = True
            workers = list(self._workers)
        for _ in workers:
            self._queue.put(_STOP)
        if wait:
            for worker in workers:
                worker.join(timeout)
        logger.info("Scheduler %s shut down", self._name)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def enqueue(self, job: JobT) -> None:
        """Queue ``job`` for the next free worker.  Never blocks.

        The closed check and the put happen under the same lock as
        :meth:`shutdown`, so an accepted job is always ahead of the stop
        markers.
        """
        with self._start_lock:
            self._start_workers()
            with self._cond:
                self._queued += 1
            self._queue.put(job)
        logger.debug("Queued job %r (%d waiting)", job, self._queue.qsize())

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------
    def _worker_loop(self) -> None:
        while True:
            job = self._queue.get()
            if job is _STOP:
                self._queue.task_done()
                return
            with self._cond:
                self._queued -= 1
                self._in_flight += 1
                self._started += 1
                self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                self._handler(job)
            except Exception:
                logger.exception("Unhandled error while processing job %r", job)
            finally:
                with self._cond:
                    self._in_flight -= 1
                    self._finished += 1
                    self._cond.notify_all()
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def stats(self) -> SchedulerStats:
        with self._cond:
            return SchedulerStats(
                queued=self._queued,
                in_flight=self._in_flight,
                started=self._started,
                finished=self._finished,
                peak_in_flight=self._peak_in_flight,
                max_concurrency=self.max_concurrency,
            )

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued or running.

        Returns:
            True if the pool went idle, False if ``timeout`` elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._queued == 0 and self._in_flight == 0, timeout=timeout
            )
