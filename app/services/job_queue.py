"""
Job Queue - In-process delivery of clip jobs to a bounded worker pool.

Delivery contract:
- at most max_workers jobs run at once
- job starts are throttled by a sliding-window rate limiter
- a failed attempt is re-delivered after base * 2^(attempt-1) seconds until
  the attempt budget is spent
- jobId is the dedup key: a job already queued or running is rejected
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from app.config import get_settings
from app.models import ClipJobPayload

logger = logging.getLogger(__name__)

JobHandler = Callable[[ClipJobPayload], Awaitable[Any]]
SleepFunc = Callable[[float], Awaitable[None]]


def queue_backoff_delay(attempt: int, base_seconds: float) -> float:
    """Seconds before re-delivering a job whose attempt number `attempt` failed."""
    return base_seconds * 2 ** (attempt - 1)


class RateLimiter:
    """
    Sliding-window limiter over job starts.

    At most max_jobs acquisitions succeed within any window_seconds span;
    further callers wait until the oldest start leaves the window.
    """

    def __init__(
        self,
        max_jobs: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ):
        if max_jobs < 1:
            raise ValueError("max_jobs must be at least 1")
        self.max_jobs = max_jobs
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._starts: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = self._clock()
                while self._starts and now - self._starts[0] >= self.window_seconds:
                    self._starts.popleft()

                if len(self._starts) < self.max_jobs:
                    self._starts.append(now)
                    return

                wait = self._starts[0] + self.window_seconds - now
                logger.debug(f"Rate limit reached, waiting {wait:.1f}s")
                await self._sleep(wait)


class ClipJobQueue:
    """
    Worker pool pulling ClipJobPayloads and handing them to a handler.

    The handler (the clip pipeline) is expected to raise on failure; the
    queue decides whether the job is re-delivered.
    """

    def __init__(
        self,
        handler: JobHandler,
        max_workers: Optional[int] = None,
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        settings = get_settings()
        self._handler = handler
        self.max_workers = max_workers or settings.max_concurrent_jobs
        self.attempts = attempts or settings.queue_attempts
        self.backoff_seconds = (
            backoff_seconds if backoff_seconds is not None else settings.queue_backoff_seconds
        )
        self._rate_limiter = rate_limiter or RateLimiter(
            settings.rate_limit_max_jobs,
            settings.rate_limit_window_seconds,
        )
        self._sleep = sleep

        self._queue: asyncio.Queue[tuple[ClipJobPayload, int]] = asyncio.Queue()
        self._workers: list[asyncio.Task] = []
        self._retry_tasks: set[asyncio.Task] = set()
        self._active: set[str] = set()
        self._drained = asyncio.Event()
        self._drained.set()

    @property
    def is_running(self) -> bool:
        return bool(self._workers) and not all(w.done() for w in self._workers)

    @property
    def active_jobs(self) -> int:
        """Jobs queued, running or waiting for re-delivery."""
        return len(self._active)

    async def start(self) -> None:
        if self._workers:
            return
        for i in range(self.max_workers):
            self._workers.append(asyncio.create_task(self._worker(i)))
        logger.info(f"Job queue started ({self.max_workers} workers, {self.attempts} attempts)")

    async def stop(self) -> None:
        """Cancel workers and pending re-deliveries; running attempts are abandoned."""
        tasks = self._workers + list(self._retry_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._workers = []
        self._retry_tasks.clear()
        if self._active:
            logger.warning(f"Job queue stopped with {len(self._active)} undelivered jobs")
        self._active.clear()
        self._drained.set()
        logger.info("Job queue stopped")

    async def enqueue(self, payload: ClipJobPayload) -> None:
        """
        Queue a job for delivery.

        Raises:
            DuplicateJobError: If the jobId is already queued or running
        """
        if payload.job_id in self._active:
            raise DuplicateJobError(f"Job already queued: {payload.job_id}")

        self._active.add(payload.job_id)
        self._drained.clear()
        await self._queue.put((payload, 1))
        logger.info(f"Job {payload.job_id} queued")

    async def join(self) -> None:
        """Wait until every queued job has finished or exhausted its attempts."""
        await self._drained.wait()

    async def _worker(self, worker_id: int) -> None:
        while True:
            payload, attempt = await self._queue.get()
            try:
                await self._rate_limiter.acquire()
                await self._run_attempt(payload, attempt, worker_id)
            finally:
                self._queue.task_done()

    async def _run_attempt(self, payload: ClipJobPayload, attempt: int, worker_id: int) -> None:
        job_id = payload.job_id
        logger.info(f"Worker {worker_id} running job {job_id} (attempt {attempt}/{self.attempts})")

        try:
            await self._handler(payload)
        except asyncio.CancelledError:
            self._finish(job_id)
            raise
        except Exception as e:
            if attempt < self.attempts:
                delay = queue_backoff_delay(attempt, self.backoff_seconds)
                logger.warning(
                    f"Job {job_id} attempt {attempt} failed: {e}. Re-delivering in {delay:.0f}s"
                )
                self._schedule_redelivery(payload, attempt + 1, delay)
                return

            logger.error(f"Job {job_id} failed after {attempt} attempts, giving up: {e}")
            self._finish(job_id)
            return

        logger.info(f"Job {job_id} finished on attempt {attempt}")
        self._finish(job_id)

    def _schedule_redelivery(self, payload: ClipJobPayload, attempt: int, delay: float) -> None:
        task = asyncio.create_task(self._redeliver(payload, attempt, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _redeliver(self, payload: ClipJobPayload, attempt: int, delay: float) -> None:
        await self._sleep(delay)
        await self._queue.put((payload, attempt))

    def _finish(self, job_id: str) -> None:
        self._active.discard(job_id)
        if not self._active:
            self._drained.set()


class DuplicateJobError(Exception):
    """Exception raised when a jobId is enqueued while already in the queue."""
    pass
