# workers/queue_worker.py
import asyncio
import json
import logging
import time
from collections import deque
from datetime import timedelta
from typing import Any, Callable, Deque, Dict, Optional

from services.job_queue import JobQueue
from models.models import QueueJob

logger = logging.getLogger(__name__)

JobHandler = Callable[[Dict[str, Any]], None]


class RateLimiter:
    """Sliding-window limiter: at most `max_calls` acquisitions per `period` seconds."""

    def __init__(self, max_calls: int, period: float = 1.0):
        self.max_calls = max_calls
        self.period = period
        self._calls: Deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            while True:
                now = time.monotonic()
                while self._calls and now - self._calls[0] >= self.period:
                    self._calls.popleft()
                if len(self._calls) < self.max_calls:
                    self._calls.append(now)
                    return
                await asyncio.sleep(self.period - (now - self._calls[0]))


class QueueWorker:
    """
    Pulls jobs for one queue and runs them through a synchronous handler.

    Concurrency is capped by a semaphore, throughput by a RateLimiter. A
    handler exception counts as a failed attempt; JobQueue decides whether
    the job is retried later or parked as FAILED.
    """

    def __init__(
        self,
        job_queue: JobQueue,
        queue_name: str,
        handler: JobHandler,
        concurrency: int = 5,
        rate_limit: int = 100,
        rate_period: float = 1.0,
        poll_interval: float = 1.0,
        failed_retention: timedelta = timedelta(hours=24),
        stalled_after: timedelta = timedelta(minutes=5),
    ):
        self.job_queue = job_queue
        self.queue_name = queue_name
        self.handler = handler
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.failed_retention = failed_retention
        self.stalled_after = stalled_after
        self.limiter = RateLimiter(rate_limit, rate_period)
        self._semaphore = asyncio.Semaphore(concurrency)
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def _process(self, job: QueueJob) -> bool:
        async with self._semaphore:
            await self.limiter.acquire()
            try:
                payload = json.loads(job.payload)
                await asyncio.to_thread(self.handler, payload)
            except Exception as e:
                logger.error(f"❌ Job {job.id} on '{self.queue_name}' raised: {e}")
                await asyncio.to_thread(self.job_queue.fail, job.id, f"{type(e).__name__}: {e}")
                return False

            await asyncio.to_thread(self.job_queue.complete, job.id)
            return True

    async def housekeeping(self) -> None:
        await asyncio.to_thread(self.job_queue.requeue_stalled, self.queue_name, self.stalled_after)
        purged = await asyncio.to_thread(self.job_queue.purge_failed, self.queue_name, self.failed_retention)
        if purged:
            logger.info(f"🧹 Purged {purged} expired failed jobs from '{self.queue_name}'")

    async def run_once(self) -> int:
        """Claim one batch and process it. Returns the number of jobs handled."""
        jobs = await asyncio.to_thread(self.job_queue.claim, self.queue_name, self.concurrency)
        if not jobs:
            return 0
        await asyncio.gather(*(self._process(job) for job in jobs))
        return len(jobs)

    async def run(self) -> None:
        self._running = True
        logger.info(f"👷 Worker for '{self.queue_name}' started (concurrency={self.concurrency})")
        while self._running:
            try:
                await self.housekeeping()
                handled = await self.run_once()
            except Exception as e:
                logger.exception(f"Background worker error on '{self.queue_name}': {e}")
                handled = 0
            if not handled:
                await asyncio.sleep(self.poll_interval)
        logger.info(f"✅ Worker for '{self.queue_name}' stopped")

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
