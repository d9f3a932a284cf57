# workers/scheduler.py
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicTask:
    """Runs a synchronous job every `interval` seconds in a worker thread."""

    def __init__(self, name: str, job: Callable[[], object], interval: float):
        self.name = name
        self.job = job
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        logger.info(f"⏱️ Periodic task '{self.name}' scheduled every {self.interval}s")
        while True:
            try:
                await asyncio.to_thread(self.job)
            except Exception as e:
                logger.exception(f"❌ Periodic task '{self.name}' failed: {e}")
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
