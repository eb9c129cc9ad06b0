"""
Cooperative periodic loop with explicit start/stop.
"""

import asyncio

from formjobs.config.logging import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """Calls run_once() every interval_s seconds until stop() is awaited."""

    name = "periodic-task"

    def __init__(self, interval_s: float):
        self.interval_s = interval_s
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        raise NotImplementedError

    def start(self) -> None:
        """Schedule the loop on the running event loop."""
        if self.running:
            raise RuntimeError(f"{self.name} is already running")

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        """Signal the loop and wait for the current iteration to finish."""
        if self._task is None:
            return

        self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None

    async def _loop(self) -> None:
        logger.info("Starting periodic task", task=self.name, interval_s=self.interval_s)

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error in periodic task", task=self.name)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_s)
            except asyncio.TimeoutError:
                pass

        logger.info("Stopped periodic task", task=self.name)
