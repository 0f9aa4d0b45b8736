# application/services/periodic_trigger.py
import asyncio
from typing import Callable, Awaitable, Optional

from shared.logging import logger

class PeriodicTrigger:
    """Runs an async action on a fixed interval until stopped"""

    def __init__(self, name: str, interval_seconds: float,
                 action: Callable[[], Awaitable[object]],
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.name = name
        self.interval_seconds = interval_seconds
        self.action = action
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"trigger:{self.name}")
        logger.info("Periodic trigger started", trigger=self.name, interval_seconds=self.interval_seconds)

    async def _loop(self):
        while True:
            await self._sleep(self.interval_seconds)
            try:
                await self.action()
            except Exception as e:
                logger.error("Periodic trigger run failed", trigger=self.name, error=str(e))
            self.runs += 1

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Periodic trigger stopped", trigger=self.name)
