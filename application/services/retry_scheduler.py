# application/services/retry_scheduler.py
import asyncio
from typing import Dict, Callable, Awaitable, Set

from shared.logging import logger

class RetryScheduler:
    """Cancellable delayed re-invocations, at most one pending timer per task id"""

    def __init__(self, base_delay: float = 1.0, max_delay: float = 300.0,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._timers: Dict[str, asyncio.Task] = {}
        self._running: Set[asyncio.Task] = set()

    def backoff_delay(self, retry_count: int) -> float:
        """Exponential backoff: base * 2^retry_count, capped"""
        return min(self.base_delay * (2 ** retry_count), self.max_delay)

    def schedule(self, task_id: str, delay: float, callback: Callable[[], Awaitable[object]]) -> None:
        """Fire callback after delay; replaces any timer already pending for task_id"""
        self.cancel(task_id)
        timer = asyncio.create_task(self._fire(task_id, delay, callback), name=f"retry:{task_id}")
        self._timers[task_id] = timer
        self._running.add(timer)
        timer.add_done_callback(self._running.discard)
        logger.info("Retry scheduled", task_id=task_id, delay_seconds=delay)

    async def _fire(self, task_id: str, delay: float, callback: Callable[[], Awaitable[object]]):
        await self._sleep(delay)

        # Unregister before running so the callback may schedule the next attempt
        if self._timers.get(task_id) is asyncio.current_task():
            del self._timers[task_id]

        try:
            await callback()
        except Exception as e:
            logger.error("Scheduled retry failed", task_id=task_id, error=str(e))

    def cancel(self, task_id: str) -> bool:
        timer = self._timers.pop(task_id, None)
        if timer is None or timer.done():
            return False
        timer.cancel()
        logger.info("Retry cancelled", task_id=task_id)
        return True

    def is_pending(self, task_id: str) -> bool:
        timer = self._timers.get(task_id)
        return timer is not None and not timer.done()

    @property
    def pending_count(self) -> int:
        return sum(1 for timer in self._timers.values() if not timer.done())

    async def wait_idle(self):
        """Wait until every timer, including ones scheduled meanwhile, has run"""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    async def shutdown(self):
        for task_id in list(self._timers):
            self.cancel(task_id)
        await self.wait_idle()
