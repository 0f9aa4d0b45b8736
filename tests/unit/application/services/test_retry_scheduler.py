# tests/unit/application/services/test_retry_scheduler.py
import pytest
import asyncio
from unittest.mock import AsyncMock

from application.services.periodic_trigger import PeriodicTrigger
from application.services.retry_scheduler import RetryScheduler

class TestBackoff:
    """Exponential delay computation"""

    def test_doubles_per_retry(self):
        scheduler = RetryScheduler(base_delay=1.0)

        assert [scheduler.backoff_delay(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        scheduler = RetryScheduler(base_delay=1.0, max_delay=300.0)

        assert scheduler.backoff_delay(9) == 300.0
        assert scheduler.backoff_delay(20) == 300.0

    def test_custom_base(self):
        assert RetryScheduler(base_delay=0.5).backoff_delay(2) == 2.0

class TestRetryScheduler:
    """Timer registration, firing and cancellation"""

    @pytest.mark.asyncio
    async def test_fires_callback_after_delay(self, retry_scheduler, fake_sleep):
        callback = AsyncMock()

        retry_scheduler.schedule("t1", 2.0, callback)
        assert retry_scheduler.is_pending("t1")
        await retry_scheduler.wait_idle()

        callback.assert_awaited_once()
        assert fake_sleep.delays == [2.0]
        assert not retry_scheduler.is_pending("t1")

    @pytest.mark.asyncio
    async def test_cancel_prevents_callback(self, retry_scheduler):
        callback = AsyncMock()
        retry_scheduler.schedule("t1", 2.0, callback)

        assert retry_scheduler.cancel("t1") is True
        await retry_scheduler.wait_idle()

        callback.assert_not_awaited()
        assert retry_scheduler.cancel("t1") is False

    @pytest.mark.asyncio
    async def test_reschedule_replaces_existing_timer(self, retry_scheduler):
        first, second = AsyncMock(), AsyncMock()

        retry_scheduler.schedule("t1", 1.0, first)
        retry_scheduler.schedule("t1", 4.0, second)
        assert retry_scheduler.pending_count == 1
        await retry_scheduler.wait_idle()

        first.assert_not_awaited()
        second.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_callback_may_schedule_next_attempt(self, retry_scheduler, fake_sleep):
        calls = []

        async def attempt():
            calls.append(len(calls))
            if len(calls) < 3:
                retry_scheduler.schedule("t1", float(len(calls)), attempt)

        retry_scheduler.schedule("t1", 0.5, attempt)
        await retry_scheduler.wait_idle()

        assert calls == [0, 1, 2]
        assert fake_sleep.delays == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_callback_error_is_contained(self, retry_scheduler):
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        healthy = AsyncMock()

        retry_scheduler.schedule("t1", 1.0, failing)
        retry_scheduler.schedule("t2", 1.0, healthy)
        await retry_scheduler.wait_idle()

        failing.assert_awaited_once()
        healthy.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_everything(self, retry_scheduler):
        callbacks = [AsyncMock() for _ in range(3)]
        for index, callback in enumerate(callbacks):
            retry_scheduler.schedule(f"t{index}", 10.0, callback)

        await retry_scheduler.shutdown()

        assert retry_scheduler.pending_count == 0
        for callback in callbacks:
            callback.assert_not_awaited()

class TestPeriodicTrigger:
    """Fixed-interval background actions"""

    @pytest.mark.asyncio
    async def test_runs_until_stopped(self):
        ran = asyncio.Event()
        action = AsyncMock(side_effect=lambda: ran.set())
        trigger = PeriodicTrigger("sweep", 0.01, action)

        trigger.start()
        await asyncio.wait_for(ran.wait(), timeout=1.0)
        await trigger.stop()

        assert action.await_count >= 1
        assert not trigger.running

    @pytest.mark.asyncio
    async def test_failed_run_does_not_stop_loop(self):
        action = AsyncMock(side_effect=[RuntimeError("db down"), None, None, None])
        delays = []

        async def sleep(delay):
            delays.append(delay)
            await asyncio.sleep(0)

        trigger = PeriodicTrigger("weather", 60.0, action, sleep=sleep)
        trigger.start()
        while trigger.runs < 2:
            await asyncio.sleep(0)
        await trigger.stop()

        assert action.await_count >= 2
        assert delays[:2] == [60.0, 60.0]

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        trigger = PeriodicTrigger("sweep", 60.0, AsyncMock())

        trigger.start()
        first = trigger._task
        trigger.start()

        assert trigger._task is first
        await trigger.stop()
