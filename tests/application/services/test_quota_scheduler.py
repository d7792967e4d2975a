"""Unit tests for QuotaScheduler"""

import asyncio
from types import SimpleNamespace

import pytest

from mailsync.application.services.quota_scheduler import (QuotaScheduler,
                                                           extract_status_code,
                                                           is_rate_limit_error)
from mailsync.domain.exceptions import (OperationCancelledError,
                                        QueueFullError, QuotaExceededError)


class RateLimited(Exception):
    status_code = 429


async def _yield(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.fixture
def scheduler(fake_clock):
    return QuotaScheduler(
        "account-1",
        units_per_window=10,
        window_seconds=1.0,
        max_retries=5,
        backoff_base=1.0,
        backoff_cap=60.0,
        jitter=0.0,
        clock=fake_clock,
        sleep=fake_clock.sleep,
    )


class TestExecute:
    """Tests for execute and window admission"""

    async def test_returns_operation_result(self, scheduler):
        """
        GIVEN an idle scheduler
        WHEN executing an operation
        THEN the caller receives its result and its cost is charged
        """
        async def op():
            return "done"

        result = await scheduler.execute(op, cost=4)

        assert result == "done"
        stats = scheduler.stats()
        assert stats.units_consumed == 4
        assert stats.total_executed == 1

    async def test_admits_at_most_budget_over_cost_per_window(self, scheduler, fake_clock):
        """
        GIVEN a budget of 10 units per window and operations costing 3
        WHEN 7 operations are submitted at once
        THEN 3 run in each window, in submission order
        """
        executed: list[tuple[int, float]] = []

        def make_op(i):
            async def op():
                executed.append((i, fake_clock.now))
                return i
            return op

        results = await asyncio.gather(*(scheduler.execute(make_op(i), cost=3) for i in range(7)))

        assert results == list(range(7))
        assert [i for i, _ in executed] == list(range(7))
        per_window: dict[float, int] = {}
        for _, at in executed:
            per_window[at] = per_window.get(at, 0) + 1
        assert per_window == {0.0: 3, 1.0: 3, 2.0: 1}

    async def test_rejects_non_positive_cost(self, scheduler):
        async def op():
            return None

        with pytest.raises(ValueError):
            await scheduler.execute(op, cost=0)

    async def test_rejects_cost_above_budget(self, scheduler):
        async def op():
            return None

        with pytest.raises(ValueError):
            await scheduler.execute(op, cost=11)

    async def test_non_rate_limit_error_fails_without_retry(self, scheduler):
        """
        GIVEN an operation failing with an ordinary error
        WHEN executing it
        THEN the original error reaches the caller and nothing is retried
        """
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await scheduler.execute(op)

        assert calls == 1
        stats = scheduler.stats()
        assert stats.total_retried == 0
        assert stats.total_failed == 1
        assert stats.units_consumed == 0


class TestRetries:
    """Tests for rate-limit backoff"""

    async def test_backoff_doubles_then_raises_quota_exceeded(self, scheduler, fake_clock):
        """
        GIVEN an operation that is always rate limited
        WHEN executing it with max_retries=5 and no jitter
        THEN it is attempted 6 times with delays 1, 2, 4, 8, 16
        AND the caller gets QuotaExceededError
        """
        calls = 0

        async def op():
            nonlocal calls
            calls += 1
            raise RateLimited("Too Many Requests")

        with pytest.raises(QuotaExceededError) as exc_info:
            await scheduler.execute(op)

        assert calls == 6
        assert fake_clock.sleeps == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert isinstance(exc_info.value.__cause__, RateLimited)
        stats = scheduler.stats()
        assert stats.total_retried == 5
        assert stats.total_failed == 1

    async def test_succeeds_after_transient_rate_limit(self, scheduler, fake_clock):
        attempts = 0

        async def op():
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise Exception("User-rate limit exceeded")
            return "ok"

        assert await scheduler.execute(op) == "ok"
        assert fake_clock.sleeps == [1.0, 2.0]
        assert scheduler.stats().total_retried == 2

    def test_backoff_delay_is_capped(self, scheduler):
        assert scheduler.backoff_delay(0) == 1.0
        assert scheduler.backoff_delay(3) == 8.0
        assert scheduler.backoff_delay(10) == 60.0

    def test_backoff_jitter_stays_in_range(self, fake_clock):
        scheduler = QuotaScheduler("account-1", jitter=1.0, clock=fake_clock, sleep=fake_clock.sleep)

        for _ in range(20):
            delay = scheduler.backoff_delay(1)
            assert 2.0 <= delay <= 3.0


class TestQueueManagement:
    """Tests for queue bounds and clear_queue"""

    async def test_clear_queue_cancels_pending_operations(self, scheduler):
        """
        GIVEN one running operation and 10 queued behind it
        WHEN the queue is cleared
        THEN clear_queue returns 10 and each queued caller gets OperationCancelledError
        AND the running operation still completes
        """
        started = asyncio.Event()
        gate = asyncio.Event()

        async def blocking():
            started.set()
            await gate.wait()
            return "first"

        async def quick():
            return "never"

        first = asyncio.create_task(scheduler.execute(blocking))
        await started.wait()
        queued = [asyncio.create_task(scheduler.execute(quick)) for _ in range(10)]
        await _yield()
        assert scheduler.queue_length == 10

        cleared = scheduler.clear_queue()
        gate.set()

        assert cleared == 10
        assert await first == "first"
        outcomes = await asyncio.gather(*queued, return_exceptions=True)
        assert all(isinstance(o, OperationCancelledError) for o in outcomes)
        assert "Queue cleared" in str(outcomes[0])
        assert scheduler.stats().total_cancelled == 10

    async def test_queue_full_rejects_submission(self, fake_clock):
        scheduler = QuotaScheduler(
            "account-1", max_queue_size=2, clock=fake_clock, sleep=fake_clock.sleep
        )
        started = asyncio.Event()
        gate = asyncio.Event()

        async def blocking():
            started.set()
            await gate.wait()

        async def quick():
            return None

        running = asyncio.create_task(scheduler.execute(blocking))
        await started.wait()
        queued = [asyncio.create_task(scheduler.execute(quick)) for _ in range(2)]
        await _yield()

        with pytest.raises(QueueFullError):
            await scheduler.execute(quick)

        gate.set()
        await asyncio.gather(running, *queued)
        assert scheduler.queue_length == 0

    async def test_wait_until_idle(self, scheduler):
        async def op():
            return 1

        tasks = [asyncio.create_task(scheduler.execute(op)) for _ in range(3)]
        await _yield(1)
        await scheduler.wait_until_idle()

        assert scheduler.queue_length == 0
        assert scheduler.stats().total_executed == 3
        assert await asyncio.gather(*tasks) == [1, 1, 1]

    async def test_closed_scheduler_refuses_work(self, scheduler):
        """
        GIVEN a scheduler that has run an operation
        WHEN it is closed
        THEN every later execute fails with OperationCancelledError without running
        """
        calls = []

        async def op():
            calls.append(1)
            return 1

        assert await scheduler.execute(op) == 1

        assert scheduler.close() == 0

        assert scheduler.closed
        with pytest.raises(OperationCancelledError):
            await scheduler.execute(op)
        assert calls == [1]

    async def test_shutdown_closes(self, scheduler):
        async def op():
            return 1

        await scheduler.shutdown()

        with pytest.raises(OperationCancelledError):
            await scheduler.execute(op)


class TestRateLimitDetection:
    """Tests for rate-limit classification"""

    def test_status_from_google_style_response(self):
        error = Exception("HttpError")
        error.resp = SimpleNamespace(status=429)

        assert extract_status_code(error) == 429
        assert is_rate_limit_error(error)

    def test_status_from_httpx_style_response(self):
        error = Exception("server error")
        error.response = SimpleNamespace(status_code=503)

        assert extract_status_code(error) == 503
        assert not is_rate_limit_error(error)

    def test_message_patterns(self):
        assert is_rate_limit_error(Exception("rateLimitExceeded"))
        assert is_rate_limit_error(Exception("Quota exceeded for quota metric"))
        assert not is_rate_limit_error(Exception("Not Found"))

    def test_quota_exceeded_error_is_rate_limit(self):
        assert is_rate_limit_error(QuotaExceededError("account-1", 5))
