"""
Quota-aware request scheduler.

Every outbound call to a provider for one account goes through that account's
QuotaScheduler. Operations are queued FIFO and admitted only while the current
fixed window still has budget for their declared cost. Rate-limit failures are
retried with exponential backoff at the head of the queue; anything else fails
straight through to the caller.

Usage:
    scheduler = QuotaScheduler("account-123", units_per_window=150)
    page = await scheduler.execute(lambda: provider.list_message_ids(query, 500), cost=5)
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from mailsync.domain.exceptions import (OperationCancelledError,
                                        QueueFullError, QuotaExceededError)
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]

RATE_LIMIT_STATUS = 429
RATE_LIMIT_PATTERNS = (
    "rate limit",
    "ratelimitexceeded",
    "quota exceeded",
    "too many requests",
)


def extract_status_code(error: BaseException) -> int | None:
    """Best-effort HTTP status extraction across client libraries"""
    candidates: list[Any] = [
        getattr(error, "status", None),
        getattr(error, "status_code", None),
        getattr(error, "code", None),
    ]
    # googleapiclient HttpError exposes .resp, httpx errors expose .response
    for attr in ("resp", "response"):
        response = getattr(error, attr, None)
        if response is not None:
            candidates.append(getattr(response, "status", None))
            candidates.append(getattr(response, "status_code", None))

    for value in candidates:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def is_rate_limit_error(error: BaseException) -> bool:
    """True when the remote system signalled that the quota is exhausted."""
    if isinstance(error, QuotaExceededError):
        return True
    if extract_status_code(error) == RATE_LIMIT_STATUS:
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in RATE_LIMIT_PATTERNS)


@dataclass
class QuotaWindow:
    """Fixed accounting window for one identity"""

    identity: str
    units_limit: int
    window_seconds: float
    started_at: float
    units_consumed: int = 0

    def roll(self, now: float) -> None:
        """Start a new window if the current one has elapsed"""
        if now - self.started_at >= self.window_seconds:
            self.started_at = now
            self.units_consumed = 0

    def can_admit(self, cost: int) -> bool:
        return self.units_consumed + cost <= self.units_limit

    def remaining(self, now: float) -> float:
        return max(0.0, self.started_at + self.window_seconds - now)


@dataclass
class QueuedOperation:
    """One submitted unit of work and the future its caller awaits"""

    operation: Operation
    cost: int
    future: asyncio.Future
    enqueued_at: float
    retries: int = 0


@dataclass(frozen=True)
class SchedulerStats:
    """Point-in-time scheduler statistics (visibility only)"""

    identity: str
    queue_length: int
    units_consumed: int
    units_limit: int
    window_started_at: float
    total_executed: int
    total_retried: int
    total_failed: int
    total_cancelled: int


@dataclass
class _Counters:
    executed: int = 0
    retried: int = 0
    failed: int = 0
    cancelled: int = 0


class QuotaScheduler:
    """
    Per-identity quota scheduler with a single drain loop.

    ``clock`` and ``sleep`` are injectable so window arithmetic can be tested
    without real time passing.
    """

    def __init__(
        self,
        identity: str,
        units_per_window: int = 150,
        window_seconds: float = 1.0,
        max_queue_size: int = 1000,
        max_retries: int = 5,
        backoff_base: float = 1.0,
        backoff_cap: float = 60.0,
        jitter: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if units_per_window <= 0:
            raise ValueError("units_per_window must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.identity = identity
        self.max_queue_size = max_queue_size
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self.jitter = jitter

        self._clock = clock
        self._sleep = sleep
        self._window = QuotaWindow(
            identity=identity,
            units_limit=units_per_window,
            window_seconds=window_seconds,
            started_at=clock(),
        )
        self._queue: deque[QueuedOperation] = deque()
        self._backing_off: QueuedOperation | None = None
        self._drain_task: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._closed = False
        self._counters = _Counters()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def execute(self, operation: Operation, cost: int = 1) -> Any:
        """
        Queue ``operation`` and wait for its result.

        Raises:
            ValueError: cost is not positive or exceeds the window budget
            QueueFullError: the queue already holds max_queue_size operations
            QuotaExceededError: rate limited on every retry
            OperationCancelledError: the queue was cleared before it ran, or the
                scheduler was closed
        """
        if self._closed:
            raise OperationCancelledError(self.identity)
        if cost <= 0:
            raise ValueError(f"Operation cost must be positive, got {cost}")
        if cost > self._window.units_limit:
            raise ValueError(
                f"Operation cost {cost} exceeds the window budget {self._window.units_limit}"
            )
        if len(self._queue) >= self.max_queue_size:
            raise QueueFullError(self.identity, self.max_queue_size)

        item = QueuedOperation(
            operation=operation,
            cost=cost,
            future=asyncio.get_running_loop().create_future(),
            enqueued_at=self._clock(),
        )
        self._queue.append(item)
        self._idle.clear()
        self._ensure_draining()
        return await item.future

    def backoff_delay(self, retries: int) -> float:
        """Delay before retry number ``retries + 1``"""
        jitter = random.uniform(0, self.jitter) if self.jitter > 0 else 0.0
        return min(self.backoff_base * (2**retries) + jitter, self.backoff_cap)

    def stats(self) -> SchedulerStats:
        self._window.roll(self._clock())
        return SchedulerStats(
            identity=self.identity,
            queue_length=len(self._queue),
            units_consumed=self._window.units_consumed,
            units_limit=self._window.units_limit,
            window_started_at=self._window.started_at,
            total_executed=self._counters.executed,
            total_retried=self._counters.retried,
            total_failed=self._counters.failed,
            total_cancelled=self._counters.cancelled,
        )

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed

    def clear_queue(self) -> int:
        """
        Drop every pending operation, failing each caller with
        OperationCancelledError. An operation already running is not
        interrupted. Returns the number of cancelled operations.
        """
        pending = list(self._queue)
        self._queue.clear()
        if self._backing_off is not None:
            pending.append(self._backing_off)

        cancelled = 0
        for item in pending:
            if not item.future.done():
                item.future.set_exception(OperationCancelledError(self.identity))
                cancelled += 1

        self._counters.cancelled += cancelled
        if cancelled:
            logger.info("Cleared %d pending operations for %s", cancelled, self.identity)
        return cancelled

    def close(self) -> int:
        """
        Refuse all further work and cancel what is pending.

        Callers still holding this scheduler get OperationCancelledError from
        every later execute(), so a sync in progress stops at its next call.
        Returns the number of cancelled operations.
        """
        self._closed = True
        return self.clear_queue()

    async def wait_until_idle(self) -> None:
        """Wait until the queue is empty and nothing is running"""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Close, cancel pending work and stop the drain loop"""
        self.close()
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._idle.set()

    # ------------------------------------------------------------------
    # Drain loop
    # ------------------------------------------------------------------

    def _ensure_draining(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.create_task(
                self._drain(), name=f"quota-drain:{self.identity}"
            )

    async def _drain(self) -> None:
        try:
            while self._queue:
                now = self._clock()
                self._window.roll(now)

                head = self._queue[0]
                if head.future.done():
                    # Caller went away or the item was cancelled
                    self._queue.popleft()
                    continue

                if not self._window.can_admit(head.cost):
                    wait = self._window.remaining(now)
                    logger.debug(
                        "Quota window full for %s (%d/%d), waiting %.3fs",
                        self.identity,
                        self._window.units_consumed,
                        self._window.units_limit,
                        wait,
                    )
                    await self._sleep(wait)
                    continue

                self._queue.popleft()
                await self._run(head)
        finally:
            self._drain_task = None
            if not self._queue:
                self._idle.set()

    async def _run(self, item: QueuedOperation) -> None:
        try:
            result = await item.operation()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.set_exception(OperationCancelledError(self.identity))
            raise
        except Exception as e:
            await self._handle_failure(item, e)
            return

        self._window.units_consumed += item.cost
        self._counters.executed += 1
        if not item.future.done():
            item.future.set_result(result)

    async def _handle_failure(self, item: QueuedOperation, error: Exception) -> None:
        rate_limited = is_rate_limit_error(error)

        if rate_limited and item.retries < self.max_retries:
            delay = self.backoff_delay(item.retries)
            item.retries += 1
            self._counters.retried += 1
            logger.warning(
                "Rate limited on %s, retry %d/%d in %.2fs",
                self.identity,
                item.retries,
                self.max_retries,
                delay,
            )

            self._backing_off = item
            try:
                await self._sleep(delay)
            finally:
                self._backing_off = None

            if not item.future.done():
                self._queue.appendleft(item)
            return

        self._counters.failed += 1
        if item.future.done():
            return

        if rate_limited:
            logger.error(
                "Rate limit retries exhausted for %s after %d attempts",
                self.identity,
                item.retries + 1,
            )
            terminal = QuotaExceededError(self.identity, item.retries, str(error))
            terminal.__cause__ = error
            item.future.set_exception(terminal)
        else:
            item.future.set_exception(error)
