"""Per-account scheduler registry owned by the composition root."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from mailsync.application.services.quota_scheduler import (QuotaScheduler,
                                                           SchedulerStats)
from mailsync.infrastructure.config.settings import Settings
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class SchedulerRegistry:
    """
    One QuotaScheduler per account, created on first use.

    Keeping schedulers per account stops a busy mailbox from starving the
    others or spending their quota.
    """

    def __init__(
        self,
        settings: Settings,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self._settings = settings
        self._clock = clock
        self._sleep = sleep
        self._schedulers: dict[str, QuotaScheduler] = {}

    def get(self, account_id: str) -> QuotaScheduler:
        scheduler = self._schedulers.get(account_id)
        if scheduler is None:
            scheduler = self._create(account_id)
            self._schedulers[account_id] = scheduler
            logger.debug("Created quota scheduler for account %s", account_id)
        return scheduler

    def _create(self, account_id: str) -> QuotaScheduler:
        s = self._settings
        kwargs: dict[str, Any] = {}
        if self._clock is not None:
            kwargs["clock"] = self._clock
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return QuotaScheduler(
            account_id,
            units_per_window=s.quota_units_per_window,
            window_seconds=s.quota_window_seconds,
            max_queue_size=s.scheduler_max_queue_size,
            max_retries=s.scheduler_max_retries,
            backoff_base=s.scheduler_backoff_base_seconds,
            backoff_cap=s.scheduler_backoff_max_seconds,
            jitter=s.scheduler_backoff_jitter_seconds,
            **kwargs,
        )

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._schedulers

    def discard(self, account_id: str) -> int:
        """
        Forget an account's scheduler and close it.

        Pending operations are cancelled and any run still holding the old
        scheduler fails on its next call. The next get() builds a fresh one.
        """
        scheduler = self._schedulers.pop(account_id, None)
        if scheduler is None:
            return 0
        return scheduler.close()

    def stats(self) -> dict[str, SchedulerStats]:
        return {account_id: s.stats() for account_id, s in self._schedulers.items()}

    async def shutdown(self) -> None:
        schedulers = list(self._schedulers.values())
        self._schedulers.clear()
        for scheduler in schedulers:
            await scheduler.shutdown()
