"""
Background sync dispatcher.

A fixed pool of worker tasks drains a bounded queue of account ids. Callers
get immediate acceptance or QueueFullError; failures are logged and never
escape to the submitter.
"""

from __future__ import annotations

import asyncio

from mailsync.application.services.sync_orchestrator import SyncOrchestrator
from mailsync.domain.exceptions import (AccountPausedError,
                                        MailSyncException, QueueFullError,
                                        SyncAlreadyRunningError)
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

DISPATCHER_IDENTITY = "sync-dispatcher"


class SyncDispatcher:
    """Bounded worker pool for account syncs"""

    def __init__(self, orchestrator: SyncOrchestrator, workers: int = 3, max_queue_size: int = 100):
        if workers <= 0:
            raise ValueError("workers must be positive")
        self._orchestrator = orchestrator
        self._worker_count = workers
        self._max_queue_size = max_queue_size
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_queue_size)
        self._pending: set[str] = set()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def queue_length(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Spawn the worker tasks; calling twice is a no-op"""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"sync-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("Sync dispatcher started with %d workers", self._worker_count)

    def submit(self, account_id: str) -> bool:
        """
        Queue a background sync for an account.

        Returns False when the account is already queued and not yet picked up.

        Raises:
            QueueFullError: the queue is at capacity
        """
        if account_id in self._pending:
            logger.debug("Sync for account %s already queued", account_id)
            return False
        try:
            self._queue.put_nowait(account_id)
        except asyncio.QueueFull:
            raise QueueFullError(DISPATCHER_IDENTITY, self._max_queue_size) from None
        self._pending.add(account_id)
        return True

    async def join(self) -> None:
        """Wait until every queued sync has finished"""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers; queued syncs that were not started are dropped"""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

        dropped = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
            dropped += 1
        self._pending.clear()
        if dropped:
            logger.info("Sync dispatcher stopped, %d queued syncs dropped", dropped)
        else:
            logger.info("Sync dispatcher stopped")

    async def _worker_loop(self, index: int) -> None:
        while True:
            account_id = await self._queue.get()
            self._pending.discard(account_id)
            try:
                result = await self._orchestrator.sync_account(account_id)
                logger.info(
                    "Background sync finished for account %s (worker %d): %d stored, %d updated",
                    account_id,
                    index,
                    result.stored,
                    result.updated,
                )
            except SyncAlreadyRunningError:
                logger.info("Background sync skipped for account %s: already running", account_id)
            except AccountPausedError:
                logger.info("Background sync skipped for account %s: paused", account_id)
            except MailSyncException as e:
                logger.error("Background sync failed for account %s: %s", account_id, e.message)
            except Exception:
                logger.exception("Background sync crashed for account %s", account_id)
            finally:
                self._queue.task_done()
