"""Sync run progress tracking, persisted so pollers see live counters."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.domain.entities.sync import SyncErrorEntry, SyncRunInfo
from mailsync.domain.enums import SyncKind, SyncRunStatus
from mailsync.domain.exceptions import SyncRunNotFoundError
from mailsync.infrastructure.persistence.models.sync_run import SyncRun
from mailsync.infrastructure.persistence.repositories.sync_run_repo import \
    SyncRunRepository
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)


def _to_info(run: SyncRun) -> SyncRunInfo:
    return SyncRunInfo(
        id=run.id,
        account_id=run.account_id,
        user_id=run.user_id,
        kind=SyncKind(run.kind),
        status=SyncRunStatus(run.status),
        total_items=run.total_items,
        processed_items=run.processed_items,
        stored_items=run.stored_items,
        updated_items=run.updated_items,
        failed_items=run.failed_items,
        current_batch=run.current_batch,
        total_batches=run.total_batches,
        batch_size=run.batch_size,
        errors=[
            SyncErrorEntry(
                message_id=entry.get("message_id", ""),
                error=entry.get("error", ""),
                timestamp=entry.get("timestamp", ""),
            )
            for entry in run.errors or []
        ],
        started_at=ensure_utc(run.started_at),
        completed_at=ensure_utc(run.completed_at),
        estimated_seconds_remaining=run.estimated_seconds_remaining,
    )


class ProgressTracker:
    """
    Records per-run counters and per-item errors.

    Every mutation runs in its own transaction. Read-modify-write updates
    hold a per-run asyncio lock and a row lock, and every update is a no-op
    once the run is terminal.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_errors: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self.max_errors = max_errors
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, run_id: str) -> asyncio.Lock:
        lock = self._locks.get(run_id)
        if lock is None:
            lock = self._locks[run_id] = asyncio.Lock()
        return lock

    async def create_run(
        self,
        account_id: str,
        user_id: str,
        kind: SyncKind,
        total: int,
        batch_size: int,
    ) -> str:
        async with self._session_factory() as db, db.begin():
            run = await SyncRunRepository(db).create(
                SyncRun(
                    account_id=account_id,
                    user_id=user_id,
                    kind=kind.value,
                    status=SyncRunStatus.PENDING.value,
                    total_items=total,
                    batch_size=batch_size,
                    total_batches=math.ceil(total / batch_size) if batch_size > 0 else 0,
                    errors=[],
                )
            )
        logger.debug(
            "Created %s sync run %s for account %s (%d items)",
            kind.value,
            run.id,
            account_id,
            total,
        )
        return run.id

    async def start(self, run_id: str) -> bool:
        """pending -> running"""
        async with self._session_factory() as db, db.begin():
            repo = SyncRunRepository(db)
            run = await repo.get_for_update(run_id)
            if run is None:
                raise SyncRunNotFoundError(run_id)
            if run.status != SyncRunStatus.PENDING.value:
                return False
            run.status = SyncRunStatus.RUNNING.value
            run.started_at = self._clock()
            return True

    async def update_progress(
        self,
        run_id: str,
        *,
        processed: int | None = None,
        stored: int | None = None,
        updated: int | None = None,
        current_batch: int | None = None,
    ) -> bool:
        """Set the given counters; the others are left untouched"""
        async with self._lock(run_id):
            async with self._session_factory() as db, db.begin():
                run = await SyncRunRepository(db).get_for_update(run_id)
                if run is None:
                    raise SyncRunNotFoundError(run_id)
                if SyncRunStatus(run.status).is_terminal():
                    logger.debug("Ignoring progress update for finished run %s", run_id)
                    return False

                if processed is not None:
                    run.processed_items = processed
                    run.estimated_seconds_remaining = self._estimate_remaining(run)
                if stored is not None:
                    run.stored_items = stored
                if updated is not None:
                    run.updated_items = updated
                if current_batch is not None:
                    run.current_batch = current_batch
                return True

    async def add_error(self, run_id: str, message_id: str, error: str) -> bool:
        """Append an error (keeping the most recent max_errors) and count a failure"""
        entry = SyncErrorEntry(
            message_id=message_id, error=error, timestamp=self._clock().isoformat()
        )
        async with self._lock(run_id):
            async with self._session_factory() as db, db.begin():
                run = await SyncRunRepository(db).get_for_update(run_id)
                if run is None:
                    raise SyncRunNotFoundError(run_id)
                if SyncRunStatus(run.status).is_terminal():
                    logger.debug("Ignoring error for finished run %s", run_id)
                    return False

                # Assign a new list so the JSON column is flagged dirty
                errors = [*(run.errors or []), entry.to_dict()]
                run.errors = errors[-self.max_errors :]
                run.failed_items = run.failed_items + 1
                return True

    async def complete(self, run_id: str, success: bool) -> bool:
        """Move the run to success or failed; terminal runs are left alone"""
        status = SyncRunStatus.SUCCESS if success else SyncRunStatus.FAILED
        return await self._finish(run_id, status)

    async def cancel(self, run_id: str) -> bool:
        return await self._finish(run_id, SyncRunStatus.CANCELLED)

    async def _finish(self, run_id: str, status: SyncRunStatus) -> bool:
        async with self._lock(run_id):
            async with self._session_factory() as db, db.begin():
                finished = await SyncRunRepository(db).update_if_active(
                    run_id,
                    status=status.value,
                    completed_at=self._clock(),
                    estimated_seconds_remaining=None,
                )
        self._locks.pop(run_id, None)
        if finished:
            logger.info("Sync run %s finished: %s", run_id, status.value)
        return finished

    async def get_run(self, run_id: str) -> SyncRunInfo:
        async with self._session_factory() as db:
            run = await SyncRunRepository(db).get_by_id(run_id)
        if run is None:
            raise SyncRunNotFoundError(run_id)
        return _to_info(run)

    async def get_active_runs(self, user_id: str) -> list[SyncRunInfo]:
        async with self._session_factory() as db:
            runs = await SyncRunRepository(db).get_active(user_id)
        return [_to_info(run) for run in runs]

    async def get_recent_runs(self, user_id: str, limit: int = 10) -> list[SyncRunInfo]:
        async with self._session_factory() as db:
            runs = await SyncRunRepository(db).get_recent(user_id, limit)
        return [_to_info(run) for run in runs]

    def _estimate_remaining(self, run: SyncRun) -> float | None:
        started_at = ensure_utc(run.started_at)
        if started_at is None or run.processed_items <= 0:
            return None
        remaining = max(run.total_items - run.processed_items, 0)
        elapsed = (self._clock() - started_at).total_seconds()
        return round(elapsed / run.processed_items * remaining, 2)
