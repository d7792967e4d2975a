from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.enums import SyncRunStatus
from mailsync.infrastructure.persistence.models.sync_run import SyncRun
from mailsync.infrastructure.persistence.repositories.base import \
    BaseRepository

ACTIVE_STATUSES = [SyncRunStatus.PENDING.value, SyncRunStatus.RUNNING.value]


class SyncRunRepository(BaseRepository[SyncRun]):
    """Repository for sync runs"""

    def __init__(self, db: AsyncSession):
        super().__init__(db, SyncRun)

    async def get_for_update(self, run_id: str) -> SyncRun | None:
        """Get a run with a row lock (no-op on SQLite)"""
        result = await self.db.execute(
            select(SyncRun).where(SyncRun.id == run_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def update_if_active(self, run_id: str, **values: Any) -> bool:
        """Update the named columns unless the run is already terminal"""
        result = await self.db.execute(
            update(SyncRun)
            .where(SyncRun.id == run_id, SyncRun.status.in_(ACTIVE_STATUSES))
            .values(**values)
        )
        return result.rowcount > 0

    async def get_active(self, user_id: str) -> list[SyncRun]:
        result = await self.db.execute(
            select(SyncRun)
            .where(SyncRun.user_id == user_id, SyncRun.status.in_(ACTIVE_STATUSES))
            .order_by(SyncRun.created_at.desc(), SyncRun.id)
        )
        return list(result.scalars().all())

    async def get_recent(self, user_id: str, limit: int = 10) -> list[SyncRun]:
        result = await self.db.execute(
            select(SyncRun)
            .where(SyncRun.user_id == user_id)
            .order_by(SyncRun.created_at.desc(), SyncRun.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
