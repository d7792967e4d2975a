from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.infrastructure.persistence.models.message import Message
from mailsync.infrastructure.persistence.repositories.base import \
    BaseRepository


class MessageRepository(BaseRepository[Message]):
    """Repository for stored messages"""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Message)

    async def get_by_external_id(self, account_id: str, external_id: str) -> Message | None:
        """Get message by its provider-side identifier"""
        result = await self.db.execute(
            select(Message).where(
                Message.account_id == account_id, Message.external_id == external_id
            )
        )
        return result.scalar_one_or_none()

    async def get_by_account(
        self, account_id: str, skip: int = 0, limit: int = 100
    ) -> list[Message]:
        """Get messages of an account, newest first"""
        result = await self.db.execute(
            select(Message)
            .where(Message.account_id == account_id)
            .order_by(Message.received_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_by_account(self, account_id: str) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Message).where(Message.account_id == account_id)
        )
        return int(result.scalar_one())

    def apply_mutable_fields(self, message: Message, is_read: bool, labels: list[str]) -> bool:
        """Apply the fields that may change on re-sync; True if anything changed"""
        changed = message.is_read != is_read or list(message.labels or []) != labels
        if changed:
            message.is_read = is_read
            message.labels = labels
        return changed
