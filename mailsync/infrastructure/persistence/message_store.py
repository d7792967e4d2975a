"""SQL-backed message store with upsert keyed by (account_id, external_id)"""

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.domain.entities.message import MessageRecord, UpsertResult
from mailsync.domain.exceptions import (AccountNotFoundError,
                                        StorageConflictError)
from mailsync.infrastructure.persistence.models.message import Message
from mailsync.infrastructure.persistence.repositories.account_repo import \
    ConnectedAccountRepository
from mailsync.infrastructure.persistence.repositories.message_repo import \
    MessageRepository
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class SqlMessageStore:
    """
    Message store backed by the ``message`` table.

    Each upsert runs in its own short transaction. A concurrent insert of the
    same key surfaces as an IntegrityError from the unique constraint; that is
    a benign duplicate and is resolved by retrying as an update.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def upsert(
        self,
        account_id: str,
        external_id: str,
        record: MessageRecord,
        *,
        user_id: str | None = None,
        provider_type: str | None = None,
    ) -> UpsertResult:
        try:
            return await self._insert_or_update(
                account_id, external_id, record, user_id, provider_type
            )
        except IntegrityError:
            conflict = StorageConflictError(account_id, external_id)
            logger.debug("%s, retrying as update", conflict.message)

        result = await self._update_existing(account_id, external_id, record)
        if result is None:
            # The conflicting row vanished between the two transactions
            raise StorageConflictError(account_id, external_id)
        return result

    async def _insert_or_update(
        self,
        account_id: str,
        external_id: str,
        record: MessageRecord,
        user_id: str | None,
        provider_type: str | None,
    ) -> UpsertResult:
        async with self._session_factory() as db, db.begin():
            repo = MessageRepository(db)
            existing = await repo.get_by_external_id(account_id, external_id)
            if existing is not None:
                repo.apply_mutable_fields(existing, record.is_read, record.labels)
                return UpsertResult(message_id=existing.id, inserted=False)

            if user_id is None or provider_type is None:
                account = await ConnectedAccountRepository(db).get_by_id(account_id)
                if account is None:
                    raise AccountNotFoundError(account_id)
                user_id = account.user_id
                provider_type = account.provider_type

            message = await repo.create(
                Message(
                    account_id=account_id,
                    user_id=user_id,
                    provider_type=provider_type,
                    external_id=external_id,
                    thread_id=record.thread_id,
                    sender=record.sender,
                    recipient=record.recipient,
                    subject=record.subject,
                    body_text=record.body_text,
                    snippet=record.snippet,
                    received_at=record.received_at,
                    is_read=record.is_read,
                    labels=list(record.labels),
                    attachments=[attachment.to_dict() for attachment in record.attachments],
                    raw_metadata=dict(record.raw_metadata),
                )
            )
            return UpsertResult(message_id=message.id, inserted=True)

    async def _update_existing(
        self, account_id: str, external_id: str, record: MessageRecord
    ) -> UpsertResult | None:
        async with self._session_factory() as db, db.begin():
            repo = MessageRepository(db)
            existing = await repo.get_by_external_id(account_id, external_id)
            if existing is None:
                return None
            repo.apply_mutable_fields(existing, record.is_read, record.labels)
            return UpsertResult(message_id=existing.id, inserted=False)
