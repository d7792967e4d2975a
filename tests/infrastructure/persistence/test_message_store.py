"""Tests for SqlMessageStore"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from mailsync.domain.entities.message import AttachmentInfo, MessageRecord
from mailsync.domain.exceptions import AccountNotFoundError
from mailsync.infrastructure.persistence.message_store import SqlMessageStore
from mailsync.infrastructure.persistence.repositories.account_repo import \
    ConnectedAccountRepository
from mailsync.infrastructure.persistence.repositories.message_repo import \
    MessageRepository


def make_record(external_id: str = "msg-1", is_read: bool = False, labels=None) -> MessageRecord:
    return MessageRecord(
        external_id=external_id,
        thread_id="thread-1",
        sender="alice@example.com",
        recipient="bob@example.com",
        subject="Hello",
        body_text="Body",
        snippet="Body",
        received_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        is_read=is_read,
        labels=labels if labels is not None else ["INBOX", "UNREAD"],
        attachments=[AttachmentInfo("a.pdf", "application/pdf", 10, "att-1")],
    )


@pytest.fixture
def store(session_factory):
    return SqlMessageStore(session_factory)


@pytest.fixture
async def account(create_account):
    return await create_account()


async def _get(session_factory, account_id, external_id):
    async with session_factory() as db:
        return await MessageRepository(db).get_by_external_id(account_id, external_id)


class TestSqlMessageStore:
    """Tests for upsert keyed by (account_id, external_id)"""

    async def test_insert_new_message(self, store, account, session_factory):
        result = await store.upsert(account.id, "msg-1", make_record())

        assert result.inserted is True
        message = await _get(session_factory, account.id, "msg-1")
        assert message.id == result.message_id
        assert message.user_id == account.user_id
        assert message.provider_type == "gmail"
        assert message.subject == "Hello"
        assert message.attachments[0]["attachment_id"] == "att-1"

    async def test_second_upsert_updates_mutable_fields(self, store, account, session_factory):
        """
        GIVEN a stored unread message
        WHEN the same message is upserted as read with new labels
        THEN the existing row is updated in place
        """
        first = await store.upsert(account.id, "msg-1", make_record())

        second = await store.upsert(
            account.id, "msg-1", make_record(is_read=True, labels=["INBOX", "IMPORTANT"])
        )

        assert second.inserted is False
        assert second.message_id == first.message_id
        message = await _get(session_factory, account.id, "msg-1")
        assert message.is_read is True
        assert message.labels == ["INBOX", "IMPORTANT"]

    async def test_concurrent_upserts_store_one_row(self, store, account, session_factory):
        results = await asyncio.gather(
            *(store.upsert(account.id, "msg-1", make_record()) for _ in range(3))
        )

        assert sum(1 for r in results if r.inserted) == 1
        assert len({r.message_id for r in results}) == 1
        async with session_factory() as db:
            assert await MessageRepository(db).count_by_account(account.id) == 1

    async def test_same_external_id_in_two_accounts(self, store, create_account, session_factory):
        first = await create_account(email_address="a@example.com")
        second = await create_account(email_address="b@example.com")

        a = await store.upsert(first.id, "msg-1", make_record())
        b = await store.upsert(second.id, "msg-1", make_record())

        assert a.inserted and b.inserted
        assert a.message_id != b.message_id

    async def test_missing_account(self, store):
        with pytest.raises(AccountNotFoundError):
            await store.upsert("missing", "msg-1", make_record())

    async def test_messages_listed_newest_first(self, store, account, session_factory):
        older = make_record("msg-old")
        newer = replace(
            older, external_id="msg-new", received_at=datetime(2024, 2, 1, tzinfo=timezone.utc)
        )
        await store.upsert(account.id, "msg-old", older)
        await store.upsert(account.id, "msg-new", newer)

        async with session_factory() as db:
            messages = await MessageRepository(db).get_by_account(account.id)
            page = await MessageRepository(db).get_by_account(account.id, skip=1, limit=1)

        assert [m.external_id for m in messages] == ["msg-new", "msg-old"]
        assert [m.external_id for m in page] == ["msg-old"]

    async def test_deleting_account_removes_its_messages(self, store, account, session_factory):
        await store.upsert(account.id, "msg-1", make_record())

        async with session_factory() as db, db.begin():
            repo = ConnectedAccountRepository(db)
            await repo.delete(await repo.get_by_id(account.id))

        async with session_factory() as db:
            assert await MessageRepository(db).count_by_account(account.id) == 0
