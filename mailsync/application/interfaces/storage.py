"""Storage interfaces (ports) consumed by the sync orchestrator."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from mailsync.domain.entities.message import MessageRecord, UpsertResult


class IMessageStore(Protocol):
    """Upsert-by-unique-key message storage"""

    async def upsert(
        self,
        account_id: str,
        external_id: str,
        record: MessageRecord,
        *,
        user_id: str | None = None,
        provider_type: str | None = None,
    ) -> UpsertResult:
        """Insert, or update mutable fields if (account_id, external_id) exists"""
        ...


# Called once per newly inserted message (e.g. AI scoring); failures never fail a sync
MessageStoredHook = Callable[[str, str, MessageRecord], Awaitable[None]]
