from datetime import datetime
from typing import Any

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mailsync.domain.enums import (AccountSyncStatus, ConnectionHealth,
                                   TokenState)
from mailsync.infrastructure.persistence.models.connected_account import \
    ConnectedAccount
from mailsync.infrastructure.persistence.repositories.base import \
    BaseRepository


def _unless_paused(status: AccountSyncStatus):
    """Status expression that leaves a paused account paused"""
    return case(
        (ConnectedAccount.sync_status == AccountSyncStatus.PAUSED.value, AccountSyncStatus.PAUSED.value),
        else_=status.value,
    )


def _lock_free(stale_before: datetime):
    """Not syncing, or holding a lock taken before ``stale_before`` (a crashed run)"""
    return or_(
        ConnectedAccount.sync_status != AccountSyncStatus.SYNCING.value,
        ConnectedAccount.sync_started_at.is_(None),
        ConnectedAccount.sync_started_at < stale_before,
    )


class ConnectedAccountRepository(BaseRepository[ConnectedAccount]):
    """Repository for connected accounts.

    State transitions are single UPDATE statements that only touch the columns
    they name, so the token manager and the orchestrator never overwrite each
    other's fields. Outcome transitions never move a paused account out of
    "paused"; only resume_sync() does.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(db, ConnectedAccount)

    async def get_by_user(self, user_id: str) -> list[ConnectedAccount]:
        """Get all accounts of a user, oldest first"""
        result = await self.db.execute(
            select(ConnectedAccount)
            .where(ConnectedAccount.user_id == user_id)
            .order_by(ConnectedAccount.created_at, ConnectedAccount.id)
        )
        return list(result.scalars().all())

    async def get_sync_candidates(
        self, user_id: str, provider_types: list[str], stale_before: datetime
    ) -> list[ConnectedAccount]:
        """Accounts of a user eligible for fan-out sync, including stale "syncing" ones"""
        result = await self.db.execute(
            select(ConnectedAccount)
            .where(
                ConnectedAccount.user_id == user_id,
                ConnectedAccount.provider_type.in_(provider_types),
                ConnectedAccount.sync_enabled.is_(True),
                ConnectedAccount.sync_status != AccountSyncStatus.PAUSED.value,
                _lock_free(stale_before),
            )
            .order_by(ConnectedAccount.created_at, ConnectedAccount.id)
        )
        return list(result.scalars().all())

    async def _update_fields(self, account_id: str, **values: Any) -> bool:
        result = await self.db.execute(
            update(ConnectedAccount).where(ConnectedAccount.id == account_id).values(**values)
        )
        return result.rowcount > 0

    async def try_acquire_sync_lock(
        self, account_id: str, now: datetime, stale_before: datetime
    ) -> bool:
        """
        Atomically move the account to "syncing".

        Succeeds only if the account is not paused and not already syncing, or
        if the previous lock was taken before ``stale_before``.
        """
        result = await self.db.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account_id,
                ConnectedAccount.sync_status != AccountSyncStatus.PAUSED.value,
                _lock_free(stale_before),
            )
            .values(sync_status=AccountSyncStatus.SYNCING.value, sync_started_at=now)
        )
        return result.rowcount > 0

    async def pause_sync(self, account_id: str) -> bool:
        """Move the account to "paused" and release its sync lock; False if already paused"""
        result = await self.db.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account_id,
                ConnectedAccount.sync_status != AccountSyncStatus.PAUSED.value,
            )
            .values(sync_status=AccountSyncStatus.PAUSED.value, sync_started_at=None)
        )
        return result.rowcount > 0

    async def resume_sync(self, account_id: str) -> bool:
        """Leave "paused": "active" if the account has synced before, else "idle"; False if not paused"""
        result = await self.db.execute(
            update(ConnectedAccount)
            .where(
                ConnectedAccount.id == account_id,
                ConnectedAccount.sync_status == AccountSyncStatus.PAUSED.value,
            )
            .values(
                sync_status=case(
                    (ConnectedAccount.last_sync_at.is_(None), AccountSyncStatus.IDLE.value),
                    else_=AccountSyncStatus.ACTIVE.value,
                )
            )
        )
        return result.rowcount > 0

    async def mark_sync_succeeded(self, account_id: str, last_sync_at: datetime) -> bool:
        return await self._update_fields(
            account_id,
            sync_status=_unless_paused(AccountSyncStatus.ACTIVE),
            connection_health=ConnectionHealth.HEALTHY.value,
            last_sync_at=last_sync_at,
            sync_started_at=None,
            error_message=None,
            sync_page_token=None,
            sync_cursor_started_at=None,
        )

    async def mark_sync_page_pending(
        self, account_id: str, page_token: str, cursor_started_at: datetime
    ) -> bool:
        """
        Finish a run whose listing was truncated.

        last_sync_at stays where it was so the next run lists the same query
        and continues from ``page_token``.
        """
        return await self._update_fields(
            account_id,
            sync_status=_unless_paused(AccountSyncStatus.ACTIVE),
            connection_health=ConnectionHealth.HEALTHY.value,
            sync_started_at=None,
            error_message=None,
            sync_page_token=page_token,
            sync_cursor_started_at=cursor_started_at,
        )

    async def clear_sync_cursor(self, account_id: str) -> bool:
        return await self._update_fields(
            account_id, sync_page_token=None, sync_cursor_started_at=None
        )

    async def mark_sync_failed(self, account_id: str, error: str) -> bool:
        return await self._update_fields(
            account_id,
            sync_status=_unless_paused(AccountSyncStatus.ERROR),
            connection_health=ConnectionHealth.ERROR.value,
            sync_started_at=None,
            error_message=error,
        )

    async def mark_token_refreshed(self, account_id: str, credentials_encrypted: str, now: datetime) -> bool:
        """Persist a refreshed credential and reset health"""
        return await self._update_fields(
            account_id,
            credentials_encrypted=credentials_encrypted,
            connection_health=ConnectionHealth.HEALTHY.value,
            token_state=TokenState.REFRESHED.value,
            token_last_refreshed_at=now,
            token_refresh_count=ConnectedAccount.token_refresh_count + 1,
            error_message=None,
            last_auth_error=None,
        )

    async def mark_token_stored(self, account_id: str, credentials_encrypted: str) -> bool:
        """Persist a freshly authorized credential and reset health"""
        return await self._update_fields(
            account_id,
            credentials_encrypted=credentials_encrypted,
            connection_health=ConnectionHealth.HEALTHY.value,
            token_state=TokenState.VALID.value,
            error_message=None,
            last_auth_error=None,
            last_auth_error_at=None,
        )

    async def mark_token_failed(
        self, account_id: str, error: str, token_state: TokenState, now: datetime
    ) -> bool:
        """Record a credential failure; the account cannot sync until it is fixed"""
        return await self._update_fields(
            account_id,
            sync_status=_unless_paused(AccountSyncStatus.ERROR),
            connection_health=ConnectionHealth.ERROR.value,
            token_state=token_state.value,
            token_refresh_failures=ConnectedAccount.token_refresh_failures + 1,
            error_message=error,
            last_auth_error=error,
            last_auth_error_at=now,
        )
