"""
OAuth token lifecycle manager.

Owns every read and write of an account's credential: decrypts it for use,
refreshes it ahead of expiry, persists the outcome and keeps the account's
health current. Plaintext tokens never leave this module on their way to
storage.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.interfaces.providers import ITokenEndpoint
from mailsync.domain.enums import TokenState
from mailsync.domain.exceptions import (AccountNotFoundError,
                                        MailSyncException, TokenExpiredError,
                                        TokenRevokedError)
from mailsync.domain.value_objects.credential import (Credential,
                                                      RefreshSummary,
                                                      TokenInfo,
                                                      UnhealthyAccount)
from mailsync.infrastructure.config.settings import Settings
from mailsync.infrastructure.external.email.encryption import \
    CredentialEncryptor
from mailsync.infrastructure.external.email.oauth_client import (
    classify_refresh_error, credential_from_token_response)
from mailsync.infrastructure.persistence.models.connected_account import \
    ConnectedAccount
from mailsync.infrastructure.persistence.repositories.account_repo import \
    ConnectedAccountRepository
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import traced
from mailsync.shared.utils.datetime import utc_now

logger = get_logger(__name__)


class TokenLifecycleManager:
    """
    Per-account access token management.

    Concurrent callers for the same account are serialized by a per-account
    lock and re-read the credential once they hold it, so only the first one
    refreshes. A refresh performed less than ``refresh_cooldown`` ago is
    reused outright.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryptor: CredentialEncryptor,
        token_endpoint: ITokenEndpoint,
        refresh_margin: timedelta = timedelta(minutes=5),
        refresh_cooldown: timedelta = timedelta(seconds=30),
        refresh_when_expiry_unknown: bool = False,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._encryptor = encryptor
        self._token_endpoint = token_endpoint
        self.refresh_margin = refresh_margin
        self.refresh_cooldown = refresh_cooldown
        self.refresh_when_expiry_unknown = refresh_when_expiry_unknown
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}
        self._recent_refreshes: dict[str, tuple[datetime, Credential]] = {}

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        encryptor: CredentialEncryptor,
        token_endpoint: ITokenEndpoint,
    ) -> "TokenLifecycleManager":
        return cls(
            session_factory,
            encryptor,
            token_endpoint,
            refresh_margin=timedelta(seconds=settings.token_refresh_margin_seconds),
            refresh_cooldown=timedelta(seconds=settings.token_refresh_cooldown_seconds),
            refresh_when_expiry_unknown=settings.token_refresh_when_expiry_unknown,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_valid_token(self, account_id: str) -> str:
        """
        Return an access token that is good for at least the refresh margin.

        Raises:
            AccountNotFoundError: no such account
            TokenExpiredError / TokenRevokedError: re-authorization required
            TransientNetworkError: token endpoint unreachable, try again later
            TokenRefreshError: any other refresh failure
        """
        recent = self._recent_refresh(account_id)
        if recent is not None:
            return recent.access_token

        _, credential = await self._load(account_id)
        if not self._needs_refresh(credential):
            return credential.access_token

        async with self._lock(account_id):
            recent = self._recent_refresh(account_id)
            if recent is not None:
                return recent.access_token

            # Another caller may have refreshed while we waited for the lock
            account, credential = await self._load(account_id)
            if not self._needs_refresh(credential):
                return credential.access_token

            credential = await self._refresh_locked(account, credential)
            return credential.access_token

    @traced("token.refresh")
    async def refresh(self, account_id: str) -> str:
        """Refresh unconditionally and return the new access token"""
        async with self._lock(account_id):
            account, credential = await self._load(account_id)
            credential = await self._refresh_locked(account, credential)
            return credential.access_token

    async def store_tokens(self, account_id: str, credential: Credential) -> None:
        """Persist a freshly authorized credential and mark the account healthy"""
        encrypted = self._encryptor.encrypt_credential(credential)
        async with self._session_factory() as db, db.begin():
            updated = await ConnectedAccountRepository(db).mark_token_stored(account_id, encrypted)
        if not updated:
            raise AccountNotFoundError(account_id)

        self._recent_refreshes.pop(account_id, None)
        logger.info(
            "Stored tokens for account %s (has_refresh_token: %s)",
            account_id,
            credential.refresh_token is not None,
        )

    async def revoke(self, account_id: str) -> None:
        """
        Best-effort revocation at the provider, then delete the local account.

        Revocation failures are logged and never block the local cleanup.
        """
        async with self._session_factory() as db:
            account = await ConnectedAccountRepository(db).get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        try:
            credential = self._encryptor.decrypt_credential(account.credentials_encrypted)
            token = credential.refresh_token or credential.access_token
            await self._token_endpoint.revoke_token(account.provider_type, token)
        except Exception as e:
            logger.warning(
                "Token revocation failed for account %s, deleting locally anyway: %s",
                account_id,
                e,
            )

        async with self._session_factory() as db, db.begin():
            repo = ConnectedAccountRepository(db)
            account = await repo.get_by_id(account_id)
            if account is not None:
                await repo.delete(account)

        self._recent_refreshes.pop(account_id, None)
        self._locks.pop(account_id, None)
        logger.info("Disconnected account %s", account_id)

    async def check_accounts_health(self, user_id: str) -> list[UnhealthyAccount]:
        """Try to obtain a valid token for every account of a user; return the failures"""
        async with self._session_factory() as db:
            accounts = await ConnectedAccountRepository(db).get_by_user(user_id)

        unhealthy: list[UnhealthyAccount] = []
        for account in accounts:
            try:
                await self.get_valid_token(account.id)
            except MailSyncException as e:
                unhealthy.append(
                    UnhealthyAccount(
                        account_id=account.id,
                        email_address=account.email_address,
                        provider_type=account.provider_type,
                        error=e.message,
                    )
                )

        if unhealthy:
            logger.warning(
                "%d of %d accounts unhealthy for user %s", len(unhealthy), len(accounts), user_id
            )
        return unhealthy

    async def get_token_info(self, account_id: str) -> TokenInfo:
        """Token status without refreshing and without exposing the token"""
        account, credential = await self._load(account_id)
        return TokenInfo(
            account_id=account_id,
            has_refresh_token=credential.refresh_token is not None,
            expires_at=credential.expires_at,
            state=account.token_state,
            needs_refresh=self._needs_refresh(credential),
        )

    async def refresh_all_tokens(self, user_id: str) -> RefreshSummary:
        """Refresh every account of a user whose token is inside the margin"""
        async with self._session_factory() as db:
            accounts = await ConnectedAccountRepository(db).get_by_user(user_id)

        summary = RefreshSummary()
        for account in accounts:
            try:
                await self.get_valid_token(account.id)
                summary.successful.append(account.id)
            except MailSyncException as e:
                summary.failed[account.id] = e.message

        logger.info(
            "Token refresh for user %s: %d ok, %d failed",
            user_id,
            len(summary.successful),
            len(summary.failed),
        )
        return summary

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        return lock

    def _needs_refresh(self, credential: Credential) -> bool:
        return credential.needs_refresh(
            self._clock(), self.refresh_margin, self.refresh_when_expiry_unknown
        )

    def _recent_refresh(self, account_id: str) -> Credential | None:
        entry = self._recent_refreshes.get(account_id)
        if entry is None:
            return None
        refreshed_at, credential = entry
        if self._clock() - refreshed_at >= self.refresh_cooldown:
            del self._recent_refreshes[account_id]
            return None
        return credential

    async def _load(self, account_id: str) -> tuple[ConnectedAccount, Credential]:
        async with self._session_factory() as db:
            account = await ConnectedAccountRepository(db).get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        try:
            credential = self._encryptor.decrypt_credential(account.credentials_encrypted)
        except ValueError as e:
            error = TokenExpiredError(
                account_id, "Stored credentials could not be read. Please re-authenticate."
            )
            await self._record_failure(account_id, error.message, TokenState.REFRESH_FAILED)
            raise error from e
        return account, credential

    async def _refresh_locked(self, account: ConnectedAccount, credential: Credential) -> Credential:
        if not credential.refresh_token:
            error = TokenExpiredError(account.id)
            await self._record_failure(account.id, error.message, TokenState.REFRESH_FAILED)
            raise error

        logger.info("Refreshing access token for account %s", account.id)
        try:
            token = await self._token_endpoint.refresh_token(
                account.provider_type, credential.refresh_token
            )
            refreshed = credential_from_token_response(token, previous=credential)
        except Exception as e:
            error = classify_refresh_error(account.id, e)
            state = (
                TokenState.REVOKED
                if isinstance(error, TokenRevokedError)
                else TokenState.REFRESH_FAILED
            )
            await self._record_failure(account.id, error.message, state)
            logger.error("Token refresh failed for account %s: %s", account.id, error.message)
            if error is e:
                raise
            raise error from e

        now = self._clock()
        encrypted = self._encryptor.encrypt_credential(refreshed)
        async with self._session_factory() as db, db.begin():
            await ConnectedAccountRepository(db).mark_token_refreshed(account.id, encrypted, now)

        self._recent_refreshes[account.id] = (now, refreshed)
        logger.info(
            "Refreshed access token for account %s (expires at %s)",
            account.id,
            refreshed.expires_at,
        )
        return refreshed

    async def _record_failure(self, account_id: str, error: str, state: TokenState) -> None:
        async with self._session_factory() as db, db.begin():
            await ConnectedAccountRepository(db).mark_token_failed(
                account_id, error, state, self._clock()
            )
