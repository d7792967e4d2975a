"""
Sync orchestrator.

Drives list -> fetch -> parse -> store for one account at a time. Every remote
call goes through the account's quota scheduler, credentials come from the
token lifecycle manager, and counters are written to the progress tracker
after each item so pollers see live progress.

Failure policy:
    - a failing item is recorded on the run and the loop moves on
    - token, listing, cancellation and any other account-level failure marks
      the run failed, puts the account in error, and raises SyncFailedError
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mailsync.application.interfaces.providers import (IMailProvider,
                                                       IMailProviderFactory,
                                                       IMessageParser,
                                                       MessageIdPage)
from mailsync.application.interfaces.storage import (IMessageStore,
                                                     MessageStoredHook)
from mailsync.application.services.progress_tracker import ProgressTracker
from mailsync.application.services.quota_scheduler import (
    QuotaScheduler, extract_status_code)
from mailsync.application.services.scheduler_registry import \
    SchedulerRegistry
from mailsync.application.services.token_manager import \
    TokenLifecycleManager
from mailsync.domain.entities.message import MessageRecord, UpsertResult
from mailsync.domain.entities.sync import SyncResult
from mailsync.domain.enums import AccountSyncStatus, ProviderType, SyncKind
from mailsync.domain.exceptions import (AccountNotFoundError,
                                        AccountPausedError,
                                        MailSyncException,
                                        OperationCancelledError,
                                        ProviderUnauthorizedError,
                                        SyncAlreadyRunningError,
                                        SyncFailedError,
                                        UnsupportedProviderError)
from mailsync.infrastructure.config.settings import Settings
from mailsync.infrastructure.messaging.redis_pubsub import (
    SyncProgressPublisher, SyncStage)
from mailsync.infrastructure.persistence.models.connected_account import \
    ConnectedAccount
from mailsync.infrastructure.persistence.repositories.account_repo import \
    ConnectedAccountRepository
from mailsync.shared.telemetry.logging import get_logger
from mailsync.shared.telemetry.tracing import add_span_attributes, traced
from mailsync.shared.utils.datetime import ensure_utc, utc_now

logger = get_logger(__name__)

# Provider answered 401: the token is no good for any further item
UNAUTHORIZED_STATUS = 401


class SyncOrchestrator:
    """End-to-end sync of connected accounts"""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        token_manager: TokenLifecycleManager,
        schedulers: SchedulerRegistry,
        tracker: ProgressTracker,
        message_store: IMessageStore,
        provider_factory: IMailProviderFactory,
        settings: Settings,
        on_message_stored: MessageStoredHook | None = None,
        progress_publisher: SyncProgressPublisher | None = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self._session_factory = session_factory
        self._token_manager = token_manager
        self._schedulers = schedulers
        self._tracker = tracker
        self._store = message_store
        self._providers = provider_factory
        self._settings = settings
        self._on_message_stored = on_message_stored
        self._publisher = progress_publisher
        self._clock = clock
        self._sleep = sleep
        self._hook_tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @traced("sync.account")
    async def sync_account(self, account_id: str) -> SyncResult:
        """
        Sync one account.

        Raises:
            AccountNotFoundError: no such account
            AccountPausedError: the account is paused
            UnsupportedProviderError: no sync provider for the account's kind
            SyncAlreadyRunningError: another run holds the account
            SyncFailedError: the run failed; ``.result`` has the partial counts
        """
        account = await self._load_account(account_id)
        if not self._providers.supports(account.provider_type):
            raise UnsupportedProviderError(account.provider_type)
        if account.sync_status == AccountSyncStatus.PAUSED.value:
            raise AccountPausedError(account.id)

        await self._acquire_sync_lock(account.id)
        logger.info("Starting sync for account %s (%s)", account.id, account.email_address)

        result = SyncResult(account_id=account.id)
        try:
            await self._run(account, result)
        except asyncio.CancelledError:
            await self._fail(account, result, OperationCancelledError(account.id))
            raise
        except Exception as e:
            reason = await self._fail(account, result, e)
            raise SyncFailedError(account.id, reason, result) from e

        logger.info(
            "Sync completed for account %s: %d listed, %d stored, %d updated, %d errors",
            account.id,
            result.fetched,
            result.stored,
            result.updated,
            len(result.errors),
        )
        return result

    async def sync_user_accounts(self, user_id: str) -> dict[str, SyncResult]:
        """
        Sync every eligible account of a user, at most
        ``sync_max_concurrent_accounts`` at a time. Each account's outcome is
        collected independently.
        """
        async with self._session_factory() as db:
            accounts = await ConnectedAccountRepository(db).get_sync_candidates(
                user_id,
                [p for p in ProviderType.values() if self._providers.supports(p)],
                self._stale_before(self._clock()),
            )

        if not accounts:
            logger.info("No accounts to sync for user %s", user_id)
            return {}

        semaphore = asyncio.Semaphore(self._settings.sync_max_concurrent_accounts)

        async def sync_one(account: ConnectedAccount) -> SyncResult:
            async with semaphore:
                try:
                    return await self.sync_account(account.id)
                except SyncFailedError as e:
                    return e.result
                except Exception as e:
                    logger.warning("Sync skipped for account %s: %s", account.id, e)
                    failed = SyncResult(account_id=account.id)
                    failed.add_error(
                        e.message if isinstance(e, MailSyncException) else str(e),
                        self._settings.sync_max_error_entries,
                    )
                    return failed

        results = await asyncio.gather(*(sync_one(account) for account in accounts))
        outcome = {account.id: result for account, result in zip(accounts, results)}
        logger.info(
            "Synced %d accounts for user %s (%d succeeded)",
            len(outcome),
            user_id,
            sum(1 for r in outcome.values() if r.success),
        )
        return outcome

    async def disconnect_account(self, account_id: str) -> None:
        """Cancel the account's pending provider calls, then revoke and delete it"""
        cancelled = self._schedulers.discard(account_id)
        if cancelled:
            logger.info("Cancelled %d pending operations for account %s", cancelled, account_id)
        await self._token_manager.revoke(account_id)

    async def pause_account(self, account_id: str) -> bool:
        """
        Stop syncing an account until it is resumed.

        Pending provider calls are cancelled and a run in progress stops at its
        next call. Returns False if the account was already paused.
        """
        async with self._session_factory() as db, db.begin():
            repo = ConnectedAccountRepository(db)
            if await repo.get_by_id(account_id) is None:
                raise AccountNotFoundError(account_id)
            paused = await repo.pause_sync(account_id)

        cancelled = self._schedulers.discard(account_id)
        logger.info(
            "Sync paused for account %s (%d pending operations cancelled)", account_id, cancelled
        )
        return paused

    async def resume_account(self, account_id: str) -> bool:
        """Make a paused account eligible for sync again; False if it was not paused"""
        async with self._session_factory() as db, db.begin():
            repo = ConnectedAccountRepository(db)
            if await repo.get_by_id(account_id) is None:
                raise AccountNotFoundError(account_id)
            resumed = await repo.resume_sync(account_id)

        if resumed:
            logger.info("Sync resumed for account %s", account_id)
        return resumed

    async def wait_for_hooks(self) -> None:
        """Wait for outstanding message-stored hook calls"""
        if self._hook_tasks:
            await asyncio.gather(*list(self._hook_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(self, account: ConnectedAccount, result: SyncResult) -> None:
        settings = self._settings
        scheduler = self._schedulers.get(account.id)
        list_cost = settings.quota_cost(account.provider_type, "list")
        get_cost = settings.quota_cost(account.provider_type, "get")

        token = await self._token_manager.get_valid_token(account.id)
        provider = self._providers.create_provider(account.provider_type, token)
        parser = self._providers.create_parser(account.provider_type)

        last_sync = ensure_utc(account.last_sync_at)
        kind = SyncKind.INCREMENTAL if last_sync else SyncKind.INITIAL
        since = last_sync or ensure_utc(account.sync_window_start)
        query = provider.since_query(since)
        result.kind = kind

        await self._publish(account, SyncStage.STARTED, f"{kind.value.capitalize()} sync started")

        # Messages arriving after this instant are picked up by the next run.
        # A listing resumed from a page token keeps the instant it first began.
        resume_token = account.sync_page_token
        sync_started_at = self._clock()
        if resume_token and account.sync_cursor_started_at is not None:
            sync_started_at = ensure_utc(account.sync_cursor_started_at)

        await self._publish(account, SyncStage.LISTING, "Listing messages")
        page = await self._list_page(
            account, scheduler, provider, query, resume_token, list_cost
        )
        ids = page.ids
        result.fetched = len(ids)
        result.has_more = page.truncated
        if page.truncated:
            logger.info(
                "Account %s has more than %d new messages; the rest follow on the next run",
                account.id,
                len(ids),
            )
        add_span_attributes(messages_listed=len(ids), sync_kind=kind.value)

        run_id = await self._tracker.create_run(
            account.id, account.user_id, kind, len(ids), settings.sync_batch_size
        )
        result.sync_run_id = run_id
        await self._tracker.start(run_id)

        processed = 0
        batch_size = settings.sync_batch_size
        for batch_index, start in enumerate(range(0, len(ids), batch_size)):
            if batch_index > 0 and settings.sync_batch_pause_seconds > 0:
                await self._sleep(settings.sync_batch_pause_seconds)

            batch = ids[start : start + batch_size]
            logger.debug(
                "Account %s: batch %d (%d items)", account.id, batch_index + 1, len(batch)
            )

            for external_id in batch:
                try:
                    upsert = await self._process_item(
                        account, scheduler, provider, parser, external_id, get_cost
                    )
                except (OperationCancelledError, ProviderUnauthorizedError):
                    raise
                except Exception as e:
                    error = e.message if isinstance(e, MailSyncException) else str(e)
                    logger.warning(
                        "Failed to sync message %s for account %s: %s",
                        external_id,
                        account.id,
                        error,
                    )
                    await self._tracker.add_error(run_id, external_id, error)
                    result.add_error(f"{external_id}: {error}", settings.sync_max_error_entries)
                else:
                    if upsert.inserted:
                        result.stored += 1
                    else:
                        result.updated += 1

                processed += 1
                await self._tracker.update_progress(
                    run_id,
                    processed=processed,
                    stored=result.stored,
                    updated=result.updated,
                    current_batch=batch_index + 1,
                )

            await self._publish(
                account,
                SyncStage.PROCESSING,
                f"Processed {processed} of {len(ids)} messages",
                run_id=run_id,
                total=len(ids),
                processed=processed,
                stored=result.stored,
                failed=processed - result.stored - result.updated,
            )

        await self._tracker.complete(run_id, success=True)
        async with self._session_factory() as db, db.begin():
            repo = ConnectedAccountRepository(db)
            if page.next_page_token:
                await repo.mark_sync_page_pending(
                    account.id, page.next_page_token, sync_started_at
                )
            else:
                await repo.mark_sync_succeeded(account.id, sync_started_at)
        result.success = True

        await self._publish(
            account,
            SyncStage.COMPLETED,
            "Sync completed successfully",
            run_id=run_id,
            total=len(ids),
            processed=processed,
            stored=result.stored,
            failed=processed - result.stored - result.updated,
        )

    async def _list_page(
        self,
        account: ConnectedAccount,
        scheduler: QuotaScheduler,
        provider: IMailProvider,
        query: str | None,
        page_token: str | None,
        cost: int,
    ) -> MessageIdPage:
        try:
            return await scheduler.execute(
                lambda: provider.list_message_ids(
                    query, self._settings.sync_list_max_results, page_token
                ),
                cost=cost,
            )
        except OperationCancelledError:
            raise
        except Exception:
            if page_token:
                # The token may have expired; the next run lists from the top again
                async with self._session_factory() as db, db.begin():
                    await ConnectedAccountRepository(db).clear_sync_cursor(account.id)
            raise

    async def _process_item(
        self,
        account: ConnectedAccount,
        scheduler: QuotaScheduler,
        provider: IMailProvider,
        parser: IMessageParser,
        external_id: str,
        get_cost: int,
    ) -> UpsertResult:
        try:
            payload = await scheduler.execute(
                lambda: provider.get_message(external_id), cost=get_cost
            )
        except Exception as e:
            if extract_status_code(e) == UNAUTHORIZED_STATUS:
                raise ProviderUnauthorizedError(account.id, str(e)) from e
            raise

        record = parser.parse(payload)
        upsert = await self._store.upsert(
            account.id,
            external_id,
            record,
            user_id=account.user_id,
            provider_type=account.provider_type,
        )
        if upsert.inserted and self._on_message_stored is not None:
            self._schedule_hook(account.id, upsert.message_id, record)
        return upsert

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_account(self, account_id: str) -> ConnectedAccount:
        async with self._session_factory() as db:
            account = await ConnectedAccountRepository(db).get_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def _stale_before(self, now: datetime) -> datetime:
        return now - timedelta(seconds=self._settings.sync_lock_timeout_seconds)

    async def _acquire_sync_lock(self, account_id: str) -> None:
        now = self._clock()
        async with self._session_factory() as db, db.begin():
            acquired = await ConnectedAccountRepository(db).try_acquire_sync_lock(
                account_id, now, self._stale_before(now)
            )
        if not acquired:
            raise SyncAlreadyRunningError(account_id)

    async def _fail(self, account: ConnectedAccount, result: SyncResult, error: BaseException) -> str:
        """Put the run and the account into their failed states; returns the reason"""
        reason = error.message if isinstance(error, MailSyncException) else str(error)
        reason = reason or error.__class__.__name__
        result.success = False
        result.add_error(reason, self._settings.sync_max_error_entries)
        logger.error("Sync failed for account %s: %s", account.id, reason)

        try:
            if result.sync_run_id is not None:
                if isinstance(error, OperationCancelledError):
                    await self._tracker.cancel(result.sync_run_id)
                else:
                    await self._tracker.complete(result.sync_run_id, success=False)
            async with self._session_factory() as db, db.begin():
                await ConnectedAccountRepository(db).mark_sync_failed(account.id, reason)
        except Exception:
            logger.exception("Could not record sync failure for account %s", account.id)

        await self._publish(
            account, SyncStage.FAILED, "Sync failed", run_id=result.sync_run_id, error=reason
        )
        return reason

    def _schedule_hook(self, account_id: str, message_id: str, record: MessageRecord) -> None:
        assert self._on_message_stored is not None
        task = asyncio.create_task(self._run_hook(account_id, message_id, record))
        self._hook_tasks.add(task)
        task.add_done_callback(self._hook_tasks.discard)

    async def _run_hook(self, account_id: str, message_id: str, record: MessageRecord) -> None:
        assert self._on_message_stored is not None
        try:
            await self._on_message_stored(account_id, message_id, record)
        except Exception as e:
            logger.warning("Message stored hook failed for message %s: %s", message_id, e)

    async def _publish(
        self, account: ConnectedAccount, stage: SyncStage, message: str, **fields: Any
    ) -> None:
        if self._publisher is None:
            return
        await self._publisher.publish_stage(account.user_id, account.id, stage, message, **fields)
