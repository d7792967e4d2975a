"""
Composition root.

Builds every long-lived component from Settings and owns their startup and
shutdown. Nothing in the package reaches for module-level singletons; hosts
create one MailSyncApp and pass its parts where they are needed.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mailsync.application.services.progress_tracker import ProgressTracker
from mailsync.application.services.scheduler_registry import \
    SchedulerRegistry
from mailsync.application.services.sync_dispatcher import SyncDispatcher
from mailsync.application.services.sync_orchestrator import SyncOrchestrator
from mailsync.application.services.token_manager import \
    TokenLifecycleManager
from mailsync.infrastructure.config.settings import Settings
from mailsync.infrastructure.external.email.encryption import \
    CredentialEncryptor
from mailsync.infrastructure.external.email.factory import MailProviderFactory
from mailsync.infrastructure.external.email.oauth_client import \
    OAuthTokenClient
from mailsync.infrastructure.external.scoring.client import ScoringHookClient
from mailsync.infrastructure.messaging.redis_pubsub import \
    SyncProgressPublisher
from mailsync.infrastructure.persistence.database import (
    build_engine, build_session_factory, create_all)
from mailsync.infrastructure.persistence.message_store import SqlMessageStore
from mailsync.shared.telemetry.logging import get_logger, setup_logging

logger = get_logger(__name__)


@dataclass
class MailSyncApp:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    encryptor: CredentialEncryptor
    oauth_client: OAuthTokenClient
    token_manager: TokenLifecycleManager
    schedulers: SchedulerRegistry
    tracker: ProgressTracker
    message_store: SqlMessageStore
    provider_factory: MailProviderFactory
    publisher: SyncProgressPublisher | None
    scoring: ScoringHookClient | None
    orchestrator: SyncOrchestrator
    dispatcher: SyncDispatcher

    async def startup(self, create_schema: bool = False) -> None:
        """Connect optional services and start the background workers"""
        setup_logging(self.settings)
        if create_schema:
            await create_all(self.engine)
        if self.publisher is not None:
            await self.publisher.connect()
        self.dispatcher.start()
        logger.info("%s v%s started", self.settings.app_name, self.settings.app_version)

    async def shutdown(self) -> None:
        await self.dispatcher.stop()
        await self.schedulers.shutdown()
        await self.orchestrator.wait_for_hooks()
        if self.publisher is not None:
            await self.publisher.disconnect()
        await self.engine.dispose()
        logger.info("%s stopped", self.settings.app_name)


def build_app(settings: Settings) -> MailSyncApp:
    """Wire every component from ``settings``"""
    engine = build_engine(settings)
    session_factory = build_session_factory(engine)
    encryptor = CredentialEncryptor(settings)
    oauth_client = OAuthTokenClient.from_settings(settings)
    token_manager = TokenLifecycleManager.from_settings(
        settings, session_factory, encryptor, oauth_client
    )
    schedulers = SchedulerRegistry(settings)
    tracker = ProgressTracker(session_factory, max_errors=settings.sync_max_error_entries)
    message_store = SqlMessageStore(session_factory)
    provider_factory = MailProviderFactory()
    publisher = SyncProgressPublisher(settings) if settings.redis_enabled else None
    scoring = ScoringHookClient.from_settings(settings)

    orchestrator = SyncOrchestrator(
        session_factory,
        token_manager,
        schedulers,
        tracker,
        message_store,
        provider_factory,
        settings,
        on_message_stored=scoring,
        progress_publisher=publisher,
    )
    dispatcher = SyncDispatcher(
        orchestrator,
        workers=settings.dispatcher_workers,
        max_queue_size=settings.dispatcher_queue_size,
    )

    return MailSyncApp(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        encryptor=encryptor,
        oauth_client=oauth_client,
        token_manager=token_manager,
        schedulers=schedulers,
        tracker=tracker,
        message_store=message_store,
        provider_factory=provider_factory,
        publisher=publisher,
        scoring=scoring,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
    )
