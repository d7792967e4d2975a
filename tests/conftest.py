"""Shared test fixtures for pytest"""
import asyncio
import os
from datetime import timedelta

# Settings refuses to load without these; set them before any mailsync import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-mailsync")
os.environ.setdefault("ENCRYPTION_SALT", "test-encryption-salt")
os.environ.setdefault("REDIS_ENABLED", "false")

import pytest

from mailsync.domain.value_objects.credential import Credential
from mailsync.infrastructure.config.settings import Settings
from mailsync.infrastructure.external.email.encryption import \
    CredentialEncryptor
from mailsync.infrastructure.persistence.database import (
    build_engine, build_session_factory, create_all)
from mailsync.infrastructure.persistence.models.connected_account import \
    ConnectedAccount
from mailsync.shared.utils.datetime import utc_now


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    """Settings for an isolated SQLite database, with no real waiting"""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path}/test.db",
        secret_key="test-secret-key-for-mailsync",
        encryption_salt="test-encryption-salt",
        redis_enabled=False,
        scheduler_backoff_jitter_seconds=0.0,
        sync_batch_pause_seconds=0.0,
        _env_file=None,
    )


@pytest.fixture
async def engine(settings):
    """Create test database engine with a fresh schema"""
    engine = build_engine(settings)
    await create_all(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def encryptor(settings):
    return CredentialEncryptor(settings)


def make_credential(
    expires_in: timedelta | None = timedelta(hours=1),
    refresh_token: str | None = "refresh-token",
    access_token: str = "access-token",
) -> Credential:
    """Helper to build a credential expiring ``expires_in`` from now"""
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=utc_now() + expires_in if expires_in is not None else None,
    )


@pytest.fixture
def create_account(session_factory, encryptor):
    """Factory fixture inserting a connected account"""

    async def _create(credential: Credential | None = None, **fields) -> ConnectedAccount:
        values = {
            "user_id": "user-1",
            "provider_type": "gmail",
            "email_address": "someone@example.com",
            **fields,
        }
        account = ConnectedAccount(
            credentials_encrypted=encryptor.encrypt_credential(credential or make_credential()),
            **values,
        )
        async with session_factory() as db, db.begin():
            db.add(account)
        return account

    return _create


@pytest.fixture
def load_account(session_factory):
    """Re-read an account from the database"""

    async def _load(account_id: str) -> ConnectedAccount | None:
        async with session_factory() as db:
            return await db.get(ConnectedAccount, account_id)

    return _load
