from sqlalchemy import event
from sqlalchemy.ext.asyncio import (AsyncEngine, AsyncSession,
                                    async_sessionmaker, create_async_engine)
from sqlalchemy.orm import DeclarativeBase

from mailsync.infrastructure.config.settings import Settings


# Modern SQLAlchemy 2.0 pattern
class Base(DeclarativeBase):
    """Base class for all database models"""

    pass


def build_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    Pool sizing only applies to server databases; SQLite (used in tests and
    single-node deployments) manages its own connections.
    """
    url = settings.database_url
    if "postgresql" in url:
        return create_async_engine(
            url,
            echo=settings.database_echo,
            pool_pre_ping=True,
            pool_size=20,
            max_overflow=30,
            pool_recycle=3600,
            connect_args={
                "server_settings": {"jit": "off"},
                "command_timeout": 60,
            },
        )
    engine = create_async_engine(url, echo=settings.database_echo)
    if url.startswith("sqlite"):
        # Enforce ON DELETE CASCADE when an account is removed
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_all(engine: AsyncEngine) -> None:
    """Create every table known to Base (development and tests)"""
    # Import models so they register with Base.metadata
    from mailsync.infrastructure.persistence import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
