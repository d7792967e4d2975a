"""Connected account model: one linked remote mailbox and its encrypted credential"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.domain.enums import (AccountSyncStatus, ConnectionHealth,
                                   TokenState)
from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import BaseModel


class ConnectedAccount(BaseModel, Base):
    """
    Connected mailbox and credentials.

    Inherits from BaseModel:
        - id: CUID primary key
        - created_at: Creation timestamp
        - updated_at: Last update timestamp

    Mutated only by the token lifecycle manager (health, token state) and the
    sync orchestrator (sync status, last sync) for this specific account.
    """

    __tablename__ = "connected_account"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    # Provider configuration
    provider_type: Mapped[str] = mapped_column(String, nullable=False)  # gmail, outlook
    email_address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    display_name: Mapped[str | None] = mapped_column(String, nullable=True)

    # Encrypted credentials (Fernet)
    credentials_encrypted: Mapped[str] = mapped_column(String, nullable=False)

    # Sync state
    sync_status: Mapped[str] = mapped_column(
        String, nullable=False, default=AccountSyncStatus.IDLE.value, index=True
    )  # idle, active, syncing, error, paused
    sync_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sync_window_start: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # Earliest date pulled on the initial sync
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sync_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # Set when the sync lock is taken
    # Resume point while a listing spans several runs
    sync_page_token: Mapped[str | None] = mapped_column(String, nullable=True)
    sync_cursor_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )  # When the paged listing began; becomes last_sync_at once it is drained
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)

    # Health
    connection_health: Mapped[str] = mapped_column(
        String, nullable=False, default=ConnectionHealth.HEALTHY.value
    )
    token_state: Mapped[str] = mapped_column(
        String, nullable=False, default=TokenState.VALID.value
    )  # valid, refreshed, refresh_failed, revoked

    # Token health monitoring
    token_last_refreshed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    token_refresh_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    token_refresh_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_auth_error: Mapped[str | None] = mapped_column(String, nullable=True)
    last_auth_error_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<ConnectedAccount(id={self.id}, "
            f"email={self.email_address}, "
            f"provider={self.provider_type})>"
        )
