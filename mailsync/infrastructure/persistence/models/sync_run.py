"""Sync run model backing the progress tracker"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.domain.enums import SyncRunStatus
from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import BaseModel


class SyncRun(BaseModel, Base):
    """Per-run counters and bounded per-item error list"""

    __tablename__ = "sync_run"

    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("connected_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)

    kind: Mapped[str] = mapped_column(String, nullable=False)  # initial, incremental
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=SyncRunStatus.PENDING.value, index=True
    )

    total_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stored_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_items: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    current_batch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_batches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    errors: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_seconds_remaining: Mapped[float | None] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<SyncRun(id={self.id}, account={self.account_id}, status={self.status})>"
