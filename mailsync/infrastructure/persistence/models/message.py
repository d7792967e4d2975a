"""Stored message model"""

from datetime import datetime
from typing import Any

from sqlalchemy import (JSON, Boolean, DateTime, ForeignKey, String, Text,
                        UniqueConstraint)
from sqlalchemy.orm import Mapped, mapped_column

from mailsync.infrastructure.persistence.database import Base
from mailsync.infrastructure.persistence.models.mixins import BaseModel


class Message(BaseModel, Base):
    """
    One ingested message.

    The (account_id, external_id) unique constraint is what keeps overlapping
    sync runs from storing duplicates.
    """

    __tablename__ = "message"
    __table_args__ = (
        UniqueConstraint("account_id", "external_id", name="uq_message_account_external"),
    )

    account_id: Mapped[str] = mapped_column(
        String, ForeignKey("connected_account.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    provider_type: Mapped[str] = mapped_column(String, nullable=False)

    external_id: Mapped[str] = mapped_column(String, nullable=False)
    thread_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)

    sender: Mapped[str] = mapped_column(String, nullable=False)
    recipient: Mapped[str] = mapped_column(String, nullable=False)
    subject: Mapped[str] = mapped_column(String, nullable=False)
    body_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    snippet: Mapped[str] = mapped_column(String, nullable=False, default="")
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Mutable on re-sync
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    labels: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    attachments: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    raw_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, external_id={self.external_id}, account={self.account_id})>"
