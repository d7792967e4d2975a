"""Sync run results and progress snapshots."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mailsync.domain.enums import SyncKind, SyncOutcome, SyncRunStatus


@dataclass
class SyncResult:
    """Result of one sync_account call"""

    account_id: str
    success: bool = False
    fetched: int = 0
    stored: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    sync_run_id: str | None = None
    kind: SyncKind | None = None
    has_more: bool = False  # listing was truncated; the next run continues it

    def add_error(self, error: str, limit: int) -> None:
        """Record an error, keeping only the most recent ``limit`` entries"""
        self.errors.append(error)
        if len(self.errors) > limit:
            del self.errors[: len(self.errors) - limit]


@dataclass(frozen=True)
class SyncErrorEntry:
    """One per-item failure recorded on a run"""

    message_id: str
    error: str
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {"message_id": self.message_id, "error": self.error, "timestamp": self.timestamp}


@dataclass(frozen=True)
class SyncRunInfo:
    """Point-in-time view of a sync run for pollers"""

    id: str
    account_id: str
    user_id: str
    kind: SyncKind
    status: SyncRunStatus
    total_items: int
    processed_items: int
    stored_items: int
    updated_items: int
    failed_items: int
    current_batch: int
    total_batches: int
    batch_size: int
    errors: list[SyncErrorEntry]
    started_at: datetime | None
    completed_at: datetime | None
    estimated_seconds_remaining: float | None

    @property
    def outcome(self) -> SyncOutcome:
        return SyncOutcome.from_status(self.status)

    @property
    def progress_percentage(self) -> float:
        if self.total_items <= 0:
            return 100.0 if self.status.is_terminal() else 0.0
        return round(self.processed_items / self.total_items * 100, 2)

    @property
    def success_rate(self) -> float:
        if self.processed_items <= 0:
            return 0.0
        return round((self.processed_items - self.failed_items) / self.processed_items * 100, 2)
