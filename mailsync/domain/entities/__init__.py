"""Domain entities."""

from mailsync.domain.entities.message import (AttachmentInfo, MessageRecord,
                                              UpsertResult)
from mailsync.domain.entities.sync import (SyncErrorEntry, SyncResult,
                                           SyncRunInfo)

__all__ = [
    "AttachmentInfo",
    "MessageRecord",
    "UpsertResult",
    "SyncErrorEntry",
    "SyncResult",
    "SyncRunInfo",
]
