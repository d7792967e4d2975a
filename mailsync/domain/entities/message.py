"""
Canonical message record.

This is what a provider payload is parsed into before it is upserted into the
message store, independent of the provider's wire format.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class AttachmentInfo:
    """Attachment metadata (content is never downloaded during sync)"""

    filename: str
    mime_type: str
    size: int
    attachment_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class MessageRecord:
    """Parsed message ready for storage"""

    external_id: str
    thread_id: str | None
    sender: str
    recipient: str
    subject: str
    body_text: str
    snippet: str
    received_at: datetime
    is_read: bool
    labels: list[str] = field(default_factory=list)
    attachments: list[AttachmentInfo] = field(default_factory=list)
    raw_metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of an upsert keyed by (account_id, external_id)"""

    message_id: str
    inserted: bool
