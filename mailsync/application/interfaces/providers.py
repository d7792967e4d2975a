"""
Provider-facing interfaces (ports).

These protocols define what the sync orchestrator and the token lifecycle
manager need from a remote mailbox provider, independent of its SDK.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from mailsync.domain.entities.message import MessageRecord


@dataclass
class MessageIdPage:
    """One page of remote message identifiers"""

    ids: list[str] = field(default_factory=list)
    next_page_token: str | None = None
    result_size_estimate: int | None = None

    @property
    def truncated(self) -> bool:
        return self.next_page_token is not None


class IMailProvider(Protocol):
    """Remote mailbox operations; each call is wrapped by the quota scheduler"""

    provider_type: str

    def since_query(self, since: datetime | None) -> str | None:
        """Provider query scoped to messages after ``since``; None lists everything"""
        ...

    async def list_message_ids(
        self, query: str | None, max_results: int, page_token: str | None = None
    ) -> MessageIdPage:
        """List one page of message identifiers matching a provider query"""
        ...

    async def get_message(self, external_id: str) -> dict[str, Any]:
        """Fetch the full raw payload of one message"""
        ...


class IMessageParser(Protocol):
    """Turns a raw provider payload into a canonical record"""

    def parse(self, payload: dict[str, Any]) -> MessageRecord:
        """Raises ItemParseError on malformed payloads"""
        ...


class IMailProviderFactory(Protocol):
    """Builds providers bound to one access token"""

    def supports(self, provider_type: str) -> bool:
        ...

    def create_provider(self, provider_type: str, access_token: str) -> IMailProvider:
        ...

    def create_parser(self, provider_type: str) -> IMessageParser:
        ...


class ITokenEndpoint(Protocol):
    """OAuth token endpoint client (not routed through the message quota)"""

    async def refresh_token(self, provider_type: str, refresh_token: str) -> dict[str, Any]:
        """Exchange a refresh token; returns the raw token response"""
        ...

    async def revoke_token(self, provider_type: str, token: str) -> None:
        ...
