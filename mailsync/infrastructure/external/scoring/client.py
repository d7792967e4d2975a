"""HTTP client for the downstream message scoring service."""

from typing import Any

import httpx

from mailsync.domain.entities.message import MessageRecord
from mailsync.infrastructure.config.settings import Settings
from mailsync.infrastructure.external.scoring.endpoint import EndpointSelector
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

BODY_EXCERPT_LENGTH = 2000


class ScoringHookClient:
    """
    Notifies the scoring service about newly stored messages.

    Used as the orchestrator's ``on_message_stored`` hook. Scoring itself is a
    black box; this only delivers the message summary, switching to the
    fallback endpoint once if the primary fails.
    """

    def __init__(
        self,
        selector: EndpointSelector,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.selector = selector
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringHookClient | None":
        if not settings.scoring_enabled or not settings.scoring_primary_url:
            return None
        return cls(
            EndpointSelector(settings.scoring_primary_url, settings.scoring_fallback_url),
            timeout=settings.scoring_timeout_seconds,
        )

    async def __call__(self, account_id: str, message_id: str, record: MessageRecord) -> None:
        await self.submit(
            {
                "account_id": account_id,
                "message_id": message_id,
                "external_id": record.external_id,
                "sender": record.sender,
                "subject": record.subject,
                "body": record.body_text[:BODY_EXCERPT_LENGTH],
                "received_at": record.received_at.isoformat(),
            }
        )

    async def submit(self, payload: dict[str, Any]) -> None:
        """POST ``payload`` to the current endpoint, falling back at most once"""
        while True:
            base_url = self.selector.current
            try:
                async with httpx.AsyncClient(
                    base_url=base_url, timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.post("/score", json=payload)
                    response.raise_for_status()
            except httpx.HTTPError as e:
                if not self.selector.record_failure(e):
                    raise
                continue

            self.selector.record_success()
            logger.debug("Submitted message %s for scoring via %s", payload.get("message_id"), base_url)
            return
