"""Gmail provider implementation using the Gmail API"""
import asyncio
from datetime import datetime
from functools import partial
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from mailsync.application.interfaces.providers import MessageIdPage
from mailsync.shared.telemetry.logging import get_logger

logger = get_logger(__name__)

GMAIL_MAX_RESULTS = 500  # Gmail's maximum page size for messages.list


async def run_in_thread(func, *args, **kwargs):
    """Run a blocking function in a thread pool to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    if kwargs:
        func = partial(func, **kwargs)
    return await loop.run_in_executor(None, func, *args)


class GmailProvider:
    """
    Gmail API client bound to one access token.

    Holds no refresh logic: the token lifecycle manager hands it a token that
    is valid for the duration of the sync. Every call here is expected to be
    wrapped by the account's quota scheduler.
    """

    provider_type = "gmail"

    def __init__(self, access_token: str, service: Any = None) -> None:
        self._access_token = access_token
        self._service: Any = service

    def _get_service(self) -> Any:
        if self._service is None:
            creds = Credentials(token=self._access_token)
            self._service = build("gmail", "v1", credentials=creds, cache_discovery=False)
        return self._service

    def since_query(self, since: datetime | None) -> str | None:
        """Search query for messages received after ``since`` (None means unscoped)"""
        if since is None:
            return None
        return f"after:{int(since.timestamp())}"

    async def list_message_ids(
        self,
        query: str | None,
        max_results: int = GMAIL_MAX_RESULTS,
        page_token: str | None = None,
    ) -> MessageIdPage:
        """List one page of message ids matching ``query`` (newest first)"""
        params: dict[str, Any] = {
            "userId": "me",
            "maxResults": min(max_results, GMAIL_MAX_RESULTS),
        }
        if query:
            params["q"] = query
        if page_token:
            params["pageToken"] = page_token

        request = self._get_service().users().messages().list(**params)
        results = await run_in_thread(request.execute)

        page = MessageIdPage(
            ids=[msg["id"] for msg in results.get("messages", [])],
            next_page_token=results.get("nextPageToken"),
            result_size_estimate=results.get("resultSizeEstimate"),
        )
        logger.debug("Gmail: listed %d message IDs (query=%r)", len(page.ids), query)
        return page

    async def get_message(self, external_id: str) -> dict[str, Any]:
        """Fetch one full message"""
        request = self._get_service().users().messages().get(
            userId="me", id=external_id, format="full"
        )
        return await run_in_thread(request.execute)
