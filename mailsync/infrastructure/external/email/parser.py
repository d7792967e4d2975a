"""Gmail API message payload parsing"""

import base64
import binascii
from collections.abc import Iterator
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any

from mailsync.domain.entities.message import AttachmentInfo, MessageRecord
from mailsync.domain.exceptions import ItemParseError
from mailsync.shared.utils.datetime import ensure_utc, from_timestamp_ms_utc
from mailsync.shared.utils.html import strip_html

DEFAULT_ADDRESS = "unknown@unknown.com"
DEFAULT_SUBJECT = "(No Subject)"
UNREAD_LABEL = "UNREAD"


def decode_base64url(data: str) -> str:
    """Decode Gmail's base64url body data, tolerating missing padding"""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def _walk_parts(part: dict[str, Any]) -> Iterator[dict[str, Any]]:
    """Depth-first walk over a MIME part tree, root included"""
    yield part
    for child in part.get("parts") or []:
        yield from _walk_parts(child)


class GmailMessageParser:
    """
    Turns a ``users.messages.get(format="full")`` response into a MessageRecord.

    Body preference: text/plain, then HTML stripped to text, then the snippet.
    """

    provider_type = "gmail"

    def parse(self, payload: dict[str, Any]) -> MessageRecord:
        external_id = payload.get("id")
        if not external_id:
            raise ItemParseError("<unknown>", "message has no id")

        root = payload.get("payload")
        if not isinstance(root, dict):
            raise ItemParseError(external_id, "message has no payload")

        try:
            headers = self._headers(root)
            label_ids = list(payload.get("labelIds") or [])
            snippet = payload.get("snippet") or ""
            return MessageRecord(
                external_id=external_id,
                thread_id=payload.get("threadId"),
                sender=headers.get("from") or DEFAULT_ADDRESS,
                recipient=headers.get("to") or DEFAULT_ADDRESS,
                subject=headers.get("subject") or DEFAULT_SUBJECT,
                body_text=self._body(root, snippet),
                snippet=snippet,
                received_at=self._received_at(payload, headers),
                is_read=UNREAD_LABEL not in label_ids,
                labels=label_ids,
                attachments=self._attachments(root),
                raw_metadata={
                    "thread_id": payload.get("threadId"),
                    "label_ids": label_ids,
                    "snippet": snippet,
                    "history_id": payload.get("historyId"),
                    "size_estimate": payload.get("sizeEstimate"),
                },
            )
        except ItemParseError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ItemParseError(external_id, str(e)) from e

    @staticmethod
    def _headers(root: dict[str, Any]) -> dict[str, str]:
        # Header names are case-insensitive; first occurrence wins
        headers: dict[str, str] = {}
        for header in root.get("headers") or []:
            name = header["name"].lower()
            headers.setdefault(name, header.get("value", ""))
        return headers

    @staticmethod
    def _received_at(payload: dict[str, Any], headers: dict[str, str]) -> datetime:
        internal_date = payload.get("internalDate")
        if internal_date:
            return from_timestamp_ms_utc(internal_date)
        if headers.get("date"):
            return ensure_utc(parsedate_to_datetime(headers["date"]))
        raise ItemParseError(payload["id"], "message has no date")

    def _body(self, root: dict[str, Any], snippet: str) -> str:
        plain: str | None = None
        html: str | None = None

        for part in _walk_parts(root):
            data = (part.get("body") or {}).get("data")
            if not data or part.get("filename"):
                continue
            mime_type = (part.get("mimeType") or "").lower()
            try:
                if mime_type == "text/plain" and plain is None:
                    plain = decode_base64url(data)
                elif mime_type == "text/html" and html is None:
                    html = decode_base64url(data)
                elif part is root and not mime_type.startswith("multipart/") and plain is None:
                    plain = decode_base64url(data)
            except (binascii.Error, ValueError):
                continue

        if plain and plain.strip():
            return plain
        if html:
            return strip_html(html)
        return snippet

    @staticmethod
    def _attachments(root: dict[str, Any]) -> list[AttachmentInfo]:
        attachments: list[AttachmentInfo] = []
        for part in _walk_parts(root):
            body = part.get("body") or {}
            if part.get("filename") and body.get("attachmentId"):
                attachments.append(
                    AttachmentInfo(
                        filename=part["filename"],
                        mime_type=part.get("mimeType") or "application/octet-stream",
                        size=int(body.get("size") or 0),
                        attachment_id=body["attachmentId"],
                    )
                )
        return attachments
