"""Tests for GmailMessageParser"""

import base64
from datetime import datetime, timezone

import pytest

from mailsync.domain.exceptions import ItemParseError
from mailsync.infrastructure.external.email.parser import (GmailMessageParser,
                                                           decode_base64url)


def encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def make_payload(parts=None, headers=None, **overrides):
    payload = {
        "id": "msg-1",
        "threadId": "thread-1",
        "labelIds": ["INBOX", "UNREAD"],
        "snippet": "Hello there",
        "internalDate": "1704067200000",
        "historyId": "42",
        "sizeEstimate": 1024,
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": headers
            if headers is not None
            else [
                {"name": "From", "value": "Alice <alice@example.com>"},
                {"name": "To", "value": "bob@example.com"},
                {"name": "Subject", "value": "Quarterly report"},
            ],
            "parts": parts if parts is not None else [],
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def parser():
    return GmailMessageParser()


class TestGmailMessageParser:
    """Tests for payload parsing"""

    def test_parses_headers_and_metadata(self, parser):
        """
        GIVEN a full Gmail message
        WHEN parsing it
        THEN headers, labels and timestamps are mapped onto the record
        """
        record = parser.parse(
            make_payload(parts=[{"mimeType": "text/plain", "body": {"data": encode("Plain body")}}])
        )

        assert record.external_id == "msg-1"
        assert record.thread_id == "thread-1"
        assert record.sender == "Alice <alice@example.com>"
        assert record.recipient == "bob@example.com"
        assert record.subject == "Quarterly report"
        assert record.body_text == "Plain body"
        assert record.received_at == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert record.is_read is False
        assert record.labels == ["INBOX", "UNREAD"]
        assert record.raw_metadata["history_id"] == "42"
        assert record.raw_metadata["size_estimate"] == 1024

    def test_prefers_plain_text_over_html(self, parser):
        record = parser.parse(
            make_payload(
                parts=[
                    {"mimeType": "text/html", "body": {"data": encode("<p>HTML body</p>")}},
                    {"mimeType": "text/plain", "body": {"data": encode("Plain body")}},
                ]
            )
        )

        assert record.body_text == "Plain body"

    def test_falls_back_to_stripped_html(self, parser):
        html = "<style>p {color: red}</style><p>Hello&nbsp;<b>world</b></p><p>Bye</p>"
        record = parser.parse(
            make_payload(parts=[{"mimeType": "text/html", "body": {"data": encode(html)}}])
        )

        assert "Hello" in record.body_text
        assert "world" in record.body_text
        assert "<" not in record.body_text
        assert "color" not in record.body_text

    def test_falls_back_to_snippet(self, parser):
        record = parser.parse(make_payload(parts=[]))

        assert record.body_text == "Hello there"

    def test_nested_parts_and_attachments(self, parser):
        parts = [
            {
                "mimeType": "multipart/alternative",
                "parts": [{"mimeType": "text/plain", "body": {"data": encode("Nested body")}}],
            },
            {
                "mimeType": "application/pdf",
                "filename": "report.pdf",
                "body": {"attachmentId": "att-1", "size": 2048},
            },
        ]

        record = parser.parse(make_payload(parts=parts))

        assert record.body_text == "Nested body"
        assert len(record.attachments) == 1
        attachment = record.attachments[0]
        assert attachment.filename == "report.pdf"
        assert attachment.mime_type == "application/pdf"
        assert attachment.size == 2048
        assert attachment.attachment_id == "att-1"

    def test_single_part_message_body(self, parser):
        payload = make_payload()
        payload["payload"] = {
            "mimeType": "text/plain",
            "headers": payload["payload"]["headers"],
            "body": {"data": encode("Single part")},
        }

        assert parser.parse(payload).body_text == "Single part"

    def test_missing_headers_use_defaults(self, parser):
        record = parser.parse(make_payload(headers=[]))

        assert record.sender == "unknown@unknown.com"
        assert record.recipient == "unknown@unknown.com"
        assert record.subject == "(No Subject)"

    def test_header_names_are_case_insensitive(self, parser):
        record = parser.parse(
            make_payload(headers=[{"name": "subject", "value": "lower"}, {"name": "SUBJECT", "value": "upper"}])
        )

        assert record.subject == "lower"

    def test_read_message(self, parser):
        assert parser.parse(make_payload(labelIds=["INBOX"])).is_read is True

    def test_date_header_when_no_internal_date(self, parser):
        headers = [{"name": "Date", "value": "Tue, 02 Jan 2024 10:00:00 +0200"}]
        payload = make_payload(headers=headers)
        del payload["internalDate"]

        record = parser.parse(payload)

        assert record.received_at == datetime(2024, 1, 2, 8, 0, tzinfo=timezone.utc)

    def test_missing_id_raises(self, parser):
        payload = make_payload()
        del payload["id"]

        with pytest.raises(ItemParseError):
            parser.parse(payload)

    def test_missing_payload_raises(self, parser):
        payload = make_payload()
        del payload["payload"]

        with pytest.raises(ItemParseError) as exc_info:
            parser.parse(payload)
        assert exc_info.value.external_id == "msg-1"

    def test_missing_date_raises(self, parser):
        payload = make_payload()
        del payload["internalDate"]

        with pytest.raises(ItemParseError):
            parser.parse(payload)


def test_decode_base64url_without_padding():
    assert decode_base64url(encode("ab")) == "ab"
    assert decode_base64url(encode("héllo wörld?")) == "héllo wörld?"
