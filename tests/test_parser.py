"""Tests for RFC822 parsing into mail messages."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

from inbox_sync.core.models import MailFlags, mail_record_id
from inbox_sync.ingestion import EmailParser, resolve_thread_id

FIXTURE_PATH = Path(__file__).parent / "fixtures" / "sample_email.eml"


def test_email_parser_extracts_headers_and_bodies() -> None:
    payload = FIXTURE_PATH.read_bytes()
    parser = EmailParser()

    message, contents = parser.parse(
        "acct-1", "INBOX", "101", payload, flags=MailFlags(seen=True)
    )

    assert message.id == mail_record_id("acct-1", "101")
    assert message.remote_id == "101"
    assert message.subject == "Test Email"
    assert message.sender.address == "sender@example.com"
    assert message.sender.name == "Sender Name"
    assert [item.address for item in message.to] == ["user@example.com"]
    assert [item.address for item in message.cc] == ["another@example.com"]
    assert message.bcc == []
    assert message.thread_id == "<thread@example.com>"
    assert message.body_text == "Hello world."
    assert "<strong>world</strong>" in (message.body_html or "")
    assert message.preview == "Hello world."
    assert message.flags.seen is True
    assert message.received_at == datetime(2025, 10, 24, 15, 0, tzinfo=UTC)
    assert len(message.attachments) == 1
    attachment = message.attachments[0]
    assert attachment.file_name == "note.txt"
    assert attachment.mime_type == "application/octet-stream"
    assert attachment.size == 20
    assert contents[0].attachment_id == attachment.id
    assert contents[0].content == b"This is a note file."


def test_server_received_time_takes_precedence() -> None:
    received = datetime(2025, 10, 25, 8, 30, tzinfo=UTC)

    message, _ = EmailParser().parse(
        "acct-1", "INBOX", "101", FIXTURE_PATH.read_bytes(), received_at=received
    )

    assert message.received_at == received


def test_html_only_message_derives_text() -> None:
    payload = (
        b"From: a@example.com\r\n"
        b"Content-Type: text/html; charset=utf-8\r\n\r\n"
        b"<html><style>p {}</style><p>Quarterly &amp; annual report</p></html>\r\n"
    )

    message, _ = EmailParser().parse("acct-1", "INBOX", "7", payload)

    assert message.subject == "(No subject)"
    assert message.body_text == "Quarterly & annual report"
    assert message.thread_id == "7"


def test_thread_resolution_prefers_references_then_reply_to() -> None:
    assert (
        resolve_thread_id("<root@x> <mid@x>", "<mid@x>", "<self@x>", "9")
        == "<root@x>"
    )
    assert resolve_thread_id(None, "<parent@x>", "<self@x>", "9") == "<parent@x>"
    assert resolve_thread_id(None, None, "<self@x>", "9") == "<self@x>"
    assert resolve_thread_id(None, None, None, "9") == "9"


def test_reply_chain_shares_thread_without_native_id() -> None:
    parser = EmailParser()
    original = (
        b"From: a@example.com\r\nMessage-ID: <root@example.com>\r\n"
        b"Subject: Plan\r\n\r\nFirst\r\n"
    )
    reply = (
        b"From: b@example.com\r\nMessage-ID: <reply@example.com>\r\n"
        b"In-Reply-To: <root@example.com>\r\n"
        b"References: <root@example.com>\r\nSubject: Re: Plan\r\n\r\nSecond\r\n"
    )

    first, _ = parser.parse("acct-1", "INBOX", "1", original)
    second, _ = parser.parse("acct-1", "INBOX", "2", reply)

    assert first.thread_id == second.thread_id == "<root@example.com>"
