"""Utilities for parsing raw RFC822 messages into structured models."""

from __future__ import annotations

import html
import re
from collections.abc import Iterable, Sequence
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import ensure_utc, utc_now
from ..core.models import (
    AttachmentContent,
    MailAddress,
    MailAttachment,
    MailFlags,
    MailMessage,
    attachment_record_id,
    mail_record_id,
)

DEFAULT_SUBJECT = "(No subject)"
DEFAULT_ATTACHMENT_NAME = "attachment.bin"
PREVIEW_LENGTH = 200

_TAG_PATTERN = re.compile(r"<[^>]+>")
_SCRIPT_PATTERN = re.compile(r"(?is)<(script|style)[^>]*>.*?</\1>")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_MESSAGE_ID_PATTERN = re.compile(r"<[^<>]+>")


class EmailParser:
    """Convert raw email payloads into normalized messages."""

    def __init__(self) -> None:
        """Prepare internal parser instance."""
        self._parser = BytesParser(policy=policy.default)

    def parse(
        self,
        account_id: str,
        folder: str,
        remote_id: str,
        payload: bytes,
        flags: MailFlags | None = None,
        received_at: datetime | None = None,
    ) -> tuple[MailMessage, list[AttachmentContent]]:
        """Parse raw RFC822 bytes into a :class:`MailMessage` and attachment bytes.

        ``received_at`` is the server arrival time when the protocol supplies
        one; the ``Date`` header and then the current time are used otherwise.
        """
        message = self._parser.parsebytes(payload)
        record_id = mail_record_id(account_id, remote_id)
        sent_at = _try_parse_datetime(message.get("Date"))
        body_text, body_html = _extract_bodies(message)
        if body_text is None and body_html is not None:
            body_text = html_to_text(body_html)
        attachments, contents = _collect_attachments(message, record_id)
        senders = parse_address_list(message.get_all("From", []))

        parsed = MailMessage(
            id=record_id,
            account_id=account_id,
            remote_id=remote_id,
            thread_id=resolve_thread_id(
                references=_header(message, "References"),
                in_reply_to=_header(message, "In-Reply-To"),
                message_id=_header(message, "Message-ID"),
                fallback=remote_id,
            ),
            folder_path=folder,
            sender=senders[0] if senders else MailAddress(address=""),
            to=parse_address_list(message.get_all("To", [])),
            cc=parse_address_list(message.get_all("Cc", [])),
            bcc=parse_address_list(message.get_all("Bcc", [])),
            reply_to=parse_address_list(message.get_all("Reply-To", [])),
            subject=_header(message, "Subject") or DEFAULT_SUBJECT,
            preview=make_preview(body_text),
            body_text=body_text,
            body_html=body_html,
            flags=flags or MailFlags(),
            headers={key: str(value) for key, value in message.items()},
            attachments=attachments,
            sent_at=sent_at,
            received_at=ensure_utc(received_at or sent_at) or utc_now(),
        )
        return parsed, contents


def resolve_thread_id(
    references: str | None,
    in_reply_to: str | None,
    message_id: str | None,
    fallback: str,
) -> str:
    """Pick the conversation root: first References id, In-Reply-To, Message-ID."""
    for value in (references, in_reply_to, message_id):
        if not value:
            continue
        match = _MESSAGE_ID_PATTERN.search(value)
        if match:
            return match.group(0)
        stripped = value.split()
        if stripped:
            return stripped[0]
    return fallback


def parse_address_list(headers: Iterable[str] | str | None) -> list[MailAddress]:
    """Parse ``Name <addr>`` lists from one or more header values."""
    if headers is None:
        return []
    values = [headers] if isinstance(headers, str) else [str(item) for item in headers]
    return [
        MailAddress(address=address, name=name or None)
        for name, address in getaddresses(values)
        if address
    ]


def make_preview(text: str | None) -> str:
    """Return the first characters of ``text`` with whitespace collapsed."""
    if not text:
        return ""
    return _WHITESPACE_PATTERN.sub(" ", text).strip()[:PREVIEW_LENGTH]


def html_to_text(markup: str) -> str:
    """Reduce HTML to readable text for previews and search."""
    without_scripts = _SCRIPT_PATTERN.sub(" ", markup)
    text = html.unescape(_TAG_PATTERN.sub(" ", without_scripts))
    return _WHITESPACE_PATTERN.sub(" ", text).strip()


def _header(message: EmailMessage, name: str) -> str | None:
    value = message.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _collapse_chunks(chunks: Sequence[str], separator: str) -> str | None:
    filtered_chunks = [chunk for chunk in chunks if chunk]
    if not filtered_chunks:
        return None
    return separator.join(filtered_chunks)


def _is_attachment(part: EmailMessage) -> bool:
    disposition = (part.get("Content-Disposition") or "").lower()
    if "attachment" in disposition:
        return True
    return "inline" in disposition and part.get_filename() is not None


def _extract_bodies(message: EmailMessage) -> tuple[str | None, str | None]:
    plain_chunks: list[str] = []
    html_chunks: list[str] = []

    for part in message.walk():
        if part.is_multipart() or _is_attachment(part):
            continue
        content_type = part.get_content_type()
        if content_type not in ("text/plain", "text/html"):
            continue
        try:
            content_obj = part.get_content()
        except (LookupError, ValueError):
            continue
        if not isinstance(content_obj, str):
            continue
        content = content_obj.strip()
        if content_type == "text/plain":
            plain_chunks.append(content)
        else:
            html_chunks.append(content)

    text = _collapse_chunks(plain_chunks, "\n\n")
    markup = _collapse_chunks(html_chunks, "\n")
    return text, markup


def _collect_attachments(
    message: EmailMessage, message_id: str
) -> tuple[list[MailAttachment], list[AttachmentContent]]:
    attachments: list[MailAttachment] = []
    contents: list[AttachmentContent] = []
    for part in message.walk():
        if part.is_multipart() or not _is_attachment(part):
            continue
        payload = part.get_payload(decode=True) or b""
        attachment_id = attachment_record_id(message_id, len(attachments))
        disposition = (part.get("Content-Disposition") or "").lower()
        attachments.append(
            MailAttachment(
                id=attachment_id,
                file_name=part.get_filename() or DEFAULT_ATTACHMENT_NAME,
                mime_type=part.get_content_type(),
                size=len(payload),
                inline=disposition.startswith("inline"),
            )
        )
        if payload:
            contents.append(
                AttachmentContent(
                    attachment_id=attachment_id,
                    message_id=message_id,
                    content=payload,
                )
            )
    return attachments, contents


def _try_parse_datetime(header_value: str | None) -> datetime | None:
    if header_value is None:
        return None
    try:
        return ensure_utc(parsedate_to_datetime(str(header_value)))
    except (TypeError, ValueError):
        return None


__all__ = [
    "DEFAULT_ATTACHMENT_NAME",
    "DEFAULT_SUBJECT",
    "EmailParser",
    "html_to_text",
    "make_preview",
    "parse_address_list",
    "resolve_thread_id",
]
