"""Gmail REST adapter for label listing, raw message fetch, and sending."""

from __future__ import annotations

import base64
import binascii
import html
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from ..core.account_settings import ProtocolSettings, secret_value
from ..core.datetime_utils import utc_now
from ..core.errors import ParseError, RemoteError
from ..core.models import (
    Account,
    FetchResult,
    MailFlags,
    MailFolder,
    OutgoingMail,
)
from ..ingestion.parser import EmailParser
from ..transport.http import HttpAdapter, bearer_headers
from ..transport.smtp_client import build_mime_message

LOGGER = logging.getLogger(__name__)

_MAX_PAGE_SIZE = 500
_QUOTE_TRIGGERS = frozenset(' \t"(){}')


def label_query(folder: str) -> str:
    """Build a ``label:`` search term, quoting names that contain spaces."""
    if any(char in _QUOTE_TRIGGERS for char in folder):
        cleaned = folder.replace('"', "")
        return f'label:"{cleaned}"'
    return f"label:{folder}"


def decode_base64url(value: str) -> bytes:
    """Decode URL-safe base64 with or without padding."""
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise ParseError("Gmail returned an undecodable raw message") from exc


def flags_from_labels(label_ids: list[str]) -> MailFlags:
    """Translate Gmail system labels into message flags."""
    labels = set(label_ids)
    return MailFlags(
        seen="UNREAD" not in labels,
        answered="ANSWERED" in labels,
        flagged="STARRED" in labels,
        deleted="TRASH" in labels,
        draft="DRAFT" in labels,
    )


class GmailBackend(HttpAdapter):
    """Client for the Gmail REST API using an OAuth bearer token."""

    API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"

    def __init__(
        self,
        parser: EmailParser | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(timeout=timeout, transport=transport)
        self._parser = parser or EmailParser()

    async def list_folders(
        self, account: Account, settings: ProtocolSettings
    ) -> list[MailFolder]:
        """List labels visible to the account."""
        headers = bearer_headers(secret_value(settings.access_token), "Gmail")
        async with self._client(headers=headers) as client:
            data = await self._json(client, "GET", f"{self.API_BASE}/labels")
        folders = [
            MailFolder(
                account_id=account.id,
                remote_id=label["id"],
                path=label.get("name") or label["id"],
                delimiter="/",
                unread_count=int(label.get("messagesUnread", 0)),
                total_count=int(label.get("messagesTotal", 0)),
            )
            for label in data.get("labels", [])
            if label.get("id")
        ]
        LOGGER.debug("Gmail returned %d label(s) for %s", len(folders), account.id)
        return folders

    async def fetch_recent(
        self, account: Account, settings: ProtocolSettings, folder: str, limit: int
    ) -> FetchResult:
        """Fetch the newest ``limit`` messages carrying label ``folder``."""
        headers = bearer_headers(secret_value(settings.access_token), "Gmail")
        query = label_query(folder)
        if settings.offline_sync_limit is not None:
            since = utc_now() - timedelta(days=settings.offline_sync_limit)
            query += f" after:{since:%Y/%m/%d}"

        result = FetchResult()
        async with self._client(headers=headers) as client:
            entries = await self._google_pages(
                client,
                f"{self.API_BASE}/messages",
                {"maxResults": min(limit, _MAX_PAGE_SIZE), "q": query},
                key="messages",
                limit=limit,
            )
            for entry in entries:
                message_id = entry.get("id")
                if not message_id:
                    continue
                try:
                    detail = await self._json(
                        client,
                        "GET",
                        f"{self.API_BASE}/messages/{message_id}",
                        params={"format": "raw"},
                    )
                    self._append_message(result, account, folder, detail)
                except (RemoteError, ParseError) as exc:
                    LOGGER.warning("Skipping Gmail message %s: %s", message_id, exc)
        return result

    async def send(
        self, account: Account, settings: ProtocolSettings, outgoing: OutgoingMail
    ) -> None:
        """Submit ``outgoing`` through ``messages/send``."""
        headers = bearer_headers(secret_value(settings.access_token), "Gmail")
        raw = base64.urlsafe_b64encode(build_mime_message(outgoing).as_bytes())
        async with self._client(headers=headers) as client:
            await self._request(
                client,
                "POST",
                f"{self.API_BASE}/messages/send",
                json={"raw": raw.decode("ascii")},
            )
        LOGGER.info("Sent Gmail message for %s: %s", account.id, outgoing.subject)

    async def watch(
        self, account: Account, settings: ProtocolSettings, folder: str
    ) -> None:
        """Gmail push requires Pub/Sub; polling covers change detection."""
        LOGGER.debug("Gmail watch is a no-op for %s", account.id)

    def _append_message(
        self,
        result: FetchResult,
        account: Account,
        folder: str,
        detail: dict[str, Any],
    ) -> None:
        raw = detail.get("raw")
        remote_id = detail.get("id")
        if not raw or not remote_id:
            raise ParseError("Gmail message is missing its raw payload")
        label_ids = list(detail.get("labelIds", []))
        received_at = _internal_date(detail.get("internalDate"))
        message, contents = self._parser.parse(
            account.id,
            folder,
            remote_id,
            decode_base64url(raw),
            flags=flags_from_labels(label_ids),
            received_at=received_at,
        )
        if detail.get("threadId"):
            message.thread_id = detail["threadId"]
        if detail.get("snippet"):
            message.preview = html.unescape(detail["snippet"])
        message.labels = label_ids
        result.messages.append(message)
        result.attachment_content.extend(contents)


def _internal_date(value: Any) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value) / 1000, UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


__all__ = ["GmailBackend", "decode_base64url", "flags_from_labels", "label_query"]
