"""Email orchestration: backend selection, persistence, and stored-mail views."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from ..core.account_settings import ProtocolSettings
from ..core.datetime_utils import utc_now
from ..core.errors import StorageError
from ..core.interfaces import EmailBackend
from ..core.models import (
    Account,
    AttachmentContent,
    ContactSummary,
    MailFlags,
    MailMessage,
    MailThreadSummary,
    OutgoingMail,
    Provider,
)
from ..ingestion.parser import EmailParser
from ..storage.sqlite import SqliteRecordStore
from .ews import EwsBackend
from .imap_smtp import ImapSmtpBackend
from .jmap import JmapBackend

LOGGER = logging.getLogger(__name__)

TRACKER_PATTERNS = (
    "mailtrack",
    "readnotify",
    "yesware",
    "bananatag",
    "streak",
    "mixmax",
    "boomerang",
    "mailchimp.com/track",
    "sendgrid.net",
    "list-manage.com/track",
)

_IMG_TAG = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_ONE_PIXEL = re.compile(
    r"""(?:width\s*=\s*["']?1(?:px)?["']?[^>]*height\s*=\s*["']?1(?:px)?["']?)"""
    r"""|(?:height\s*=\s*["']?1(?:px)?["']?[^>]*width\s*=\s*["']?1(?:px)?["']?)""",
    re.IGNORECASE,
)


def host_key(settings: ProtocolSettings) -> str:
    """Return the remote host used to bound concurrent connections."""
    return (
        settings.imap_host or settings.smtp_host or settings.endpoint or "unknown"
    ).lower()


def detect_trackers(html: str | None) -> list[str]:
    """Return the known tracker patterns referenced by image tags in ``html``."""
    if not html:
        return []
    found: list[str] = []
    for tag in _IMG_TAG.findall(html):
        lowered = tag.lower()
        for pattern in TRACKER_PATTERNS:
            if pattern in lowered and pattern not in found:
                found.append(pattern)
    return found


def strip_tracking_pixels(html: str | None) -> str | None:
    """Remove 1x1 images and images served by known trackers."""
    if not html:
        return html

    def _replace(match: re.Match[str]) -> str:
        tag = match.group(0)
        lowered = tag.lower()
        if _ONE_PIXEL.search(tag) or any(p in lowered for p in TRACKER_PATTERNS):
            return ""
        return tag

    return _IMG_TAG.sub(_replace, html)


class EmailService:
    """Route mail operations to protocol backends and persist the results."""

    def __init__(
        self,
        store: SqliteRecordStore,
        *,
        imap_smtp: EmailBackend | None = None,
        ews: EmailBackend | None = None,
        jmap: EmailBackend | None = None,
        parser: EmailParser | None = None,
        per_host_connections: int = 2,
    ) -> None:
        if per_host_connections <= 0:
            raise ValueError("per_host_connections must be positive")
        self._store = store
        self._parser = parser or EmailParser()
        self._imap_smtp = imap_smtp or ImapSmtpBackend(self._parser)
        self._ews = ews or EwsBackend()
        self._jmap = jmap or JmapBackend()
        self._per_host_connections = per_host_connections
        self._host_limits: dict[str, asyncio.Semaphore] = {}

    strip_tracking_pixels = staticmethod(strip_tracking_pixels)
    detect_trackers = staticmethod(detect_trackers)

    def backend_for(self, provider: Provider) -> EmailBackend:
        """Return the backend serving ``provider``."""
        if provider is Provider.EXCHANGE:
            return self._ews
        if provider is Provider.FASTMAIL:
            return self._jmap
        return self._imap_smtp

    def host_limit(self, settings: ProtocolSettings) -> asyncio.Semaphore:
        """Return the connection semaphore shared by every job on one host."""
        key = host_key(settings)
        semaphore = self._host_limits.get(key)
        if semaphore is None:
            semaphore = asyncio.Semaphore(self._per_host_connections)
            self._host_limits[key] = semaphore
        return semaphore

    # Remote operations -------------------------------------------------------
    async def sync_folders(self, account: Account, settings: ProtocolSettings) -> int:
        backend = self.backend_for(account.provider)
        async with self.host_limit(settings):
            folders = await backend.list_folders(account, settings)
        stored = self._store.upsert_mail_folders(folders)
        LOGGER.info("Stored %d folder(s) for %s", stored, account.id)
        return stored

    async def sync_recent_mail(
        self,
        account: Account,
        settings: ProtocolSettings,
        folder: str,
        limit: int,
    ) -> int:
        """Fetch the newest messages in ``folder`` and merge them into storage."""
        backend = self.backend_for(account.provider)
        async with self.host_limit(settings):
            result = await backend.fetch_recent(account, settings, folder, limit)
        stored = self._store.upsert_mail_messages(result.messages)
        self._save_attachments(result.attachment_content)
        LOGGER.info(
            "Synchronized %d message(s) from %s for %s", stored, folder, account.id
        )
        return stored

    async def send(
        self, account: Account, settings: ProtocolSettings, outgoing: OutgoingMail
    ) -> None:
        backend = self.backend_for(account.provider)
        async with self.host_limit(settings):
            await backend.send(account, settings, outgoing)

    async def watch(
        self, account: Account, settings: ProtocolSettings, folder: str
    ) -> None:
        backend = self.backend_for(account.provider)
        async with self.host_limit(settings):
            await backend.watch(account, settings, folder)

    # Local operations --------------------------------------------------------
    def import_raw_message(
        self,
        account_id: str,
        folder: str,
        remote_id: str,
        raw: bytes,
        flags: MailFlags | None = None,
    ) -> MailMessage:
        """Parse an RFC822 payload obtained out of band and store it."""
        message, contents = self._parser.parse(
            account_id, folder, remote_id, raw, flags=flags
        )
        self._store.upsert_mail_message(message)
        self._save_attachments(contents)
        return message

    def get_attachment_content(self, attachment_id: str) -> bytes | None:
        return self._store.get_attachment_content(attachment_id)

    def list_threads(
        self,
        account_id: str,
        folder: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[MailThreadSummary]:
        """Group stored messages into conversations, pinned and then most recent first.

        Messages snoozed into the future are left out until the snooze ends.
        """
        now = utc_now()
        grouped: dict[str, list[MailMessage]] = defaultdict(list)
        for message in self._store.list_all_mail_messages(account_id, folder):
            if message.snoozed_until is not None and message.snoozed_until > now:
                continue
            grouped[message.thread_id].append(message)

        summaries = [
            _summarize_thread(thread_id, messages)
            for thread_id, messages in grouped.items()
        ]
        summaries.sort(
            key=lambda item: (item.pinned, item.most_recent_at), reverse=True
        )
        return summaries[offset : offset + limit]

    def list_conversations_by_contact(
        self, account_id: str, limit: int = 50, offset: int = 0
    ) -> list[ContactSummary]:
        """Aggregate stored messages per sender, most recent contact first."""
        grouped: dict[str, list[MailMessage]] = defaultdict(list)
        for message in self._store.list_all_mail_messages(account_id):
            address = message.sender.address.strip().lower()
            if address:
                grouped[address].append(message)

        contacts: list[ContactSummary] = []
        for address, messages in grouped.items():
            latest = max(messages, key=lambda item: item.received_at)
            display_name = next(
                (item.sender.name for item in messages if item.sender.name), None
            )
            contacts.append(
                ContactSummary(
                    email_address=address,
                    display_name=latest.sender.name or display_name,
                    latest_subject=latest.subject,
                    message_count=len(messages),
                    unread_count=sum(1 for item in messages if not item.flags.seen),
                    most_recent_at=latest.received_at,
                )
            )
        contacts.sort(key=lambda item: item.most_recent_at, reverse=True)
        return contacts[offset : offset + limit]

    # Local message state -----------------------------------------------------
    def set_message_seen(self, message_id: str, seen: bool) -> bool:
        return self._store.set_message_seen(message_id, seen)

    def set_pinned(self, message_id: str, pinned: bool) -> bool:
        return self._store.set_pinned(message_id, pinned)

    def snooze_message(self, message_id: str, until: datetime) -> bool:
        """Hide the message from thread listings until ``until``."""
        return self._store.snooze_message(message_id, until)

    def unsnooze_message(self, message_id: str) -> bool:
        return self._store.snooze_message(message_id, None)

    def schedule_send(self, message_id: str, send_at: datetime | None) -> bool:
        """Queue a stored draft for sending later, or cancel with ``None``."""
        scheduled = self._store.schedule_send(message_id, send_at)
        if scheduled:
            LOGGER.info("Message %s scheduled for %s", message_id, send_at)
        return scheduled

    def due_scheduled_messages(self) -> list[MailMessage]:
        return self._store.due_scheduled_messages()

    def _save_attachments(self, contents: Iterable[AttachmentContent]) -> None:
        for content in contents:
            try:
                self._store.save_attachment_content(
                    content.attachment_id, content.message_id, content.content
                )
            except StorageError as exc:
                LOGGER.warning(
                    "Failed to store attachment %s: %s", content.attachment_id, exc
                )


def _summarize_thread(
    thread_id: str, messages: list[MailMessage]
) -> MailThreadSummary:
    ordered = sorted(messages, key=lambda item: item.received_at)
    participants: list[str] = []
    for message in ordered:
        address = message.sender.address
        if address and address not in participants:
            participants.append(address)
    return MailThreadSummary(
        thread_id=thread_id,
        subject=ordered[-1].subject,
        participants=participants,
        message_count=len(ordered),
        unread_count=sum(1 for item in ordered if not item.flags.seen),
        most_recent_at=ordered[-1].received_at,
        pinned=any(item.pinned for item in ordered),
    )


__all__ = [
    "TRACKER_PATTERNS",
    "EmailService",
    "detect_trackers",
    "host_key",
    "strip_tracking_pixels",
]
