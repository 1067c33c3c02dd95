"""IMAP/SMTP mail backend, delegating Gmail accounts to the REST API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import date, timedelta

from ..core.account_settings import ProtocolSettings
from ..core.errors import RemoteError
from ..core.models import (
    Account,
    FetchResult,
    MailFlags,
    MailFolder,
    MessageChunk,
    OutgoingMail,
    Provider,
)
from ..ingestion.parser import EmailParser
from ..transport.imap_client import ImapClient, ImapError
from ..transport.smtp_client import SmtpClient, SmtpError
from .gmail import GmailBackend

LOGGER = logging.getLogger(__name__)

ImapFactory = Callable[[ProtocolSettings, Provider], ImapClient]
SmtpFactory = Callable[[ProtocolSettings], SmtpClient]


def flags_from_imap(flags: tuple[str, ...]) -> MailFlags:
    """Translate IMAP system flags into message flags."""
    normalized = {flag.lower() for flag in flags}
    return MailFlags(
        seen="\\seen" in normalized,
        answered="\\answered" in normalized,
        flagged="\\flagged" in normalized,
        deleted="\\deleted" in normalized,
        draft="\\draft" in normalized,
        forwarded="$forwarded" in normalized,
    )


class ImapSmtpBackend:
    """Mail backend for standards-based servers.

    Blocking ``imaplib`` and ``smtplib`` sessions run in worker threads so the
    event loop keeps serving other jobs. Gmail accounts use the REST API for
    reads and sends instead of IMAP.
    """

    def __init__(
        self,
        parser: EmailParser | None = None,
        gmail: GmailBackend | None = None,
        timeout: float = 30.0,
        idle_timeout: float = 55.0,
        imap_factory: ImapFactory | None = None,
        smtp_factory: SmtpFactory | None = None,
    ) -> None:
        self._parser = parser or EmailParser()
        self._gmail = gmail or GmailBackend(self._parser, timeout=timeout)
        self._idle_timeout = idle_timeout
        self._imap_factory: ImapFactory = imap_factory or (
            lambda settings, provider: ImapClient(settings, provider, timeout)
        )
        self._smtp_factory: SmtpFactory = smtp_factory or (
            lambda settings: SmtpClient(settings, timeout)
        )

    async def list_folders(
        self, account: Account, settings: ProtocolSettings
    ) -> list[MailFolder]:
        if account.provider is Provider.GMAIL:
            return await self._gmail.list_folders(account, settings)
        return await asyncio.to_thread(self._list_folders_blocking, account, settings)

    async def fetch_recent(
        self, account: Account, settings: ProtocolSettings, folder: str, limit: int
    ) -> FetchResult:
        if account.provider is Provider.GMAIL:
            return await self._gmail.fetch_recent(account, settings, folder, limit)
        chunks = await asyncio.to_thread(
            self._fetch_blocking, account, settings, folder, limit
        )
        result = FetchResult()
        for chunk in chunks:
            message, contents = self._parser.parse(
                account.id,
                folder,
                chunk.uid,
                chunk.raw,
                flags=flags_from_imap(chunk.flags),
                received_at=chunk.internal_date,
            )
            result.messages.append(message)
            result.attachment_content.extend(contents)
        LOGGER.debug(
            "Fetched %d message(s) from %s for %s", len(chunks), folder, account.id
        )
        return result

    async def send(
        self, account: Account, settings: ProtocolSettings, outgoing: OutgoingMail
    ) -> None:
        if account.provider is Provider.GMAIL and settings.access_token is not None:
            await self._gmail.send(account, settings, outgoing)
            return
        await asyncio.to_thread(self._send_blocking, settings, outgoing)

    async def watch(
        self, account: Account, settings: ProtocolSettings, folder: str
    ) -> None:
        """Block in IMAP IDLE until the server reports activity or the wait ends."""
        if account.provider is Provider.GMAIL:
            return
        changed = await asyncio.to_thread(
            self._watch_blocking, account, settings, folder
        )
        LOGGER.debug(
            "IDLE on %s for %s ended (changed=%s)", folder, account.id, changed
        )

    # Blocking helpers ---------------------------------------------------------
    def _list_folders_blocking(
        self, account: Account, settings: ProtocolSettings
    ) -> list[MailFolder]:
        try:
            with self._imap_factory(settings, account.provider) as client:
                entries = client.list_folders()
        except ImapError as exc:
            raise RemoteError(str(exc)) from exc
        return [
            MailFolder(
                account_id=account.id,
                remote_id=name,
                path=name,
                delimiter=delimiter,
            )
            for name, delimiter, _ in entries
        ]

    def _fetch_blocking(
        self, account: Account, settings: ProtocolSettings, folder: str, limit: int
    ) -> list[MessageChunk]:
        since: date | None = None
        if settings.offline_sync_limit is not None:
            since = date.today() - timedelta(days=settings.offline_sync_limit)
        try:
            with self._imap_factory(settings, account.provider) as client:
                return client.fetch_recent(folder, limit, since)
        except ImapError as exc:
            raise RemoteError(str(exc)) from exc

    def _send_blocking(
        self, settings: ProtocolSettings, outgoing: OutgoingMail
    ) -> None:
        try:
            with self._smtp_factory(settings) as client:
                client.send(outgoing)
        except SmtpError as exc:
            raise RemoteError(str(exc)) from exc

    def _watch_blocking(
        self, account: Account, settings: ProtocolSettings, folder: str
    ) -> bool:
        try:
            with self._imap_factory(settings, account.provider) as client:
                return client.watch(folder, self._idle_timeout)
        except ImapError as exc:
            raise RemoteError(str(exc)) from exc


__all__ = ["ImapSmtpBackend", "flags_from_imap"]
