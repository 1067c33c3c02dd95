"""IMAP transport adapter providing mailbox access."""

from __future__ import annotations

import imaplib
import logging
import re
import time
from collections.abc import Iterator
from datetime import UTC, date, datetime
from types import TracebackType

from ..core.account_settings import ProtocolSettings, secret_value
from ..core.errors import ConfigurationError
from ..core.models import MessageChunk, Provider

LOGGER = logging.getLogger(__name__)

FETCH_ITEMS = "(UID FLAGS INTERNALDATE RFC822)"

_UID_PATTERN = re.compile(rb"UID (\d+)")
_LIST_PATTERN = re.compile(
    rb'\((?P<flags>[^)]*)\) (?P<delimiter>"[^"]*"|NIL) (?P<name>.+)'
)
_MONTHS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


class ImapError(RuntimeError):
    """Wrap low level IMAP errors with additional context."""


def xoauth2_string(username: str, access_token: str) -> str:
    """Build the SASL XOAUTH2 initial response."""
    return f"user={username}\x01auth=Bearer {access_token}\x01\x01"


def imap_date(value: date) -> str:
    """Format ``value`` as an IMAP ``SEARCH SINCE`` date (``dd-Mon-YYYY``)."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


class ImapClient:
    """Thin wrapper around ``imaplib`` offering typed fetch helpers."""

    def __init__(
        self,
        settings: ProtocolSettings,
        provider: Provider = Provider.GENERIC,
        timeout: float | None = None,
    ) -> None:
        """Initialise the client with account settings and provider."""
        self._settings = settings
        self._provider = provider
        self._timeout = timeout
        self._connection: imaplib.IMAP4 | imaplib.IMAP4_SSL | None = None

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapClient:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Open the connection and authenticate."""
        if self._connection is not None:
            return
        host = self._settings.imap_host
        if not host:
            raise ConfigurationError("IMAP host is not configured")
        port = self._settings.imap_port

        try:
            if self._settings.imap_use_ssl:
                LOGGER.debug("Connecting to IMAP host %s:%s via SSL", host, port)
                connection: imaplib.IMAP4 | imaplib.IMAP4_SSL = imaplib.IMAP4_SSL(
                    host, port, timeout=self._timeout
                )
            else:
                LOGGER.debug("Connecting to IMAP host %s:%s without SSL", host, port)
                connection = imaplib.IMAP4(host, port, timeout=self._timeout)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise ImapError(f"Failed to connect to IMAP server {host}: {exc}") from exc

        try:
            self._authenticate(connection)
        except BaseException:
            _safe_logout(connection)
            raise
        self._connection = connection

    def list_folders(self) -> list[tuple[str, str | None, tuple[str, ...]]]:
        """Return ``(name, delimiter, flags)`` for every mailbox on the server."""
        connection = self._require_connection()
        try:
            status, data = connection.list('""', "*")
        except imaplib.IMAP4.error as exc:
            raise ImapError("Failed to list mailboxes") from exc
        if status != "OK":
            raise ImapError("Failed to list mailboxes")

        folders: list[tuple[str, str | None, tuple[str, ...]]] = []
        for line in data:
            if not isinstance(line, bytes):
                continue
            parsed = _parse_list_line(line)
            if parsed is not None:
                folders.append(parsed)
        if not folders:
            folders.append(("INBOX", None, ()))
        return folders

    def select(self, folder: str) -> int:
        """Select ``folder`` read-only and return its message count."""
        connection = self._require_connection()
        try:
            status, data = connection.select(_quote_mailbox(folder), readonly=True)
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"Unable to select mailbox '{folder}'") from exc
        if status != "OK":
            raise ImapError(f"Unable to select mailbox '{folder}'")
        try:
            return int(data[0]) if data and data[0] else 0
        except (TypeError, ValueError):
            return 0

    def fetch_recent(
        self, folder: str, limit: int, since: date | None = None
    ) -> list[MessageChunk]:
        """Fetch up to ``limit`` of the newest messages in ``folder``.

        With ``since`` the candidates come from ``UID SEARCH SINCE``; otherwise
        the last ``limit`` sequence numbers of the mailbox are taken.
        """
        connection = self._require_connection()
        exists = self.select(folder)
        try:
            if since is not None:
                LOGGER.debug("Searching %s for messages since %s", folder, since)
                status, data = connection.uid(
                    "SEARCH", None, "SINCE", imap_date(since)  # type: ignore[arg-type]
                )
                if status != "OK":
                    raise ImapError(f"Failed to search mailbox '{folder}'")
                raw_ids = data[0].split() if data and data[0] else []
                uids = sorted((int(uid) for uid in raw_ids), reverse=True)[:limit]
                if not uids:
                    return []
                uid_set = ",".join(str(uid) for uid in sorted(uids))
                status, fetch_data = connection.uid("FETCH", uid_set, FETCH_ITEMS)
            else:
                if exists <= 0 or limit <= 0:
                    return []
                start = max(1, exists - limit + 1)
                LOGGER.debug("Fetching sequence range %s:%s", start, exists)
                status, fetch_data = connection.fetch(f"{start}:{exists}", FETCH_ITEMS)
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"IMAP error while fetching '{folder}'") from exc
        if status != "OK":
            raise ImapError(f"Failed to fetch messages from '{folder}'")

        return list(_iter_chunks(fetch_data))

    def watch(self, folder: str, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for mailbox activity.

        Returns ``True`` when the server reported new or expunged messages.
        """
        connection = self._require_connection()
        self.select(folder)
        try:
            connection.noop()
            idle = getattr(connection, "idle", None)
            if callable(idle):
                with idle(duration=timeout) as responses:
                    for response_type, _ in responses:
                        if response_type in ("EXISTS", "EXPUNGE", "RECENT"):
                            return True
                return False
            time.sleep(timeout)
            status, _ = connection.noop()
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"IMAP error while watching '{folder}'") from exc
        return status == "OK" and bool(connection.untagged_responses.get("EXISTS"))

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        if self._connection is None:
            return
        try:
            LOGGER.debug("Closing IMAP connection")
            if self._connection.state == "SELECTED":
                self._connection.close()
        except imaplib.IMAP4.error:  # pragma: no cover - depends on server state
            LOGGER.debug("IMAP close raised; continuing with logout")
        finally:
            _safe_logout(self._connection)
            self._connection = None

    # Internal helpers ---------------------------------------------------------
    def _authenticate(self, connection: imaplib.IMAP4) -> None:
        username = self._settings.username
        token = secret_value(self._settings.access_token)
        password = secret_value(self._settings.password)
        if not username:
            raise ConfigurationError("IMAP username is not configured")

        if token:
            try:
                LOGGER.debug("Authenticating %s with XOAUTH2", username)
                connection.authenticate(
                    "XOAUTH2", lambda _: xoauth2_string(username, token).encode()
                )
                return
            except imaplib.IMAP4.error as exc:
                if self._provider is Provider.GMAIL:
                    raise ImapError(f"XOAUTH2 authentication failed: {exc}") from exc
                LOGGER.warning(
                    "XOAUTH2 rejected for %s; falling back to password login", username
                )
            self._login(connection, username, password or token)
            return

        if password:
            self._login(connection, username, password)
            return

        raise ConfigurationError("missing authentication material for IMAP login")

    @staticmethod
    def _login(connection: imaplib.IMAP4, username: str, password: str) -> None:
        LOGGER.debug("Authenticating as %s", username)
        try:
            connection.login(username, password)
        except imaplib.IMAP4.error as exc:
            raise ImapError(f"IMAP login failed for {username}: {exc}") from exc

    def _require_connection(self) -> imaplib.IMAP4 | imaplib.IMAP4_SSL:
        if self._connection is None:
            raise ImapError("IMAP connection has not been established")
        return self._connection


def _safe_logout(connection: imaplib.IMAP4) -> None:
    try:
        connection.logout()
    except (imaplib.IMAP4.error, OSError):  # pragma: no cover
        LOGGER.debug("IMAP logout raised; suppressing during shutdown")


def _quote_mailbox(name: str) -> str:
    if name.startswith('"') or not any(char in name for char in ' "\\'):
        return name
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _parse_list_line(line: bytes) -> tuple[str, str | None, tuple[str, ...]] | None:
    match = _LIST_PATTERN.match(line)
    if match is None:
        return None
    flags = tuple(flag.decode() for flag in match.group("flags").split())
    raw_delimiter = match.group("delimiter")
    delimiter = None if raw_delimiter == b"NIL" else raw_delimiter.strip(b'"').decode()
    name = match.group("name").strip().strip(b'"').decode("utf-8", errors="replace")
    return name, delimiter, flags


def _iter_chunks(
    fetch_data: list[tuple[bytes, bytes] | bytes],
) -> Iterator[MessageChunk]:
    """Pair RFC822 literals with the UID, flags, and date in their envelope."""
    pending: tuple[bytes, bytes] | None = None
    trailer = b""
    for entry in [*fetch_data, None]:
        if isinstance(entry, bytes):
            trailer += entry
            continue
        if pending is not None:
            chunk = _build_chunk(pending[0] + b" " + trailer, pending[1])
            if chunk is not None:
                yield chunk
        trailer = b""
        pending = entry if isinstance(entry, tuple) and len(entry) == 2 else None


def _build_chunk(envelope: bytes, payload: bytes) -> MessageChunk | None:
    uid_match = _UID_PATTERN.search(envelope)
    if uid_match is None:
        LOGGER.warning("FETCH response without UID skipped")
        return None
    flags = tuple(flag.decode() for flag in imaplib.ParseFlags(envelope))
    internal = imaplib.Internaldate2tuple(envelope)
    internal_date = (
        datetime.fromtimestamp(time.mktime(internal), UTC) if internal else None
    )
    return MessageChunk(
        uid=uid_match.group(1).decode(),
        raw=payload,
        flags=flags,
        internal_date=internal_date,
    )


__all__ = [
    "FETCH_ITEMS",
    "ImapClient",
    "ImapError",
    "imap_date",
    "xoauth2_string",
]
