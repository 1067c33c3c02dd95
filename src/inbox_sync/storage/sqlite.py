"""SQLite-backed record store for accounts, mail, calendar events, and tasks."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator, Sequence
from datetime import datetime
from types import TracebackType
from typing import Any

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utc_now
from ..core.errors import StorageError
from ..core.interfaces import AccountProvider, MailIndex
from ..core.models import (
    Account,
    CalendarAlarm,
    CalendarEvent,
    MailAddress,
    MailAttachment,
    MailFlags,
    MailFolder,
    MailMessage,
    Provider,
    ReminderTask,
    RsvpStatus,
    SearchResult,
    TaskPriority,
    TaskStatus,
)
from .database import open_database
from .search import MailSearchIndex

LOGGER = logging.getLogger(__name__)

_REINDEX_BATCH = 200

_UPSERT_EVENT_SQL = """
INSERT INTO calendar_events (
    id,
    account_id,
    calendar_id,
    remote_id,
    title,
    description,
    location,
    timezone,
    starts_at,
    ends_at,
    all_day,
    recurrence_rule,
    attendees,
    organizer,
    alarms,
    rsvp_status,
    updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(account_id, calendar_id, remote_id) DO UPDATE SET
    title=excluded.title,
    description=excluded.description,
    location=excluded.location,
    timezone=excluded.timezone,
    starts_at=excluded.starts_at,
    ends_at=excluded.ends_at,
    all_day=excluded.all_day,
    recurrence_rule=excluded.recurrence_rule,
    attendees=excluded.attendees,
    organizer=excluded.organizer,
    alarms=excluded.alarms,
    rsvp_status=excluded.rsvp_status,
    updated_at=excluded.updated_at
"""

_UPSERT_TASK_SQL = """
INSERT INTO tasks (
    id,
    account_id,
    list_id,
    remote_id,
    title,
    notes,
    due_at,
    completed_at,
    priority,
    status,
    repeat_rule,
    parent_id,
    snoozed_until,
    created_at,
    updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    list_id=excluded.list_id,
    remote_id=excluded.remote_id,
    title=excluded.title,
    notes=excluded.notes,
    due_at=excluded.due_at,
    completed_at=excluded.completed_at,
    priority=excluded.priority,
    status=excluded.status,
    repeat_rule=excluded.repeat_rule,
    parent_id=excluded.parent_id,
    snoozed_until=excluded.snoozed_until,
    updated_at=excluded.updated_at
"""


class SqliteRecordStore(AccountProvider):
    """Persist synchronized records and keep the mail search index current."""

    def __init__(
        self, settings: StorageSettings, index: MailIndex | None = None
    ) -> None:
        """Open the database, apply migrations, and attach the search index."""
        self._settings = settings
        self._connection = open_database(settings.db_path)
        self._index: MailIndex = (
            index if index is not None else MailSearchIndex(settings.index_dir)
        )

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteRecordStore:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    @property
    def index(self) -> MailIndex:
        return self._index

    # Accounts ----------------------------------------------------------------
    def upsert_account(self, account: Account) -> None:
        """Insert or update an account row."""
        account.updated_at = utc_now()
        self._write(
            """
            INSERT INTO accounts (
                id, provider, display_name, email_address, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                provider=excluded.provider,
                display_name=excluded.display_name,
                email_address=excluded.email_address,
                updated_at=excluded.updated_at
            """,
            (
                account.id,
                account.provider.value,
                account.display_name,
                account.email_address,
                serialize_datetime(account.created_at),
                serialize_datetime(account.updated_at),
            ),
        )

    def get_account(self, account_id: str) -> Account | None:
        row = self._connection.execute(
            "SELECT * FROM accounts WHERE id = ?", (account_id,)
        ).fetchone()
        return _row_to_account(row) if row else None

    def list_accounts(self) -> list[Account]:
        cursor = self._connection.execute("SELECT * FROM accounts ORDER BY created_at")
        return [_row_to_account(row) for row in cursor.fetchall()]

    def upsert_protocol_settings(
        self, account_id: str, settings: dict[str, Any]
    ) -> None:
        """Store the raw settings blob for an account."""
        self._write(
            """
            INSERT INTO account_settings (account_id, settings, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(account_id) DO UPDATE SET
                settings=excluded.settings,
                updated_at=excluded.updated_at
            """,
            (account_id, json.dumps(settings), serialize_datetime(utc_now())),
        )

    def protocol_settings(self, account_id: str) -> dict[str, Any] | None:
        row = self._connection.execute(
            "SELECT settings FROM account_settings WHERE account_id = ?",
            (account_id,),
        ).fetchone()
        if row is None:
            return None
        return json.loads(row["settings"])

    # Mail --------------------------------------------------------------------
    def upsert_mail_messages(self, messages: Sequence[MailMessage]) -> int:
        """Merge ``messages`` keyed by ``(account_id, remote_id)`` in one transaction.

        Every synchronized field is overwritten and ``updated_at`` refreshed;
        local pin, snooze, and send-later state survives. The search index is
        refreshed afterwards; index failures are logged and do not roll back
        the write.
        """
        if not messages:
            return 0
        now = utc_now()
        for message in messages:
            message.updated_at = now
        try:
            with self._connection:
                self._connection.executemany(
                    """
                    INSERT INTO mail_messages (
                        id,
                        account_id,
                        remote_id,
                        thread_id,
                        folder_path,
                        sender,
                        to_recipients,
                        cc_recipients,
                        bcc_recipients,
                        reply_to,
                        subject,
                        preview,
                        body_text,
                        body_html,
                        flags,
                        labels,
                        headers,
                        attachments,
                        sent_at,
                        received_at,
                        pinned,
                        snoozed_until,
                        send_at,
                        created_at,
                        updated_at
                    ) VALUES (
                        ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                        ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                    )
                    ON CONFLICT(account_id, remote_id) DO UPDATE SET
                        thread_id=excluded.thread_id,
                        folder_path=excluded.folder_path,
                        sender=excluded.sender,
                        to_recipients=excluded.to_recipients,
                        cc_recipients=excluded.cc_recipients,
                        bcc_recipients=excluded.bcc_recipients,
                        reply_to=excluded.reply_to,
                        subject=excluded.subject,
                        preview=excluded.preview,
                        body_text=excluded.body_text,
                        body_html=excluded.body_html,
                        flags=excluded.flags,
                        labels=excluded.labels,
                        headers=excluded.headers,
                        attachments=excluded.attachments,
                        sent_at=excluded.sent_at,
                        received_at=excluded.received_at,
                        updated_at=excluded.updated_at
                    """,
                    [_message_params(message) for message in messages],
                )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to store {len(messages)} message(s): {exc}"
            ) from exc

        LOGGER.debug("Stored %d message(s)", len(messages))
        self._update_index(messages)
        return len(messages)

    def upsert_mail_message(self, message: MailMessage) -> None:
        self.upsert_mail_messages([message])

    def get_mail_message(self, message_id: str) -> MailMessage | None:
        row = self._connection.execute(
            "SELECT * FROM mail_messages WHERE id = ?", (message_id,)
        ).fetchone()
        return _row_to_message(row) if row else None

    def list_mail_messages(
        self,
        account_id: str,
        folder: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[MailMessage]:
        """Return messages newest first, optionally restricted to a folder."""
        if folder is None:
            cursor = self._connection.execute(
                """
                SELECT * FROM mail_messages WHERE account_id = ?
                ORDER BY received_at DESC LIMIT ? OFFSET ?
                """,
                (account_id, limit, offset),
            )
        else:
            cursor = self._connection.execute(
                """
                SELECT * FROM mail_messages WHERE account_id = ? AND folder_path = ?
                ORDER BY received_at DESC LIMIT ? OFFSET ?
                """,
                (account_id, folder, limit, offset),
            )
        return [_row_to_message(row) for row in cursor.fetchall()]

    def list_thread_messages(
        self, account_id: str, thread_id: str
    ) -> list[MailMessage]:
        """Return the messages of one conversation, oldest first."""
        cursor = self._connection.execute(
            """
            SELECT * FROM mail_messages WHERE account_id = ? AND thread_id = ?
            ORDER BY received_at ASC
            """,
            (account_id, thread_id),
        )
        return [_row_to_message(row) for row in cursor.fetchall()]

    def list_all_mail_messages(
        self, account_id: str, folder: str | None = None
    ) -> list[MailMessage]:
        """Return every stored message of an account, newest first."""
        return self.list_mail_messages(account_id, folder, limit=-1)

    def upsert_mail_folders(self, folders: Sequence[MailFolder]) -> int:
        if not folders:
            return 0
        try:
            with self._connection:
                self._connection.executemany(
                    """
                    INSERT INTO mail_folders (
                        account_id, remote_id, path, delimiter,
                        unread_count, total_count
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(account_id, remote_id) DO UPDATE SET
                        path=excluded.path,
                        delimiter=excluded.delimiter,
                        unread_count=excluded.unread_count,
                        total_count=excluded.total_count
                    """,
                    [
                        (
                            folder.account_id,
                            folder.remote_id,
                            folder.path,
                            folder.delimiter,
                            folder.unread_count,
                            folder.total_count,
                        )
                        for folder in folders
                    ],
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to store folders: {exc}") from exc
        return len(folders)

    def list_mail_folders(self, account_id: str) -> list[MailFolder]:
        cursor = self._connection.execute(
            "SELECT * FROM mail_folders WHERE account_id = ? ORDER BY path",
            (account_id,),
        )
        return [
            MailFolder(
                account_id=row["account_id"],
                remote_id=row["remote_id"],
                path=row["path"],
                delimiter=row["delimiter"],
                unread_count=row["unread_count"],
                total_count=row["total_count"],
            )
            for row in cursor.fetchall()
        ]

    def count_mail_messages(self, account_id: str | None = None) -> int:
        if account_id is None:
            row = self._connection.execute(
                "SELECT COUNT(*) FROM mail_messages"
            ).fetchone()
        else:
            row = self._connection.execute(
                "SELECT COUNT(*) FROM mail_messages WHERE account_id = ?", (account_id,)
            ).fetchone()
        return int(row[0])

    def save_attachment_content(
        self, attachment_id: str, message_id: str, content: bytes
    ) -> None:
        self._write(
            """
            INSERT INTO attachment_content (attachment_id, message_id, content)
            VALUES (?, ?, ?)
            ON CONFLICT(attachment_id) DO UPDATE SET
                message_id=excluded.message_id,
                content=excluded.content
            """,
            (attachment_id, message_id, sqlite3.Binary(content)),
        )

    def get_attachment_content(self, attachment_id: str) -> bytes | None:
        row = self._connection.execute(
            "SELECT content FROM attachment_content WHERE attachment_id = ?",
            (attachment_id,),
        ).fetchone()
        return bytes(row["content"]) if row else None

    # Local message state -----------------------------------------------------
    def set_message_seen(self, message_id: str, seen: bool) -> bool:
        """Set the seen flag of a stored message; ``False`` if it is unknown."""
        updated = self._write(
            """
            UPDATE mail_messages
            SET flags = json_set(flags, '$.seen', json(?)), updated_at = ?
            WHERE id = ?
            """,
            (json.dumps(seen), serialize_datetime(utc_now()), message_id),
        )
        return updated > 0

    def set_pinned(self, message_id: str, pinned: bool) -> bool:
        updated = self._write(
            "UPDATE mail_messages SET pinned = ?, updated_at = ? WHERE id = ?",
            (int(pinned), serialize_datetime(utc_now()), message_id),
        )
        return updated > 0

    def snooze_message(self, message_id: str, until: datetime | None) -> bool:
        """Hide a message until ``until``; ``None`` clears the snooze."""
        updated = self._write(
            "UPDATE mail_messages SET snoozed_until = ?, updated_at = ? WHERE id = ?",
            (serialize_datetime(until), serialize_datetime(utc_now()), message_id),
        )
        return updated > 0

    def schedule_send(self, message_id: str, send_at: datetime | None) -> bool:
        """Mark a stored draft for sending at ``send_at``; ``None`` cancels."""
        updated = self._write(
            "UPDATE mail_messages SET send_at = ?, updated_at = ? WHERE id = ?",
            (serialize_datetime(send_at), serialize_datetime(utc_now()), message_id),
        )
        return updated > 0

    def due_scheduled_messages(self, now: datetime | None = None) -> list[MailMessage]:
        """Return messages whose send-later time has passed, oldest first."""
        cursor = self._connection.execute(
            """
            SELECT * FROM mail_messages
            WHERE send_at IS NOT NULL AND send_at <= ?
            ORDER BY send_at ASC
            """,
            (serialize_datetime(now or utc_now()),),
        )
        return [_row_to_message(row) for row in cursor.fetchall()]

    # Deletion ----------------------------------------------------------------
    def delete_mail_messages(self, message_ids: Sequence[str]) -> int:
        """Delete messages and their attachment content, then unindex them."""
        if not message_ids:
            return 0
        try:
            with self._connection:
                cursor = self._connection.executemany(
                    "DELETE FROM mail_messages WHERE id = ?",
                    [(message_id,) for message_id in message_ids],
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete messages: {exc}") from exc
        self._remove_from_index(message_ids)
        return cursor.rowcount

    def delete_account(self, account_id: str) -> int:
        """Delete an account with its settings and every synchronized record.

        Returns the number of messages removed. Sync jobs are owned by the job
        store and are not touched here.
        """
        message_ids = [
            row["id"]
            for row in self._connection.execute(
                "SELECT id FROM mail_messages WHERE account_id = ?", (account_id,)
            )
        ]
        try:
            with self._connection:
                for table in (
                    "mail_messages",
                    "mail_folders",
                    "calendar_events",
                    "tasks",
                    "account_settings",
                ):
                    self._connection.execute(
                        f"DELETE FROM {table} WHERE account_id = ?", (account_id,)
                    )
                self._connection.execute(
                    "DELETE FROM accounts WHERE id = ?", (account_id,)
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to delete account {account_id}: {exc}") from exc
        self._remove_from_index(message_ids)
        LOGGER.info(
            "Deleted account %s with %d message(s)", account_id, len(message_ids)
        )
        return len(message_ids)

    # Search ------------------------------------------------------------------
    def search_mail(
        self, query: str, limit: int = 50, account_id: str | None = None
    ) -> SearchResult:
        """Search the term index, falling back to a substring scan on zero hits."""
        items: list[MailMessage] = []
        try:
            hit_ids = self._index.search(query, limit)
        except sqlite3.Error as exc:
            LOGGER.warning("Search index unavailable, using substring scan: %s", exc)
            hit_ids = []
        for message_id in hit_ids:
            message = self.get_mail_message(message_id)
            if message is None:
                continue
            if account_id is not None and message.account_id != account_id:
                continue
            items.append(message)

        if not items:
            items = self._substring_search(query, limit, account_id)
        return SearchResult(total=len(items), items=items)

    def rebuild_search_index(self) -> int:
        """Drop and re-create every indexed document from stored messages."""
        clear = getattr(self._index, "clear", None)
        if callable(clear):
            clear()
        total = 0
        batch: list[MailMessage] = []
        for message in self._iter_all_messages():
            batch.append(message)
            if len(batch) >= _REINDEX_BATCH:
                self._index.index_messages(batch)
                total += len(batch)
                batch = []
        if batch:
            self._index.index_messages(batch)
            total += len(batch)
        LOGGER.info("Rebuilt search index with %d message(s)", total)
        return total

    # Calendar ----------------------------------------------------------------
    def upsert_calendar_events(self, events: Sequence[CalendarEvent]) -> int:
        """Merge events keyed by ``(account_id, calendar_id, remote_id)``."""
        if not events:
            return 0
        try:
            with self._connection:
                self._connection.executemany(
                    _UPSERT_EVENT_SQL, [_event_params(event) for event in events]
                )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to store {len(events)} event(s): {exc}"
            ) from exc
        return len(events)

    def list_calendar_events(
        self, account_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        """Return events overlapping ``[start, end)`` ordered by start time."""
        cursor = self._connection.execute(
            """
            SELECT * FROM calendar_events
            WHERE account_id = ? AND starts_at < ? AND ends_at > ?
            ORDER BY starts_at ASC
            """,
            (account_id, serialize_datetime(end), serialize_datetime(start)),
        )
        return [_row_to_event(row) for row in cursor.fetchall()]

    def get_calendar_event(self, event_id: str) -> CalendarEvent | None:
        row = self._connection.execute(
            "SELECT * FROM calendar_events WHERE id = ?", (event_id,)
        ).fetchone()
        return _row_to_event(row) if row else None

    def replace_calendar_event(self, previous_id: str, event: CalendarEvent) -> None:
        """Store ``event`` and drop the row it was known by before re-keying."""
        try:
            with self._connection:
                self._connection.execute(
                    "DELETE FROM calendar_events WHERE id = ? AND id != ?",
                    (previous_id, event.id),
                )
                self._connection.execute(_UPSERT_EVENT_SQL, _event_params(event))
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to re-key event {previous_id}: {exc}") from exc

    def update_rsvp_status(self, event_id: str, status: RsvpStatus) -> bool:
        """Record the user's response to an invitation; ``False`` if unknown."""
        updated = self._write(
            "UPDATE calendar_events SET rsvp_status = ?, updated_at = ? WHERE id = ?",
            (status.value, serialize_datetime(utc_now()), event_id),
        )
        return updated > 0

    # Tasks -------------------------------------------------------------------
    def upsert_tasks(self, tasks: Sequence[ReminderTask]) -> int:
        """Merge tasks keyed by id in one transaction."""
        if not tasks:
            return 0
        try:
            with self._connection:
                self._connection.executemany(
                    _UPSERT_TASK_SQL, [_task_params(task) for task in tasks]
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to store {len(tasks)} task(s): {exc}") from exc
        return len(tasks)

    def get_task(self, task_id: str) -> ReminderTask | None:
        row = self._connection.execute(
            "SELECT * FROM tasks WHERE id = ?", (task_id,)
        ).fetchone()
        return _row_to_task(row) if row else None

    def replace_task(self, previous_id: str, task: ReminderTask) -> None:
        """Store ``task`` under its new id, moving subtasks off ``previous_id``."""
        try:
            with self._connection:
                self._connection.execute(
                    "DELETE FROM tasks WHERE id = ? AND id != ?",
                    (previous_id, task.id),
                )
                self._connection.execute(_UPSERT_TASK_SQL, _task_params(task))
                self._connection.execute(
                    "UPDATE tasks SET parent_id = ? WHERE parent_id = ?",
                    (task.id, previous_id),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to re-key task {previous_id}: {exc}") from exc

    def list_tasks(self, account_id: str) -> list[ReminderTask]:
        """Return an account's tasks, open items first and then by due date."""
        cursor = self._connection.execute(
            """
            SELECT * FROM tasks WHERE account_id = ?
            ORDER BY status = 'completed', due_at IS NULL, due_at, created_at
            """,
            (account_id,),
        )
        return [_row_to_task(row) for row in cursor.fetchall()]

    def list_subtasks(self, parent_id: str) -> list[ReminderTask]:
        cursor = self._connection.execute(
            "SELECT * FROM tasks WHERE parent_id = ? ORDER BY created_at",
            (parent_id,),
        )
        return [_row_to_task(row) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the primary connection and the search index."""
        self._connection.close()
        closer = getattr(self._index, "close", None)
        if callable(closer):
            closer()

    # Internal helpers --------------------------------------------------------
    def _write(self, statement: str, params: Sequence[Any]) -> int:
        try:
            with self._connection:
                return self._connection.execute(statement, params).rowcount
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc

    def _update_index(self, messages: Sequence[MailMessage]) -> None:
        try:
            self._index.index_messages(messages)
        except (sqlite3.Error, OSError) as exc:
            LOGGER.warning(
                "Search index update failed for %d message(s): %s", len(messages), exc
            )

    def _remove_from_index(self, message_ids: Sequence[str]) -> None:
        try:
            self._index.remove(message_ids)
        except (sqlite3.Error, OSError) as exc:
            LOGGER.warning(
                "Search index removal failed for %d message(s): %s",
                len(message_ids),
                exc,
            )

    def _substring_search(
        self, query: str, limit: int, account_id: str | None
    ) -> list[MailMessage]:
        needle = query.strip().lower()
        if not needle:
            return []
        pattern = "%" + _escape_like(needle) + "%"
        clauses = [
            "(lower(subject) LIKE ? ESCAPE '\\'"
            " OR lower(preview) LIKE ? ESCAPE '\\'"
            " OR lower(coalesce(body_text, '')) LIKE ? ESCAPE '\\')"
        ]
        params: list[Any] = [pattern, pattern, pattern]
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        params.append(limit)
        cursor = self._connection.execute(
            f"SELECT * FROM mail_messages WHERE {' AND '.join(clauses)} "
            "ORDER BY received_at DESC LIMIT ?",
            params,
        )
        return [_row_to_message(row) for row in cursor.fetchall()]

    def _iter_all_messages(self) -> Iterator[MailMessage]:
        cursor = self._connection.execute("SELECT * FROM mail_messages ORDER BY id")
        for row in cursor:
            yield _row_to_message(row)


# Row mapping -----------------------------------------------------------------
def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _addresses_to_json(addresses: Sequence[MailAddress]) -> str:
    return json.dumps(
        [{"address": item.address, "name": item.name} for item in addresses]
    )


def _addresses_from_json(value: str | None) -> list[MailAddress]:
    if not value:
        return []
    return [
        MailAddress(address=item["address"], name=item.get("name"))
        for item in json.loads(value)
    ]


def _message_params(message: MailMessage) -> tuple[Any, ...]:
    flags = message.flags
    return (
        message.id,
        message.account_id,
        message.remote_id,
        message.thread_id,
        message.folder_path,
        _addresses_to_json([message.sender]),
        _addresses_to_json(message.to),
        _addresses_to_json(message.cc),
        _addresses_to_json(message.bcc),
        _addresses_to_json(message.reply_to),
        message.subject,
        message.preview,
        message.body_text,
        message.body_html,
        json.dumps(
            {
                "seen": flags.seen,
                "answered": flags.answered,
                "flagged": flags.flagged,
                "deleted": flags.deleted,
                "draft": flags.draft,
                "forwarded": flags.forwarded,
            }
        ),
        json.dumps(message.labels),
        json.dumps(message.headers),
        json.dumps(
            [
                {
                    "id": attachment.id,
                    "file_name": attachment.file_name,
                    "mime_type": attachment.mime_type,
                    "size": attachment.size,
                    "inline": attachment.inline,
                }
                for attachment in message.attachments
            ]
        ),
        serialize_datetime(message.sent_at),
        serialize_datetime(message.received_at),
        int(message.pinned),
        serialize_datetime(message.snoozed_until),
        serialize_datetime(message.send_at),
        serialize_datetime(message.created_at),
        serialize_datetime(message.updated_at),
    )


def _row_to_message(row: sqlite3.Row) -> MailMessage:
    senders = _addresses_from_json(row["sender"])
    return MailMessage(
        id=row["id"],
        account_id=row["account_id"],
        remote_id=row["remote_id"],
        thread_id=row["thread_id"],
        folder_path=row["folder_path"],
        sender=senders[0] if senders else MailAddress(address=""),
        to=_addresses_from_json(row["to_recipients"]),
        cc=_addresses_from_json(row["cc_recipients"]),
        bcc=_addresses_from_json(row["bcc_recipients"]),
        reply_to=_addresses_from_json(row["reply_to"]),
        subject=row["subject"],
        preview=row["preview"],
        body_text=row["body_text"],
        body_html=row["body_html"],
        flags=MailFlags(**json.loads(row["flags"] or "{}")),
        labels=json.loads(row["labels"] or "[]"),
        headers=json.loads(row["headers"] or "{}"),
        attachments=[
            MailAttachment(**item) for item in json.loads(row["attachments"] or "[]")
        ],
        sent_at=parse_datetime(row["sent_at"]),
        received_at=parse_datetime(row["received_at"]) or utc_now(),
        pinned=bool(row["pinned"]),
        snoozed_until=parse_datetime(row["snoozed_until"]),
        send_at=parse_datetime(row["send_at"]),
        created_at=parse_datetime(row["created_at"]) or utc_now(),
        updated_at=parse_datetime(row["updated_at"]) or utc_now(),
    )


def _event_params(event: CalendarEvent) -> tuple[Any, ...]:
    return (
        event.id,
        event.account_id,
        event.calendar_id,
        event.remote_id,
        event.title,
        event.description,
        event.location,
        event.timezone,
        serialize_datetime(event.starts_at),
        serialize_datetime(event.ends_at),
        int(event.all_day),
        event.recurrence_rule,
        json.dumps(event.attendees),
        event.organizer,
        json.dumps(
            [
                {"minutes_before": alarm.minutes_before, "message": alarm.message}
                for alarm in event.alarms
            ]
        ),
        event.rsvp_status.value,
        serialize_datetime(event.updated_at),
    )


def _row_to_event(row: sqlite3.Row) -> CalendarEvent:
    return CalendarEvent(
        id=row["id"],
        account_id=row["account_id"],
        calendar_id=row["calendar_id"],
        remote_id=row["remote_id"],
        title=row["title"],
        description=row["description"],
        location=row["location"],
        timezone=row["timezone"],
        starts_at=parse_datetime(row["starts_at"]) or utc_now(),
        ends_at=parse_datetime(row["ends_at"]) or utc_now(),
        all_day=bool(row["all_day"]),
        recurrence_rule=row["recurrence_rule"],
        attendees=json.loads(row["attendees"] or "[]"),
        organizer=row["organizer"],
        alarms=[CalendarAlarm(**item) for item in json.loads(row["alarms"] or "[]")],
        rsvp_status=RsvpStatus(row["rsvp_status"]),
        updated_at=parse_datetime(row["updated_at"]) or utc_now(),
    )


def _task_params(task: ReminderTask) -> tuple[Any, ...]:
    return (
        task.id,
        task.account_id,
        task.list_id,
        task.remote_id,
        task.title,
        task.notes,
        serialize_datetime(task.due_at),
        serialize_datetime(task.completed_at),
        task.priority.value,
        task.status.value,
        task.repeat_rule,
        task.parent_id,
        serialize_datetime(task.snoozed_until),
        serialize_datetime(task.created_at),
        serialize_datetime(task.updated_at),
    )


def _row_to_task(row: sqlite3.Row) -> ReminderTask:
    return ReminderTask(
        id=row["id"],
        account_id=row["account_id"],
        list_id=row["list_id"],
        remote_id=row["remote_id"],
        title=row["title"],
        notes=row["notes"],
        due_at=parse_datetime(row["due_at"]),
        completed_at=parse_datetime(row["completed_at"]),
        priority=TaskPriority(row["priority"]),
        status=TaskStatus(row["status"]),
        repeat_rule=row["repeat_rule"],
        parent_id=row["parent_id"],
        snoozed_until=parse_datetime(row["snoozed_until"]),
        created_at=parse_datetime(row["created_at"]) or utc_now(),
        updated_at=parse_datetime(row["updated_at"]) or utc_now(),
    )


def _row_to_account(row: sqlite3.Row) -> Account:
    return Account(
        id=row["id"],
        provider=Provider(row["provider"]),
        display_name=row["display_name"],
        email_address=row["email_address"],
        created_at=parse_datetime(row["created_at"]) or utc_now(),
        updated_at=parse_datetime(row["updated_at"]) or utc_now(),
    )


__all__ = ["SqliteRecordStore"]
