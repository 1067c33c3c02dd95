"""Tests for the SQLite-backed record store and its search paths."""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from inbox_sync.core.config import StorageSettings
from inbox_sync.core.models import (
    Account,
    CalendarEvent,
    MailAddress,
    MailAttachment,
    MailFlags,
    MailFolder,
    MailMessage,
    Provider,
    ReminderTask,
    TaskStatus,
    event_record_id,
    mail_record_id,
)
from inbox_sync.storage import SqliteRecordStore
from inbox_sync.storage.database import open_database

BASE_TIME = datetime(2025, 10, 24, 15, 0, tzinfo=UTC)


def _message(
    remote_id: str,
    subject: str = "Demo",
    body: str = "Hello",
    account_id: str = "acct-1",
    minutes: int = 0,
) -> MailMessage:
    return MailMessage(
        id=mail_record_id(account_id, remote_id),
        account_id=account_id,
        remote_id=remote_id,
        thread_id=f"thread-{remote_id}",
        folder_path="INBOX",
        sender=MailAddress(address="sender@example.com", name="Sender"),
        subject=subject,
        preview=body[:20],
        body_text=body,
        received_at=BASE_TIME + timedelta(minutes=minutes),
        to=[MailAddress(address="user@example.com")],
        labels=["work"],
        attachments=[
            MailAttachment(
                id=f"att-{remote_id}",
                file_name="note.txt",
                mime_type="text/plain",
                size=5,
            )
        ],
    )


class EmptyIndex:
    """Index that never returns hits, forcing the substring path."""

    def __init__(self) -> None:
        self.indexed: list[str] = []
        self.removed: list[str] = []

    def index_messages(self, messages: Sequence[Any]) -> None:
        self.indexed.extend(message.id for message in messages)

    def remove(self, message_ids: Sequence[str]) -> None:
        self.removed.extend(message_ids)

    def search(self, query: str, limit: int) -> list[str]:
        return []


class BrokenIndex(EmptyIndex):
    def index_messages(self, messages: Sequence[Any]) -> None:
        raise sqlite3.OperationalError("disk I/O error")

    def remove(self, message_ids: Sequence[str]) -> None:
        raise sqlite3.OperationalError("disk I/O error")


def test_upsert_is_idempotent_and_updates_fields(
    record_store: SqliteRecordStore,
) -> None:
    batch = [_message("1"), _message("2", minutes=1)]
    assert record_store.upsert_mail_messages(batch) == 2
    assert record_store.upsert_mail_messages(batch) == 2
    assert record_store.count_mail_messages("acct-1") == 2

    changed = _message("1", subject="Updated subject")
    changed.flags = MailFlags(seen=True, flagged=True)
    record_store.upsert_mail_messages([changed])

    stored = record_store.get_mail_message(mail_record_id("acct-1", "1"))
    assert stored is not None
    assert stored.subject == "Updated subject"
    assert stored.flags.seen and stored.flags.flagged
    assert stored.sender.formatted() == "Sender <sender@example.com>"
    assert stored.labels == ["work"]
    assert stored.attachments[0].file_name == "note.txt"
    assert record_store.count_mail_messages() == 2


def test_list_messages_newest_first_with_paging(
    record_store: SqliteRecordStore,
) -> None:
    record_store.upsert_mail_messages(
        [_message(str(index), minutes=index) for index in range(5)]
    )

    page = record_store.list_mail_messages("acct-1", folder="INBOX", limit=2, offset=1)

    assert [item.remote_id for item in page] == ["3", "2"]
    assert len(record_store.list_all_mail_messages("acct-1")) == 5
    assert record_store.list_mail_messages("acct-1", folder="Archive") == []


def test_thread_messages_oldest_first(record_store: SqliteRecordStore) -> None:
    first, reply, other = _message("1"), _message("2", minutes=5), _message("3")
    reply.thread_id = first.thread_id
    record_store.upsert_mail_messages([reply, other, first])

    thread = record_store.list_thread_messages("acct-1", first.thread_id)

    assert [item.remote_id for item in thread] == ["1", "2"]


def test_mail_folders_upsert(record_store: SqliteRecordStore) -> None:
    folders = [
        MailFolder(account_id="acct-1", remote_id="inbox", path="INBOX"),
        MailFolder(account_id="acct-1", remote_id="arch", path="Archive"),
    ]
    assert record_store.upsert_mail_folders(folders) == 2

    folders[0].unread_count = 4
    record_store.upsert_mail_folders(folders[:1])

    stored = record_store.list_mail_folders("acct-1")
    assert [folder.path for folder in stored] == ["Archive", "INBOX"]
    assert stored[1].unread_count == 4


def test_search_uses_index(record_store: SqliteRecordStore) -> None:
    record_store.upsert_mail_messages(
        [
            _message("1", subject="Quarterly report"),
            _message("2", subject="Lunch plans"),
        ]
    )

    result = record_store.search_mail("quarter")

    assert result.total == 1
    assert result.items[0].remote_id == "1"


def test_search_falls_back_to_substring_scan(
    storage_settings: StorageSettings,
) -> None:
    index = EmptyIndex()
    with SqliteRecordStore(storage_settings, index=index) as store:
        store.upsert_mail_messages(
            [
                _message("1", body="Please pay the INVOICE by Friday"),
                _message("2", body="Nothing to see", account_id="acct-2"),
            ]
        )

        result = store.search_mail("invoice")
        scoped = store.search_mail("nothing", account_id="acct-1")

    assert [item.remote_id for item in result.items] == ["1"]
    assert scoped.total == 0
    assert len(index.indexed) == 2


def test_index_failure_does_not_roll_back_write(
    storage_settings: StorageSettings,
) -> None:
    with SqliteRecordStore(storage_settings, index=BrokenIndex()) as store:
        assert store.upsert_mail_messages([_message("1", subject="Kept")]) == 1
        assert store.search_mail("kept").total == 1


def test_rebuild_search_index(record_store: SqliteRecordStore) -> None:
    record_store.upsert_mail_messages([_message("1"), _message("2")])

    assert record_store.rebuild_search_index() == 2
    assert record_store.search_mail("work").total == 2


def test_attachment_content_roundtrip(record_store: SqliteRecordStore) -> None:
    message = _message("1")
    record_store.upsert_mail_messages([message])
    record_store.save_attachment_content("att-1", message.id, b"hello")
    record_store.save_attachment_content("att-1", message.id, b"hello again")

    assert record_store.get_attachment_content("att-1") == b"hello again"
    assert record_store.get_attachment_content("missing") is None


def test_calendar_events_merge_and_window_query(
    record_store: SqliteRecordStore,
) -> None:
    event = CalendarEvent(
        id=event_record_id("acct-1", "primary", "evt-1"),
        account_id="acct-1",
        calendar_id="primary",
        remote_id="evt-1",
        title="Standup",
        starts_at=BASE_TIME,
        ends_at=BASE_TIME + timedelta(minutes=15),
        attendees=["a@example.com"],
    )
    record_store.upsert_calendar_events([event])
    event.title = "Daily standup"
    record_store.upsert_calendar_events([event])

    inside = record_store.list_calendar_events(
        "acct-1", BASE_TIME - timedelta(hours=1), BASE_TIME + timedelta(hours=1)
    )
    outside = record_store.list_calendar_events(
        "acct-1", BASE_TIME + timedelta(hours=1), BASE_TIME + timedelta(hours=2)
    )

    assert [item.title for item in inside] == ["Daily standup"]
    assert inside[0].attendees == ["a@example.com"]
    assert inside[0].alarms[0].minutes_before == 10
    assert outside == []


def test_tasks_and_subtasks(record_store: SqliteRecordStore) -> None:
    parent = ReminderTask(id="t-1", account_id="acct-1", list_id="l", title="Move")
    child = ReminderTask(
        id="t-2",
        account_id="acct-1",
        list_id="l",
        title="Pack boxes",
        parent_id="t-1",
        due_at=BASE_TIME,
    )
    done = ReminderTask(
        id="t-3",
        account_id="acct-1",
        list_id="l",
        title="Book van",
        status=TaskStatus.COMPLETED,
        due_at=BASE_TIME - timedelta(days=1),
    )
    assert record_store.upsert_tasks([parent, child, done]) == 3

    assert [task.id for task in record_store.list_subtasks("t-1")] == ["t-2"]
    assert [task.id for task in record_store.list_tasks("acct-1")] == [
        "t-2",
        "t-1",
        "t-3",
    ]


def test_accounts_and_protocol_settings(record_store: SqliteRecordStore) -> None:
    account = Account(
        id="acct-1",
        provider=Provider.FASTMAIL,
        display_name="Me",
        email_address="me@example.com",
    )
    record_store.upsert_account(account)
    record_store.upsert_protocol_settings("acct-1", {"endpoint": "https://jmap"})

    assert record_store.get_account("acct-1") == record_store.list_accounts()[0]
    assert record_store.protocol_settings("acct-1") == {"endpoint": "https://jmap"}
    assert record_store.protocol_settings("acct-2") is None


def test_message_state_updates(record_store: SqliteRecordStore) -> None:
    message = _message("1")
    record_store.upsert_mail_messages([message])
    later = BASE_TIME + timedelta(days=1)

    assert record_store.set_message_seen(message.id, True)
    assert record_store.set_pinned(message.id, True)
    assert record_store.snooze_message(message.id, later)
    assert not record_store.set_pinned("missing", True)

    stored = record_store.get_mail_message(message.id)
    assert stored is not None
    assert stored.flags.seen is True
    assert stored.pinned is True
    assert stored.snoozed_until == later

    record_store.snooze_message(message.id, None)
    stored = record_store.get_mail_message(message.id)
    assert stored is not None
    assert stored.snoozed_until is None


def test_sync_keeps_local_message_state(record_store: SqliteRecordStore) -> None:
    message = _message("1")
    record_store.upsert_mail_messages([message])
    record_store.set_pinned(message.id, True)
    record_store.schedule_send(message.id, BASE_TIME)

    record_store.upsert_mail_messages([_message("1", subject="Resynced")])

    stored = record_store.get_mail_message(message.id)
    assert stored is not None
    assert stored.subject == "Resynced"
    assert stored.pinned is True
    assert stored.send_at == BASE_TIME


def test_due_scheduled_messages(record_store: SqliteRecordStore) -> None:
    early, late, unscheduled = _message("1"), _message("2"), _message("3")
    record_store.upsert_mail_messages([early, late, unscheduled])
    record_store.schedule_send(late.id, BASE_TIME + timedelta(hours=2))
    record_store.schedule_send(early.id, BASE_TIME + timedelta(hours=1))

    due = record_store.due_scheduled_messages(BASE_TIME + timedelta(hours=3))
    assert [item.remote_id for item in due] == ["1", "2"]
    assert record_store.due_scheduled_messages(BASE_TIME) == []

    record_store.schedule_send(late.id, None)
    due = record_store.due_scheduled_messages(BASE_TIME + timedelta(hours=3))
    assert [item.remote_id for item in due] == ["1"]


def test_delete_messages_unindexes_and_drops_content(
    storage_settings: StorageSettings,
) -> None:
    index = EmptyIndex()
    with SqliteRecordStore(storage_settings, index=index) as store:
        kept, dropped = _message("1"), _message("2")
        store.upsert_mail_messages([kept, dropped])
        store.save_attachment_content("att-2", dropped.id, b"bytes")

        assert store.delete_mail_messages([dropped.id, "missing"]) == 1

        assert store.get_mail_message(dropped.id) is None
        assert store.get_attachment_content("att-2") is None
        assert store.count_mail_messages() == 1
    assert index.removed == [dropped.id, "missing"]


def test_delete_messages_survives_index_failure(
    storage_settings: StorageSettings,
) -> None:
    with SqliteRecordStore(storage_settings, index=BrokenIndex()) as store:
        store.upsert_mail_messages([_message("1")])
        assert store.delete_mail_messages([mail_record_id("acct-1", "1")]) == 1
        assert store.count_mail_messages() == 0


def test_delete_account_removes_every_record(record_store: SqliteRecordStore) -> None:
    for account_id in ("acct-1", "acct-2"):
        record_store.upsert_account(
            Account(
                id=account_id,
                provider=Provider.FASTMAIL,
                display_name=account_id,
                email_address=f"{account_id}@example.com",
            )
        )
    record_store.upsert_protocol_settings("acct-1", {"endpoint": "https://jmap"})
    record_store.upsert_mail_messages(
        [_message("1"), _message("2"), _message("3", account_id="acct-2")]
    )
    record_store.upsert_mail_folders(
        [MailFolder(account_id="acct-1", remote_id="inbox", path="INBOX")]
    )
    record_store.upsert_tasks(
        [ReminderTask(id="t-1", account_id="acct-1", list_id="l", title="Move")]
    )

    assert record_store.delete_account("acct-1") == 2

    assert record_store.get_account("acct-1") is None
    assert record_store.protocol_settings("acct-1") is None
    assert record_store.count_mail_messages("acct-1") == 0
    assert record_store.list_mail_folders("acct-1") == []
    assert record_store.list_tasks("acct-1") == []
    assert record_store.search_mail("hello", account_id="acct-1").total == 0
    assert record_store.count_mail_messages("acct-2") == 1
    assert [account.id for account in record_store.list_accounts()] == ["acct-2"]


def test_replace_task_moves_row_and_subtasks(record_store: SqliteRecordStore) -> None:
    parent = ReminderTask(id="local", account_id="acct-1", list_id="l", title="Move")
    child = ReminderTask(
        id="t-2", account_id="acct-1", list_id="l", title="Pack", parent_id="local"
    )
    record_store.upsert_tasks([parent, child])

    parent.id = "remote-key"
    parent.remote_id = "r1"
    record_store.replace_task("local", parent)

    assert record_store.get_task("local") is None
    assert [task.id for task in record_store.list_subtasks("remote-key")] == ["t-2"]
    assert len(record_store.list_tasks("acct-1")) == 2


def test_migrations_are_idempotent(storage_settings: StorageSettings) -> None:
    first = open_database(storage_settings.db_path)
    first.close()
    second = open_database(storage_settings.db_path)
    columns = {
        row["name"] for row in second.execute("PRAGMA table_info(mail_messages)")
    }
    second.close()

    assert {"pinned", "snoozed_until", "send_at"} <= columns
