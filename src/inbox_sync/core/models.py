"""Core domain models used across the application."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .datetime_utils import utc_now

_RECORD_NAMESPACE = uuid.UUID("6f0c54d2-8d4e-4c58-9a36-0d3f1f2b7a41")


class SyncDomain(str, Enum):
    """Kind of remote data a sync job refreshes."""

    EMAIL = "email"
    CALENDAR = "calendar"
    TASKS = "tasks"


class SyncStatus(str, Enum):
    """Lifecycle state of a sync job."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Provider(str, Enum):
    """Account provider used to pick protocol adapters."""

    GMAIL = "gmail"
    OUTLOOK = "outlook"
    YAHOO = "yahoo"
    ICLOUD = "icloud"
    FASTMAIL = "fastmail"
    PROTON_BRIDGE = "proton_bridge"
    GENERIC = "generic"
    EXCHANGE = "exchange"


class TaskPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


class RsvpStatus(str, Enum):
    NEEDS_ACTION = "needs_action"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"


def mail_record_id(account_id: str, remote_id: str) -> str:
    """Return the stable local id for a remote message."""
    return str(uuid.uuid5(_RECORD_NAMESPACE, f"mail:{account_id}:{remote_id}"))


def event_record_id(account_id: str, calendar_id: str, remote_id: str) -> str:
    """Return the stable local id for a remote calendar event."""
    return str(
        uuid.uuid5(_RECORD_NAMESPACE, f"event:{account_id}:{calendar_id}:{remote_id}")
    )


def task_record_id(account_id: str, list_id: str, remote_id: str) -> str:
    """Return the stable local id for a remote task."""
    return str(
        uuid.uuid5(_RECORD_NAMESPACE, f"task:{account_id}:{list_id}:{remote_id}")
    )


def attachment_record_id(message_id: str, index: int) -> str:
    """Return the stable id of the ``index``-th attachment of a message."""
    return str(uuid.uuid5(_RECORD_NAMESPACE, f"attachment:{message_id}:{index}"))


def content_record_key(account_id: str, fingerprint: str) -> str:
    """Return a stable remote key for an item that carries no identifier."""
    return str(uuid.uuid5(_RECORD_NAMESPACE, f"content:{account_id}:{fingerprint}"))


def new_record_id() -> str:
    """Return a random id for locally created records."""
    return str(uuid.uuid4())


# Accounts --------------------------------------------------------------------
@dataclass(slots=True)
class Account:
    """Configured remote account."""

    id: str
    provider: Provider
    display_name: str
    email_address: str
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


# Mail ------------------------------------------------------------------------
@dataclass(slots=True)
class MailAddress:
    """Mailbox address with optional display name."""

    address: str
    name: str | None = None

    def formatted(self) -> str:
        if self.name:
            return f"{self.name} <{self.address}>"
        return self.address


@dataclass(slots=True)
class MailFlags:
    """IMAP-style message flags."""

    seen: bool = False
    answered: bool = False
    flagged: bool = False
    deleted: bool = False
    draft: bool = False
    forwarded: bool = False


@dataclass(slots=True)
class MailAttachment:
    """Metadata describing an email attachment."""

    id: str
    file_name: str
    mime_type: str
    size: int
    inline: bool = False


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class MailMessage:
    """Normalized email representation ready for persistence."""

    id: str
    account_id: str
    remote_id: str
    thread_id: str
    folder_path: str
    sender: MailAddress
    subject: str
    preview: str
    received_at: datetime
    to: list[MailAddress] = field(default_factory=list)
    cc: list[MailAddress] = field(default_factory=list)
    bcc: list[MailAddress] = field(default_factory=list)
    reply_to: list[MailAddress] = field(default_factory=list)
    body_text: str | None = None
    body_html: str | None = None
    flags: MailFlags = field(default_factory=MailFlags)
    labels: list[str] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    attachments: list[MailAttachment] = field(default_factory=list)
    sent_at: datetime | None = None
    pinned: bool = False
    snoozed_until: datetime | None = None
    send_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class MailFolder:
    """Remote folder or label."""

    account_id: str
    remote_id: str
    path: str
    delimiter: str | None = None
    unread_count: int = 0
    total_count: int = 0


@dataclass(slots=True)
class MessageChunk:
    """Raw RFC822 payload paired with its server-side metadata."""

    uid: str
    raw: bytes
    flags: tuple[str, ...] = ()
    internal_date: datetime | None = None


@dataclass(slots=True)
class AttachmentContent:
    """Attachment bytes captured while parsing a fetched message."""

    attachment_id: str
    message_id: str
    content: bytes


@dataclass(slots=True)
class FetchResult:
    """Messages returned by a backend fetch plus any attachment bytes."""

    messages: list[MailMessage] = field(default_factory=list)
    attachment_content: list[AttachmentContent] = field(default_factory=list)


@dataclass(slots=True)
class MailThreadSummary:
    """Conversation aggregate built from stored messages."""

    thread_id: str
    subject: str
    participants: list[str]
    message_count: int
    unread_count: int
    most_recent_at: datetime
    pinned: bool = False


@dataclass(slots=True)
class ContactSummary:
    """Per-correspondent aggregate built from stored messages."""

    email_address: str
    display_name: str | None
    latest_subject: str
    message_count: int
    unread_count: int
    most_recent_at: datetime


@dataclass(frozen=True, slots=True)
class OutgoingAttachment:
    """Attachment supplied with an outgoing message."""

    file_name: str
    mime_type: str
    content_base64: str
    inline: bool = False


@dataclass(slots=True)
class OutgoingMail:
    """Message composed locally for delivery."""

    sender: MailAddress
    to: list[MailAddress]
    subject: str
    body_text: str
    body_html: str | None = None
    cc: list[MailAddress] = field(default_factory=list)
    bcc: list[MailAddress] = field(default_factory=list)
    reply_to: list[MailAddress] = field(default_factory=list)
    attachments: list[OutgoingAttachment] = field(default_factory=list)


@dataclass(slots=True)
class SearchResult:
    """Mail search outcome."""

    total: int
    items: list[MailMessage]


# Calendar --------------------------------------------------------------------
@dataclass(slots=True)
class CalendarAlarm:
    minutes_before: int
    message: str | None = None


def _default_alarms() -> list[CalendarAlarm]:
    return [CalendarAlarm(minutes_before=10, message="Upcoming event")]


@dataclass(slots=True)
class CalendarEvent:
    """Normalized calendar event."""

    id: str
    account_id: str
    calendar_id: str
    remote_id: str
    title: str
    starts_at: datetime
    ends_at: datetime
    description: str | None = None
    location: str | None = None
    timezone: str | None = None
    all_day: bool = False
    recurrence_rule: str | None = None
    attendees: list[str] = field(default_factory=list)
    organizer: str | None = None
    alarms: list[CalendarAlarm] = field(default_factory=_default_alarms)
    rsvp_status: RsvpStatus = RsvpStatus.NEEDS_ACTION
    updated_at: datetime = field(default_factory=utc_now)


# Tasks -----------------------------------------------------------------------
@dataclass(slots=True)
class ReminderTask:
    """Normalized to-do item."""

    id: str
    account_id: str
    list_id: str
    title: str
    remote_id: str | None = None
    notes: str | None = None
    due_at: datetime | None = None
    completed_at: datetime | None = None
    priority: TaskPriority = TaskPriority.NORMAL
    status: TaskStatus = TaskStatus.NOT_STARTED
    repeat_rule: str | None = None
    parent_id: str | None = None
    snoozed_until: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


# Sync jobs -------------------------------------------------------------------
@dataclass(slots=True)
class SyncJob:
    """Durable unit of sync work for one account and domain."""

    id: str
    account_id: str
    domain: SyncDomain
    status: SyncStatus = SyncStatus.QUEUED
    payload: dict[str, Any] = field(default_factory=dict)
    attempt_count: int = 0
    max_attempts: int = 5
    run_after: datetime = field(default_factory=utc_now)
    last_error: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class SyncRunSummary:
    """Outcome counters for a scheduler run."""

    completed_jobs: int = 0
    failed_jobs: int = 0
    retried_jobs: int = 0
    email_messages_synced: int = 0
    calendar_events_synced: int = 0
    tasks_synced: int = 0

    def merge(self, other: SyncRunSummary) -> None:
        """Add ``other``'s counters into this summary."""
        self.completed_jobs += other.completed_jobs
        self.failed_jobs += other.failed_jobs
        self.retried_jobs += other.retried_jobs
        self.email_messages_synced += other.email_messages_synced
        self.calendar_events_synced += other.calendar_events_synced
        self.tasks_synced += other.tasks_synced


__all__ = [
    "Account",
    "AttachmentContent",
    "CalendarAlarm",
    "CalendarEvent",
    "ContactSummary",
    "FetchResult",
    "MailAddress",
    "MailAttachment",
    "MailFlags",
    "MailFolder",
    "MailMessage",
    "MailThreadSummary",
    "MessageChunk",
    "OutgoingAttachment",
    "OutgoingMail",
    "Provider",
    "ReminderTask",
    "RsvpStatus",
    "SearchResult",
    "SyncDomain",
    "SyncJob",
    "SyncRunSummary",
    "SyncStatus",
    "TaskPriority",
    "TaskStatus",
    "attachment_record_id",
    "content_record_key",
    "event_record_id",
    "mail_record_id",
    "new_record_id",
    "task_record_id",
]
