"""Protocol interfaces for decoupling components."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any, Protocol

from .account_settings import CalendarSettings, ProtocolSettings, TaskSettings
from .models import (
    Account,
    CalendarEvent,
    FetchResult,
    MailFolder,
    OutgoingMail,
    ReminderTask,
    SyncDomain,
    SyncJob,
    SyncStatus,
)


class CredentialResolver(Protocol):
    """Look up secrets stored outside the settings blob."""

    def resolve(self, account_id: str, namespace: str) -> str | None:
        """Return the secret for ``account_id`` under ``namespace`` if known."""
        raise NotImplementedError


class AccountProvider(Protocol):
    """Source of configured accounts and their protocol settings."""

    def get_account(self, account_id: str) -> Account | None:
        raise NotImplementedError

    def list_accounts(self) -> list[Account]:
        raise NotImplementedError

    def protocol_settings(self, account_id: str) -> dict[str, Any] | None:
        """Return the raw settings blob stored for an account."""
        raise NotImplementedError


class JobStore(Protocol):
    """Durable queue of sync jobs."""

    def enqueue(self, job: SyncJob) -> None:
        raise NotImplementedError

    def fetch_due(self, limit: int) -> list[SyncJob]:
        """Return queued jobs whose ``run_after`` has passed, oldest first."""
        raise NotImplementedError

    def update_status(
        self,
        job_id: str,
        status: SyncStatus,
        error: str | None = None,
        attempt_count: int | None = None,
    ) -> None:
        raise NotImplementedError

    def count_pending(self) -> int:
        raise NotImplementedError

    def has_active(self, account_id: str, domain: SyncDomain) -> bool:
        raise NotImplementedError

    def has_history(self, account_id: str, domain: SyncDomain) -> bool:
        raise NotImplementedError

    def requeue_stale_running(self, older_than: timedelta) -> int:
        raise NotImplementedError


class EmailBackend(Protocol):
    """Mail protocol adapter."""

    async def list_folders(
        self, account: Account, settings: ProtocolSettings
    ) -> list[MailFolder]:
        raise NotImplementedError

    async def fetch_recent(
        self, account: Account, settings: ProtocolSettings, folder: str, limit: int
    ) -> FetchResult:
        """Fetch up to ``limit`` of the newest messages in ``folder``."""
        raise NotImplementedError

    async def send(
        self, account: Account, settings: ProtocolSettings, outgoing: OutgoingMail
    ) -> None:
        raise NotImplementedError

    async def watch(
        self, account: Account, settings: ProtocolSettings, folder: str
    ) -> None:
        """Wait for server-side changes where the protocol supports it."""
        raise NotImplementedError


class CalendarBackend(Protocol):
    """Calendar protocol adapter."""

    async def sync_range(
        self,
        account: Account,
        settings: CalendarSettings,
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        raise NotImplementedError

    async def upsert_remote(
        self, account: Account, settings: CalendarSettings, event: CalendarEvent
    ) -> None:
        raise NotImplementedError


class TaskBackend(Protocol):
    """Task list protocol adapter."""

    async def sync(
        self, account: Account, settings: TaskSettings
    ) -> list[ReminderTask]:
        raise NotImplementedError

    async def upsert_remote(
        self,
        account: Account,
        settings: TaskSettings,
        task: ReminderTask,
        parent_remote_id: str | None = None,
    ) -> None:
        """Create or update ``task``; ``parent_remote_id`` names its parent remotely."""
        raise NotImplementedError


class MailIndex(Protocol):
    """Full-text index over stored mail."""

    def index_messages(self, messages: Sequence[Any]) -> None:
        raise NotImplementedError

    def search(self, query: str, limit: int) -> list[str]:
        """Return matching message ids, best match first."""
        raise NotImplementedError

    def remove(self, message_ids: Sequence[str]) -> None:
        raise NotImplementedError


__all__ = [
    "AccountProvider",
    "CalendarBackend",
    "CredentialResolver",
    "EmailBackend",
    "JobStore",
    "MailIndex",
    "TaskBackend",
]
