"""Facade exposing job submission, execution, and stored-record reads."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from ..calendar.service import CalendarService
from ..core.config import SyncSettings
from ..core.datetime_utils import utc_now
from ..core.models import (
    CalendarEvent,
    MailMessage,
    MailThreadSummary,
    ReminderTask,
    SearchResult,
    SyncDomain,
    SyncJob,
    SyncRunSummary,
    new_record_id,
)
from ..mail.service import EmailService
from ..storage.jobs import SqliteJobStore
from ..storage.sqlite import SqliteRecordStore
from ..tasks.service import TaskService
from .policy import SchedulingPolicy
from .scheduler import SyncScheduler

LOGGER = logging.getLogger(__name__)


class SyncEngine:
    """Entry point used by the CLI and embedding applications."""

    def __init__(
        self,
        jobs: SqliteJobStore,
        store: SqliteRecordStore,
        scheduler: SyncScheduler,
        policy: SchedulingPolicy,
        email: EmailService,
        calendar: CalendarService,
        tasks: TaskService,
        settings: SyncSettings,
    ) -> None:
        # pylint: disable=too-many-arguments
        self._jobs = jobs
        self._store = store
        self._scheduler = scheduler
        self._policy = policy
        self._email = email
        self._calendar = calendar
        self._tasks = tasks
        self._settings = settings

    @property
    def jobs(self) -> SqliteJobStore:
        return self._jobs

    @property
    def store(self) -> SqliteRecordStore:
        return self._store

    @property
    def email(self) -> EmailService:
        return self._email

    @property
    def calendar(self) -> CalendarService:
        return self._calendar

    @property
    def tasks(self) -> TaskService:
        return self._tasks

    # Jobs --------------------------------------------------------------------
    def enqueue_job(
        self,
        account_id: str,
        domain: SyncDomain,
        payload: dict[str, Any] | None = None,
        delay: timedelta | None = None,
    ) -> SyncJob:
        """Persist a new queued job, due now or after ``delay``."""
        job = SyncJob(
            id=new_record_id(),
            account_id=account_id,
            domain=domain,
            payload=dict(payload or {}),
            max_attempts=self._settings.max_attempts,
            run_after=utc_now() + (delay or timedelta()),
        )
        self._jobs.enqueue(job)
        LOGGER.info("Enqueued %s job %s for %s", domain.value, job.id, account_id)
        return job

    async def run_due_jobs(self) -> SyncRunSummary:
        return await self._scheduler.run_due_jobs()

    def schedule_sync_jobs(self) -> int:
        return self._policy.schedule_sync_jobs()

    def recover_stale_jobs(self) -> int:
        """Requeue jobs left running by a process that stopped mid-run."""
        return self._jobs.requeue_stale_running(
            timedelta(seconds=self._settings.stale_running_after_secs)
        )

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Schedule and run jobs every cycle until ``stop_event`` is set."""
        self.recover_stale_jobs()
        LOGGER.info(
            "Sync loop started (cycle every %.1fs)", self._settings.cycle_interval_secs
        )
        while not stop_event.is_set():
            self.schedule_sync_jobs()
            summary = await self.run_due_jobs()
            if summary.completed_jobs or summary.failed_jobs or summary.retried_jobs:
                LOGGER.info("Cycle summary: %s", summary)
            try:
                await asyncio.wait_for(
                    stop_event.wait(), timeout=self._settings.cycle_interval_secs
                )
            except TimeoutError:
                continue
        LOGGER.info("Sync loop stopped")

    # Deletion ----------------------------------------------------------------
    def delete_account(self, account_id: str) -> int:
        """Remove an account, its jobs, and its local replica.

        Returns the number of deleted messages. Remote data is left untouched.
        """
        dropped_jobs = self._jobs.delete_account_jobs(account_id)
        removed = self._store.delete_account(account_id)
        LOGGER.info(
            "Removed account %s (%d job(s), %d message(s))",
            account_id,
            dropped_jobs,
            removed,
        )
        return removed

    def delete_messages(self, message_ids: list[str]) -> int:
        return self._store.delete_mail_messages(message_ids)

    # Reads -------------------------------------------------------------------
    def list_messages(
        self,
        account_id: str,
        folder: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[MailMessage]:
        return self._store.list_mail_messages(account_id, folder, limit, offset)

    def get_message(self, message_id: str) -> MailMessage | None:
        return self._store.get_mail_message(message_id)

    def search_mail(
        self, query: str, limit: int = 50, account_id: str | None = None
    ) -> SearchResult:
        return self._store.search_mail(query, limit, account_id)

    def list_threads(
        self,
        account_id: str,
        folder: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[MailThreadSummary]:
        return self._email.list_threads(account_id, folder, limit, offset)

    def list_events(
        self, account_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        return self._calendar.list_events(account_id, start, end)

    def list_tasks(self, account_id: str) -> list[ReminderTask]:
        return self._tasks.list_tasks(account_id)


__all__ = ["SyncEngine"]
