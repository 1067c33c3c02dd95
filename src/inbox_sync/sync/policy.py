"""Periodic job creation for every configured account and domain."""

from __future__ import annotations

import logging
from datetime import timedelta

from ..core.config import SyncSettings
from ..core.datetime_utils import utc_now
from ..core.interfaces import AccountProvider, JobStore
from ..core.models import SyncDomain, SyncJob, new_record_id

LOGGER = logging.getLogger(__name__)


class SchedulingPolicy:
    """Keep one pending job per account and domain on its poll interval."""

    def __init__(
        self, accounts: AccountProvider, jobs: JobStore, settings: SyncSettings
    ) -> None:
        self._accounts = accounts
        self._jobs = jobs
        self._settings = settings

    def interval_for(self, domain: SyncDomain) -> timedelta:
        seconds = {
            SyncDomain.EMAIL: self._settings.email_poll_interval_secs,
            SyncDomain.CALENDAR: self._settings.calendar_poll_interval_secs,
            SyncDomain.TASKS: self._settings.task_poll_interval_secs,
        }[domain]
        return timedelta(seconds=seconds)

    def schedule_sync_jobs(self) -> int:
        """Enqueue jobs for idle pairs and return how many were created.

        A pair that has never synced runs immediately; otherwise the job waits
        one poll interval.
        """
        created = 0
        now = utc_now()
        for account in self._accounts.list_accounts():
            for domain in SyncDomain:
                if self._jobs.has_active(account.id, domain):
                    continue
                run_after = now
                if self._jobs.has_history(account.id, domain):
                    run_after = now + self.interval_for(domain)
                self._jobs.enqueue(
                    SyncJob(
                        id=new_record_id(),
                        account_id=account.id,
                        domain=domain,
                        max_attempts=self._settings.max_attempts,
                        run_after=run_after,
                    )
                )
                created += 1
        if created:
            LOGGER.info("Scheduled %d sync job(s)", created)
        return created


__all__ = ["SchedulingPolicy"]
