"""Execute one sync job end to end."""

from __future__ import annotations

import logging
from datetime import timedelta

from pydantic import SecretStr

from ..calendar.service import CalendarService
from ..core.account_settings import (
    CalendarSettings,
    DomainSettings,
    ProtocolSettings,
    TaskSettings,
    parse_domain_settings,
)
from ..core.config import SyncSettings
from ..core.credentials import ACCESS_TOKEN_NAMESPACE, PASSWORD_NAMESPACE
from ..core.datetime_utils import utc_now
from ..core.errors import ConfigurationError, StorageError, SyncError
from ..core.interfaces import AccountProvider, CredentialResolver, JobStore
from ..core.models import Account, SyncDomain, SyncJob, SyncRunSummary, SyncStatus
from ..mail.service import EmailService
from ..tasks.service import TaskService
from .retry import RetryDisposition, RetryPolicy

LOGGER = logging.getLogger(__name__)

_SECRET_FIELDS = {
    "password": PASSWORD_NAMESPACE,
    "access_token": ACCESS_TOKEN_NAMESPACE,
}


class SyncWorker:
    """Run a claimed job against its account and record the outcome."""

    def __init__(
        self,
        jobs: JobStore,
        accounts: AccountProvider,
        credentials: CredentialResolver,
        email: EmailService,
        calendar: CalendarService,
        tasks: TaskService,
        retry: RetryPolicy,
        settings: SyncSettings,
    ) -> None:
        # pylint: disable=too-many-arguments
        self._jobs = jobs
        self._accounts = accounts
        self._credentials = credentials
        self._email = email
        self._calendar = calendar
        self._tasks = tasks
        self._retry = retry
        self._settings = settings

    async def run(self, job: SyncJob) -> SyncRunSummary:
        """Execute ``job`` and return its contribution to the run summary."""
        summary = SyncRunSummary()
        self._jobs.update_status(job.id, SyncStatus.RUNNING)
        job.status = SyncStatus.RUNNING
        LOGGER.info(
            "Running job %s (%s/%s, attempt %d)",
            job.id,
            job.account_id,
            job.domain.value,
            job.attempt_count + 1,
        )

        try:
            account = self._accounts.get_account(job.account_id)
            if account is None:
                return self._fail(job, "account not found", summary)
            blob = self._accounts.protocol_settings(job.account_id)
            if blob is None:
                return self._fail(job, "protocol settings missing", summary)
            settings = self._hydrate(account, parse_domain_settings(job.domain, blob))
            synced = await self._dispatch(account, job, settings)
        except (SyncError, StorageError) as exc:
            return self._fail(job, str(exc), summary)
        except Exception as exc:  # pylint: disable=broad-except
            LOGGER.exception("Unexpected error running job %s", job.id)
            return self._fail(job, f"unexpected error: {exc}", summary)

        self._jobs.update_status(job.id, SyncStatus.COMPLETED)
        job.status = SyncStatus.COMPLETED
        summary.completed_jobs = 1
        if job.domain is SyncDomain.EMAIL:
            summary.email_messages_synced = synced
        elif job.domain is SyncDomain.CALENDAR:
            summary.calendar_events_synced = synced
        else:
            summary.tasks_synced = synced
        LOGGER.info("Job %s completed with %d record(s)", job.id, synced)
        return summary

    async def _dispatch(
        self, account: Account, job: SyncJob, settings: DomainSettings
    ) -> int:
        if job.domain is SyncDomain.EMAIL and isinstance(settings, ProtocolSettings):
            folder = job.payload.get("folder") or self._settings.email_folder
            limit = int(job.payload.get("limit") or self._settings.email_fetch_limit)
            return await self._email.sync_recent_mail(account, settings, folder, limit)
        if job.domain is SyncDomain.CALENDAR and isinstance(settings, CalendarSettings):
            now = utc_now()
            return await self._calendar.sync_range(
                account,
                settings,
                now - timedelta(days=self._settings.calendar_past_days),
                now + timedelta(days=self._settings.calendar_future_days),
            )
        if job.domain is SyncDomain.TASKS and isinstance(settings, TaskSettings):
            return await self._tasks.sync_tasks(account, settings)
        raise ConfigurationError(f"settings do not match domain {job.domain.value}")

    def _hydrate(self, account: Account, settings: DomainSettings) -> DomainSettings:
        """Fill absent secrets from the credential resolver."""
        updates: dict[str, SecretStr] = {}
        for field_name, namespace in _SECRET_FIELDS.items():
            if field_name not in type(settings).model_fields:
                continue
            if getattr(settings, field_name) is not None:
                continue
            value = self._credentials.resolve(account.id, namespace)
            if value:
                updates[field_name] = SecretStr(value)
        if not updates:
            return settings
        return settings.model_copy(update=updates)

    def _fail(
        self, job: SyncJob, error: str, summary: SyncRunSummary
    ) -> SyncRunSummary:
        disposition = self._retry.apply(job, error)
        if disposition is RetryDisposition.FAILED:
            summary.failed_jobs = 1
        else:
            summary.retried_jobs = 1
        return summary


__all__ = ["SyncWorker"]
