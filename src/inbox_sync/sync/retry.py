"""Exponential backoff for failed sync jobs."""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum

from ..core.datetime_utils import utc_now
from ..core.interfaces import JobStore
from ..core.models import SyncJob, SyncStatus

LOGGER = logging.getLogger(__name__)


class RetryDisposition(str, Enum):
    """What happened to a job after a failed attempt."""

    RETRIED = "retried"
    FAILED = "failed"


class RetryPolicy:
    """Reschedule failed jobs with capped exponential backoff."""

    def __init__(
        self, store: JobStore, base_seconds: int = 30, cap: int = 8
    ) -> None:
        self._store = store
        self._base_seconds = base_seconds
        self._cap = cap

    def delay_for(self, attempt: int) -> timedelta:
        """Return the wait before ``attempt``: ``base * 2 ** min(attempt, cap)``."""
        return timedelta(seconds=self._base_seconds * 2 ** min(attempt, self._cap))

    def apply(self, job: SyncJob, error: str) -> RetryDisposition:
        """Record a failed attempt and either requeue the job or fail it."""
        next_attempt = job.attempt_count + 1
        if next_attempt >= job.max_attempts:
            self._store.update_status(
                job.id, SyncStatus.FAILED, error=error, attempt_count=next_attempt
            )
            job.status = SyncStatus.FAILED
            job.attempt_count = next_attempt
            job.last_error = error
            LOGGER.error(
                "Job %s (%s/%s) failed after %d attempt(s): %s",
                job.id,
                job.account_id,
                job.domain.value,
                next_attempt,
                error,
            )
            return RetryDisposition.FAILED

        delay = self.delay_for(next_attempt)
        job.status = SyncStatus.QUEUED
        job.attempt_count = next_attempt
        job.run_after = utc_now() + delay
        job.last_error = error
        self._store.enqueue(job)
        LOGGER.warning(
            "Job %s (%s/%s) attempt %d failed, retrying in %ss: %s",
            job.id,
            job.account_id,
            job.domain.value,
            next_attempt,
            int(delay.total_seconds()),
            error,
        )
        return RetryDisposition.RETRIED


__all__ = ["RetryDisposition", "RetryPolicy"]
