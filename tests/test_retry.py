"""Tests for the exponential retry policy."""

from __future__ import annotations

from datetime import timedelta

from inbox_sync.core.datetime_utils import utc_now
from inbox_sync.core.models import SyncDomain, SyncJob, SyncStatus
from inbox_sync.storage import SqliteJobStore
from inbox_sync.sync import RetryDisposition, RetryPolicy


def test_delay_grows_exponentially_and_caps() -> None:
    policy = RetryPolicy(store=None, base_seconds=30, cap=8)  # type: ignore[arg-type]

    delays = [policy.delay_for(attempt).total_seconds() for attempt in range(12)]

    assert delays[:4] == [30, 60, 120, 240]
    assert delays == sorted(delays)
    assert max(delays) == 30 * 2**8
    assert delays[-1] == delays[8]


def test_failed_attempt_requeues_same_job(job_store: SqliteJobStore) -> None:
    job = SyncJob(id="job-1", account_id="acct-1", domain=SyncDomain.EMAIL)
    job_store.enqueue(job)
    policy = RetryPolicy(job_store, base_seconds=30, cap=8)

    before = utc_now()
    disposition = policy.apply(job, "connection reset")

    assert disposition is RetryDisposition.RETRIED
    stored = job_store.get("job-1")
    assert stored is not None
    assert stored.status is SyncStatus.QUEUED
    assert stored.attempt_count == 1
    assert stored.last_error == "connection reset"
    assert stored.run_after >= before + timedelta(seconds=60)
    assert job_store.fetch_due(limit=10) == []
    assert len(job_store.list_jobs()) == 1


def test_job_fails_when_attempts_are_exhausted(job_store: SqliteJobStore) -> None:
    job = SyncJob(
        id="job-1", account_id="acct-1", domain=SyncDomain.CALENDAR, max_attempts=3
    )
    job_store.enqueue(job)
    policy = RetryPolicy(job_store, base_seconds=30, cap=8)

    outcomes = [policy.apply(job, f"error {index}") for index in range(3)]

    assert outcomes == [
        RetryDisposition.RETRIED,
        RetryDisposition.RETRIED,
        RetryDisposition.FAILED,
    ]
    stored = job_store.get("job-1")
    assert stored is not None
    assert stored.status is SyncStatus.FAILED
    assert stored.attempt_count == 3
    assert stored.last_error == "error 2"


def test_retry_deltas_do_not_shrink(job_store: SqliteJobStore) -> None:
    job = SyncJob(
        id="job-1", account_id="acct-1", domain=SyncDomain.TASKS, max_attempts=20
    )
    job_store.enqueue(job)
    policy = RetryPolicy(job_store, base_seconds=30, cap=8)

    deltas = []
    for _ in range(12):
        started = utc_now()
        policy.apply(job, "timeout")
        deltas.append(round((job.run_after - started).total_seconds()))

    assert deltas == sorted(deltas)
    assert deltas[-1] == 30 * 2**8
