"""Tests for the SQLite-backed sync job queue."""

from __future__ import annotations

from datetime import timedelta

from inbox_sync.core.config import StorageSettings
from inbox_sync.core.datetime_utils import utc_now
from inbox_sync.core.models import SyncDomain, SyncJob, SyncStatus
from inbox_sync.storage import SqliteJobStore


def _job(job_id: str, account_id: str = "acct-1", **kwargs) -> SyncJob:
    return SyncJob(id=job_id, account_id=account_id, domain=SyncDomain.EMAIL, **kwargs)


def test_fetch_due_skips_future_jobs_and_orders_oldest_first(
    job_store: SqliteJobStore,
) -> None:
    now = utc_now()
    job_store.enqueue(_job("later", run_after=now - timedelta(seconds=5)))
    job_store.enqueue(_job("earlier", run_after=now - timedelta(minutes=5)))
    job_store.enqueue(_job("future", run_after=now + timedelta(hours=1)))

    due = job_store.fetch_due(limit=10)

    assert [job.id for job in due] == ["earlier", "later"]
    assert job_store.count_pending() == 3


def test_fetch_due_respects_limit(job_store: SqliteJobStore) -> None:
    for index in range(5):
        job_store.enqueue(_job(f"job-{index}"))

    assert len(job_store.fetch_due(limit=2)) == 2


def test_enqueue_same_id_replaces_mutable_fields(job_store: SqliteJobStore) -> None:
    job = _job("job-1", payload={"folder": "INBOX"})
    job_store.enqueue(job)

    job.attempt_count = 2
    job.last_error = "timeout"
    job.payload = {"folder": "Archive"}
    job_store.enqueue(job)

    stored = job_store.get("job-1")
    assert stored is not None
    assert stored.attempt_count == 2
    assert stored.last_error == "timeout"
    assert stored.payload == {"folder": "Archive"}
    assert len(job_store.list_jobs()) == 1


def test_update_status_records_error_and_attempts(job_store: SqliteJobStore) -> None:
    job_store.enqueue(_job("job-1"))

    job_store.update_status("job-1", SyncStatus.FAILED, error="boom", attempt_count=5)

    stored = job_store.get("job-1")
    assert stored is not None
    assert stored.status is SyncStatus.FAILED
    assert stored.last_error == "boom"
    assert stored.attempt_count == 5
    assert job_store.fetch_due(limit=10) == []


def test_active_and_history_checks(job_store: SqliteJobStore) -> None:
    assert not job_store.has_history("acct-1", SyncDomain.EMAIL)

    job_store.enqueue(_job("job-1"))
    assert job_store.has_active("acct-1", SyncDomain.EMAIL)
    assert not job_store.has_active("acct-1", SyncDomain.CALENDAR)

    job_store.update_status("job-1", SyncStatus.COMPLETED)
    assert not job_store.has_active("acct-1", SyncDomain.EMAIL)
    assert job_store.has_history("acct-1", SyncDomain.EMAIL)


def test_requeue_stale_running(job_store: SqliteJobStore) -> None:
    job_store.enqueue(_job("job-1"))
    job_store.update_status("job-1", SyncStatus.RUNNING)

    assert job_store.requeue_stale_running(timedelta(hours=1)) == 0
    assert job_store.requeue_stale_running(timedelta(0)) == 1

    stored = job_store.get("job-1")
    assert stored is not None
    assert stored.status is SyncStatus.QUEUED
    assert [job.id for job in job_store.fetch_due(limit=10)] == ["job-1"]


def test_jobs_survive_reopen(storage_settings: StorageSettings) -> None:
    with SqliteJobStore(storage_settings) as store:
        store.enqueue(_job("job-1", payload={"limit": 25}))

    with SqliteJobStore(storage_settings) as store:
        stored = store.get("job-1")

    assert stored is not None
    assert stored.payload == {"limit": 25}
    assert stored.status is SyncStatus.QUEUED
