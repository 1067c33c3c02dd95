"""Tests for admission-controlled job dispatch."""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from inbox_sync.core.config import SyncSettings
from inbox_sync.core.models import SyncDomain, SyncJob, SyncRunSummary
from inbox_sync.storage import SqliteJobStore
from inbox_sync.sync import SyncScheduler

DOMAINS = list(SyncDomain)


def _seed(job_store: SqliteJobStore, count: int) -> None:
    accounts = ["acct-a", "acct-b", "acct-c"]
    for index in range(count):
        job_store.enqueue(
            SyncJob(
                id=f"job-{index}",
                account_id=accounts[index % 3],
                domain=DOMAINS[(index // 3) % 3],
            )
        )


@pytest.mark.asyncio
async def test_ceilings_hold_at_every_admission(job_store: SqliteJobStore) -> None:
    _seed(job_store, 10)
    active: Counter = Counter()
    samples: list[tuple[int, int, int]] = []

    async def runner(job: SyncJob) -> SyncRunSummary:
        pair = (job.account_id, job.domain)
        active["all"] += 1
        active[job.account_id] += 1
        active[pair] += 1
        samples.append((active["all"], active[job.account_id], active[pair]))
        await asyncio.sleep(0.01)
        active["all"] -= 1
        active[job.account_id] -= 1
        active[pair] -= 1
        return SyncRunSummary(completed_jobs=1)

    settings = SyncSettings(
        max_parallel_jobs=4, max_jobs_per_account=2, max_jobs_per_account_domain=1
    )
    scheduler = SyncScheduler(job_store, runner, settings)

    summary = await scheduler.run_due_jobs()

    assert summary.completed_jobs == 10
    assert len(samples) == 10
    assert max(total for total, _, _ in samples) <= 4
    assert max(total for total, _, _ in samples) > 1
    assert max(per_account for _, per_account, _ in samples) <= 2
    assert max(per_pair for _, _, per_pair in samples) <= 1
    assert scheduler.active_per_account == {}
    assert scheduler.active_per_domain == {}


@pytest.mark.asyncio
async def test_same_pair_jobs_run_one_at_a_time(job_store: SqliteJobStore) -> None:
    for index in range(3):
        job_store.enqueue(
            SyncJob(id=f"job-{index}", account_id="acct-a", domain=SyncDomain.EMAIL)
        )
    running = 0
    peak = 0

    async def runner(job: SyncJob) -> SyncRunSummary:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0)
        running -= 1
        return SyncRunSummary(completed_jobs=1, email_messages_synced=2)

    scheduler = SyncScheduler(job_store, runner, SyncSettings())
    summary = await scheduler.run_due_jobs()

    assert peak == 1
    assert summary.completed_jobs == 3
    assert summary.email_messages_synced == 6


@pytest.mark.asyncio
async def test_crashing_worker_releases_its_slot(job_store: SqliteJobStore) -> None:
    _seed(job_store, 4)

    async def runner(job: SyncJob) -> SyncRunSummary:
        if job.id == "job-0":
            raise RuntimeError("worker bug")
        return SyncRunSummary(completed_jobs=1)

    scheduler = SyncScheduler(job_store, runner, SyncSettings())
    summary = await scheduler.run_due_jobs()

    assert summary.completed_jobs == 3
    assert scheduler.active_per_account == {}


@pytest.mark.asyncio
async def test_no_due_jobs_returns_empty_summary(job_store: SqliteJobStore) -> None:
    async def runner(job: SyncJob) -> SyncRunSummary:
        raise AssertionError("runner must not be called")

    summary = await SyncScheduler(job_store, runner, SyncSettings()).run_due_jobs()

    assert summary == SyncRunSummary()
