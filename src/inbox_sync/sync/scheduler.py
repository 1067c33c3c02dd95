"""Admission-controlled dispatch of due sync jobs."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable

from ..core.config import SyncSettings
from ..core.interfaces import JobStore
from ..core.models import SyncDomain, SyncJob, SyncRunSummary

LOGGER = logging.getLogger(__name__)

JobRunner = Callable[[SyncJob], Awaitable[SyncRunSummary]]


class SyncScheduler:
    """Run due jobs under global, per-account, and per-domain ceilings.

    Counters live on the instance, so one scheduler owns one admission view.
    A pass returns once every admitted job has finished; callers loop to pick
    up jobs that become due later.
    """

    def __init__(
        self, jobs: JobStore, runner: JobRunner, settings: SyncSettings
    ) -> None:
        self._jobs = jobs
        self._runner = runner
        self._settings = settings
        self._per_account: Counter[str] = Counter()
        self._per_domain: Counter[tuple[str, SyncDomain]] = Counter()

    @property
    def active_per_account(self) -> dict[str, int]:
        return {key: value for key, value in self._per_account.items() if value}

    @property
    def active_per_domain(self) -> dict[tuple[str, SyncDomain], int]:
        return {key: value for key, value in self._per_domain.items() if value}

    async def run_due_jobs(self) -> SyncRunSummary:
        """Run one batch of due jobs to completion and return the merged summary."""
        summary = SyncRunSummary()
        candidates = self._jobs.fetch_due(self._settings.due_batch_size)
        if not candidates:
            return summary
        LOGGER.debug("Scheduler picked up %d due job(s)", len(candidates))

        in_flight: dict[asyncio.Task[SyncRunSummary], SyncJob] = {}
        self._admit(candidates, in_flight)
        while in_flight:
            done, _ = await asyncio.wait(
                in_flight.keys(), return_when=asyncio.FIRST_COMPLETED
            )
            for task in done:
                job = in_flight.pop(task)
                self._release(job)
                try:
                    summary.merge(task.result())
                except Exception:  # pylint: disable=broad-except
                    LOGGER.exception("Worker for job %s crashed", job.id)
            self._admit(candidates, in_flight)

        LOGGER.info(
            "Run finished: completed=%d retried=%d failed=%d",
            summary.completed_jobs,
            summary.retried_jobs,
            summary.failed_jobs,
        )
        return summary

    def _admit(
        self,
        candidates: list[SyncJob],
        in_flight: dict[asyncio.Task[SyncRunSummary], SyncJob],
    ) -> None:
        while len(in_flight) < self._settings.max_parallel_jobs:
            job = next((item for item in candidates if self._eligible(item)), None)
            if job is None:
                return
            candidates.remove(job)
            self._per_account[job.account_id] += 1
            self._per_domain[(job.account_id, job.domain)] += 1
            in_flight[asyncio.create_task(self._runner(job))] = job

    def _eligible(self, job: SyncJob) -> bool:
        return (
            self._per_account[job.account_id] < self._settings.max_jobs_per_account
            and self._per_domain[(job.account_id, job.domain)]
            < self._settings.max_jobs_per_account_domain
        )

    def _release(self, job: SyncJob) -> None:
        self._per_account[job.account_id] -= 1
        self._per_domain[(job.account_id, job.domain)] -= 1


__all__ = ["JobRunner", "SyncScheduler"]
