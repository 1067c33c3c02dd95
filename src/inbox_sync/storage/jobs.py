"""SQLite-backed durable sync job queue."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import timedelta
from types import TracebackType

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utc_now
from ..core.errors import StorageError
from ..core.interfaces import JobStore
from ..core.models import SyncDomain, SyncJob, SyncStatus
from .database import open_database

LOGGER = logging.getLogger(__name__)

_ACTIVE_STATUSES = (SyncStatus.QUEUED.value, SyncStatus.RUNNING.value)


class SqliteJobStore(JobStore):
    """Persist sync jobs so queued work survives restarts."""

    def __init__(self, settings: StorageSettings) -> None:
        """Open the database and apply migrations."""
        self._connection = open_database(settings.db_path)

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteJobStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    # JobStore API ------------------------------------------------------------
    def enqueue(self, job: SyncJob) -> None:
        """Insert ``job`` or replace the mutable state of an existing job id."""
        job.updated_at = utc_now()
        LOGGER.debug(
            "Enqueue job %s (%s/%s) run_after=%s attempt=%s",
            job.id,
            job.account_id,
            job.domain.value,
            job.run_after,
            job.attempt_count,
        )
        try:
            with self._connection:
                self._connection.execute(
                    """
                    INSERT INTO sync_jobs (
                        id,
                        account_id,
                        domain,
                        status,
                        payload,
                        attempt_count,
                        max_attempts,
                        run_after,
                        last_error,
                        created_at,
                        updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        status=excluded.status,
                        payload=excluded.payload,
                        attempt_count=excluded.attempt_count,
                        max_attempts=excluded.max_attempts,
                        run_after=excluded.run_after,
                        last_error=excluded.last_error,
                        updated_at=excluded.updated_at
                    """,
                    (
                        job.id,
                        job.account_id,
                        job.domain.value,
                        job.status.value,
                        json.dumps(job.payload),
                        job.attempt_count,
                        job.max_attempts,
                        serialize_datetime(job.run_after),
                        job.last_error,
                        serialize_datetime(job.created_at),
                        serialize_datetime(job.updated_at),
                    ),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to enqueue job {job.id}: {exc}") from exc

    def fetch_due(self, limit: int) -> list[SyncJob]:
        """Return up to ``limit`` queued jobs that are ready to run, oldest first."""
        cursor = self._connection.execute(
            """
            SELECT * FROM sync_jobs
            WHERE status = ? AND run_after <= ?
            ORDER BY run_after ASC
            LIMIT ?
            """,
            (SyncStatus.QUEUED.value, serialize_datetime(utc_now()), limit),
        )
        return [_row_to_job(row) for row in cursor.fetchall()]

    def update_status(
        self,
        job_id: str,
        status: SyncStatus,
        error: str | None = None,
        attempt_count: int | None = None,
    ) -> None:
        """Set the status and error, and the attempt count when one is supplied."""
        try:
            with self._connection:
                self._connection.execute(
                    """
                    UPDATE sync_jobs
                    SET status = ?,
                        last_error = ?,
                        attempt_count = COALESCE(?, attempt_count),
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        status.value,
                        error,
                        attempt_count,
                        serialize_datetime(utc_now()),
                        job_id,
                    ),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to update job {job_id}: {exc}") from exc

    def count_pending(self) -> int:
        cursor = self._connection.execute(
            "SELECT COUNT(*) FROM sync_jobs WHERE status = ?",
            (SyncStatus.QUEUED.value,),
        )
        return int(cursor.fetchone()[0])

    def has_active(self, account_id: str, domain: SyncDomain) -> bool:
        """Return ``True`` when a queued or running job exists for the pair."""
        cursor = self._connection.execute(
            """
            SELECT 1 FROM sync_jobs
            WHERE account_id = ? AND domain = ? AND status IN (?, ?)
            LIMIT 1
            """,
            (account_id, domain.value, *_ACTIVE_STATUSES),
        )
        return cursor.fetchone() is not None

    def has_history(self, account_id: str, domain: SyncDomain) -> bool:
        """Return ``True`` when any job has ever been recorded for the pair."""
        cursor = self._connection.execute(
            "SELECT 1 FROM sync_jobs WHERE account_id = ? AND domain = ? LIMIT 1",
            (account_id, domain.value),
        )
        return cursor.fetchone() is not None

    def requeue_stale_running(self, older_than: timedelta) -> int:
        """Return jobs stuck in ``running`` since before the threshold to the queue."""
        now = utc_now()
        try:
            with self._connection:
                cursor = self._connection.execute(
                    """
                    UPDATE sync_jobs
                    SET status = ?, run_after = ?, updated_at = ?
                    WHERE status = ? AND updated_at < ?
                    """,
                    (
                        SyncStatus.QUEUED.value,
                        serialize_datetime(now),
                        serialize_datetime(now),
                        SyncStatus.RUNNING.value,
                        serialize_datetime(now - older_than),
                    ),
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to requeue stale jobs: {exc}") from exc
        if cursor.rowcount:
            LOGGER.warning("Requeued %d stale running job(s)", cursor.rowcount)
        return cursor.rowcount

    def delete_account_jobs(self, account_id: str) -> int:
        """Drop every job of a removed account, active or finished."""
        try:
            with self._connection:
                cursor = self._connection.execute(
                    "DELETE FROM sync_jobs WHERE account_id = ?", (account_id,)
                )
        except sqlite3.Error as exc:
            raise StorageError(
                f"Failed to delete jobs of account {account_id}: {exc}"
            ) from exc
        return cursor.rowcount

    # Observability -----------------------------------------------------------
    def get(self, job_id: str) -> SyncJob | None:
        row = self._connection.execute(
            "SELECT * FROM sync_jobs WHERE id = ?", (job_id,)
        ).fetchone()
        return _row_to_job(row) if row else None

    def list_jobs(
        self, status: SyncStatus | None = None, limit: int = 50
    ) -> list[SyncJob]:
        """List jobs, most recently updated first, optionally filtered by status."""
        if status is None:
            cursor = self._connection.execute(
                "SELECT * FROM sync_jobs ORDER BY updated_at DESC LIMIT ?", (limit,)
            )
        else:
            cursor = self._connection.execute(
                """
                SELECT * FROM sync_jobs WHERE status = ?
                ORDER BY updated_at DESC LIMIT ?
                """,
                (status.value, limit),
            )
        return [_row_to_job(row) for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        self._connection.close()


def _row_to_job(row: sqlite3.Row) -> SyncJob:
    return SyncJob(
        id=row["id"],
        account_id=row["account_id"],
        domain=SyncDomain(row["domain"]),
        status=SyncStatus(row["status"]),
        payload=json.loads(row["payload"] or "{}"),
        attempt_count=row["attempt_count"],
        max_attempts=row["max_attempts"],
        run_after=parse_datetime(row["run_after"]) or utc_now(),
        last_error=row["last_error"],
        created_at=parse_datetime(row["created_at"]) or utc_now(),
        updated_at=parse_datetime(row["updated_at"]) or utc_now(),
    )


__all__ = ["SqliteJobStore"]
