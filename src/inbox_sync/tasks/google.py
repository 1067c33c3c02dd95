"""Google Tasks REST backend."""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from ..calendar.ical import DEFAULT_TASK_TITLE
from ..core.account_settings import TaskSettings, secret_value
from ..core.datetime_utils import ensure_utc, parse_remote_datetime, utc_now
from ..core.models import (
    Account,
    ReminderTask,
    TaskPriority,
    TaskStatus,
    task_record_id,
)
from ..transport.http import HttpAdapter, bearer_headers

LOGGER = logging.getLogger(__name__)

TASKS_API_BASE = "https://tasks.googleapis.com/tasks/v1"

_CRITICAL = re.compile(r"\b(?:p1|critical)\b", re.IGNORECASE)
_HIGH = re.compile(r"\b(?:high|urgent)\b", re.IGNORECASE)
_LOW = re.compile(r"\blow\b", re.IGNORECASE)


def infer_priority(*texts: str | None) -> TaskPriority:
    """Guess a priority from keywords, since Google Tasks has no priority field."""
    combined = " ".join(text for text in texts if text)
    if _CRITICAL.search(combined):
        return TaskPriority.CRITICAL
    if _HIGH.search(combined):
        return TaskPriority.HIGH
    if _LOW.search(combined):
        return TaskPriority.LOW
    return TaskPriority.NORMAL


class GoogleTasksBackend(HttpAdapter):
    """Client for the Google Tasks v1 API using an OAuth bearer token."""

    async def sync(
        self, account: Account, settings: TaskSettings
    ) -> list[ReminderTask]:
        headers = bearer_headers(secret_value(settings.access_token), "Google Tasks")
        params = {"showCompleted": "true", "showHidden": "true", "maxResults": 200}
        async with self._client(headers=headers) as client:
            items = await self._google_pages(
                client, self._tasks_url(settings.list_id), params
            )
        tasks = [
            _to_task(account.id, settings.list_id, item)
            for item in items
            if item.get("id") and not item.get("deleted")
        ]
        LOGGER.info("Retrieved %d Google task(s) for %s", len(tasks), account.id)
        return tasks

    async def upsert_remote(
        self,
        account: Account,
        settings: TaskSettings,
        task: ReminderTask,
        parent_remote_id: str | None = None,
    ) -> None:
        headers = bearer_headers(secret_value(settings.access_token), "Google Tasks")
        body = _to_body(task)
        url = self._tasks_url(settings.list_id)
        async with self._client(headers=headers) as client:
            if task.remote_id:
                await self._json(client, "PATCH", f"{url}/{task.remote_id}", json=body)
            else:
                params = {"parent": parent_remote_id} if parent_remote_id else None
                created = await self._json(
                    client, "POST", url, params=params, json=body
                )
                task.remote_id = created.get("id")
        LOGGER.info("Stored Google task %s for %s", task.remote_id, account.id)

    def _tasks_url(self, list_id: str) -> str:
        return f"{TASKS_API_BASE}/lists/{list_id}/tasks"


def _to_task(account_id: str, list_id: str, item: dict[str, Any]) -> ReminderTask:
    completed = item.get("status") == "completed"
    parent = item.get("parent")
    return ReminderTask(
        id=task_record_id(account_id, list_id, item["id"]),
        account_id=account_id,
        list_id=list_id,
        remote_id=item["id"],
        title=item.get("title") or DEFAULT_TASK_TITLE,
        notes=item.get("notes"),
        due_at=parse_remote_datetime(item.get("due")),
        completed_at=parse_remote_datetime(item.get("completed")),
        priority=infer_priority(item.get("title"), item.get("notes")),
        status=TaskStatus.COMPLETED if completed else TaskStatus.NOT_STARTED,
        parent_id=task_record_id(account_id, list_id, parent) if parent else None,
        updated_at=parse_remote_datetime(item.get("updated")) or utc_now(),
    )


def _rfc3339(value: datetime) -> str:
    return (ensure_utc(value) or value).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _to_body(task: ReminderTask) -> dict[str, Any]:
    completed = task.status is TaskStatus.COMPLETED
    body: dict[str, Any] = {
        "title": task.title,
        "notes": task.notes or "",
        "status": "completed" if completed else "needsAction",
    }
    if task.due_at is not None:
        body["due"] = _rfc3339(task.due_at)
    if completed:
        body["completed"] = _rfc3339(task.completed_at or utc_now())
    return body


__all__ = ["GoogleTasksBackend", "infer_priority"]
