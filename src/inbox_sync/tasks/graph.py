"""Microsoft To Do backend over Microsoft Graph."""

from __future__ import annotations

import logging
from typing import Any

from ..calendar.graph import (
    GRAPH_API_BASE,
    format_graph_datetime,
    parse_graph_datetime,
)
from ..calendar.ical import DEFAULT_TASK_TITLE
from ..core.account_settings import TaskSettings, secret_value
from ..core.datetime_utils import parse_remote_datetime, utc_now
from ..core.models import (
    Account,
    ReminderTask,
    TaskPriority,
    TaskStatus,
    task_record_id,
)
from ..transport.http import HttpAdapter, bearer_headers

LOGGER = logging.getLogger(__name__)

_IMPORTANCE_IN = {"high": TaskPriority.HIGH, "low": TaskPriority.LOW}
_IMPORTANCE_OUT = {
    TaskPriority.CRITICAL: "high",
    TaskPriority.HIGH: "high",
    TaskPriority.NORMAL: "normal",
    TaskPriority.LOW: "low",
}
_STATUS_IN = {
    "notStarted": TaskStatus.NOT_STARTED,
    "inProgress": TaskStatus.IN_PROGRESS,
    "completed": TaskStatus.COMPLETED,
    "deferred": TaskStatus.CANCELED,
    "waitingOnOthers": TaskStatus.IN_PROGRESS,
}
_STATUS_OUT = {
    TaskStatus.NOT_STARTED: "notStarted",
    TaskStatus.IN_PROGRESS: "inProgress",
    TaskStatus.COMPLETED: "completed",
    TaskStatus.CANCELED: "deferred",
}


class GraphTodoBackend(HttpAdapter):
    """Read and write Microsoft To Do tasks."""

    async def sync(
        self, account: Account, settings: TaskSettings
    ) -> list[ReminderTask]:
        headers = bearer_headers(secret_value(settings.access_token), "Graph")
        async with self._client(headers=headers) as client:
            items = await self._graph_pages(client, self._tasks_url(settings.list_id))
        tasks = [
            _to_task(account.id, settings.list_id, item)
            for item in items
            if item.get("id")
        ]
        LOGGER.info("Retrieved %d To Do task(s) for %s", len(tasks), account.id)
        return tasks

    async def upsert_remote(
        self,
        account: Account,
        settings: TaskSettings,
        task: ReminderTask,
        parent_remote_id: str | None = None,
    ) -> None:
        headers = bearer_headers(secret_value(settings.access_token), "Graph")
        body = _to_body(task)
        url = self._tasks_url(settings.list_id)
        async with self._client(headers=headers) as client:
            if task.remote_id:
                await self._json(client, "PATCH", f"{url}/{task.remote_id}", json=body)
            else:
                created = await self._json(client, "POST", url, json=body)
                task.remote_id = created.get("id")
        LOGGER.info("Stored To Do task %s for %s", task.remote_id, account.id)

    def _tasks_url(self, list_id: str) -> str:
        return f"{GRAPH_API_BASE}/me/todo/lists/{list_id}/tasks"


def _to_task(account_id: str, list_id: str, item: dict[str, Any]) -> ReminderTask:
    body = item.get("body") or {}
    pattern = (item.get("recurrence") or {}).get("pattern") or {}
    parent = item.get("parentTaskId")
    return ReminderTask(
        id=task_record_id(account_id, list_id, item["id"]),
        account_id=account_id,
        list_id=list_id,
        remote_id=item["id"],
        title=item.get("title") or DEFAULT_TASK_TITLE,
        notes=body.get("content") or None,
        due_at=parse_graph_datetime(item.get("dueDateTime")),
        completed_at=parse_graph_datetime(item.get("completedDateTime")),
        priority=_IMPORTANCE_IN.get(item.get("importance", ""), TaskPriority.NORMAL),
        status=_STATUS_IN.get(item.get("status", ""), TaskStatus.NOT_STARTED),
        repeat_rule=pattern.get("type"),
        parent_id=task_record_id(account_id, list_id, parent) if parent else None,
        created_at=parse_remote_datetime(item.get("createdDateTime")) or utc_now(),
        updated_at=parse_remote_datetime(item.get("lastModifiedDateTime"))
        or utc_now(),
    )


def _to_body(task: ReminderTask) -> dict[str, Any]:
    body: dict[str, Any] = {
        "title": task.title,
        "body": {"contentType": "text", "content": task.notes or ""},
        "importance": _IMPORTANCE_OUT[task.priority],
        "status": _STATUS_OUT[task.status],
    }
    if task.due_at is not None:
        body["dueDateTime"] = format_graph_datetime(task.due_at)
    if task.completed_at is not None:
        body["completedDateTime"] = format_graph_datetime(task.completed_at)
    return body


__all__ = ["GraphTodoBackend"]
