"""Task list orchestration over the protocol backends and the record store."""

from __future__ import annotations

import logging

from ..core.account_settings import TaskSettings
from ..core.interfaces import TaskBackend
from ..core.models import Account, Provider, ReminderTask, task_record_id
from ..storage.sqlite import SqliteRecordStore
from .caldav import CalDavTaskBackend
from .google import GoogleTasksBackend
from .graph import GraphTodoBackend

LOGGER = logging.getLogger(__name__)


class TaskService:
    """Synchronize task lists and expose stored tasks."""

    def __init__(
        self,
        store: SqliteRecordStore,
        *,
        caldav: TaskBackend | None = None,
        google: TaskBackend | None = None,
        graph: TaskBackend | None = None,
    ) -> None:
        self._store = store
        self._caldav = caldav or CalDavTaskBackend()
        self._google = google or GoogleTasksBackend()
        self._graph = graph or GraphTodoBackend()

    def backend_for(self, provider: Provider) -> TaskBackend:
        if provider is Provider.GMAIL:
            return self._google
        if provider in (Provider.OUTLOOK, Provider.EXCHANGE):
            return self._graph
        return self._caldav

    async def sync_tasks(self, account: Account, settings: TaskSettings) -> int:
        """Fetch the configured task list and merge it into storage."""
        backend = self.backend_for(account.provider)
        tasks = await backend.sync(account, settings)
        stored = self._store.upsert_tasks(tasks)
        LOGGER.info("Synchronized %d task(s) for %s", stored, account.id)
        return stored

    async def upsert_remote(
        self, account: Account, settings: TaskSettings, task: ReminderTask
    ) -> None:
        """Write ``task`` to the remote list, then store it under its remote key.

        The parent link is sent as the parent's remote id. A locally created
        task is re-keyed once the server assigns its id, and its stored row and
        subtasks move to the new key.
        """
        backend = self.backend_for(account.provider)
        previous_id = task.id
        await backend.upsert_remote(
            account, settings, task, parent_remote_id=self._parent_remote_id(task)
        )
        if task.remote_id:
            task.id = task_record_id(account.id, task.list_id, task.remote_id)
        self._store.replace_task(previous_id, task)

    def list_tasks(self, account_id: str) -> list[ReminderTask]:
        return self._store.list_tasks(account_id)

    def list_subtasks(self, parent_id: str) -> list[ReminderTask]:
        return self._store.list_subtasks(parent_id)

    def _parent_remote_id(self, task: ReminderTask) -> str | None:
        if not task.parent_id:
            return None
        parent = self._store.get_task(task.parent_id)
        if parent is None or not parent.remote_id:
            LOGGER.warning(
                "Parent %s of task %s has no remote id yet", task.parent_id, task.id
            )
            return None
        return parent.remote_id


__all__ = ["TaskService"]
