"""CalDAV task backend reading and writing ``VTODO`` resources."""

from __future__ import annotations

import logging

from ..calendar.caldav import DavCollectionAdapter
from ..calendar.ical import parse_todos, render_calendar, render_todo
from ..core.account_settings import TaskSettings
from ..core.models import Account, ReminderTask

LOGGER = logging.getLogger(__name__)


class CalDavTaskBackend(DavCollectionAdapter):
    """Task list stored as a CalDAV collection of to-dos."""

    async def sync(
        self, account: Account, settings: TaskSettings
    ) -> list[ReminderTask]:
        tasks: list[ReminderTask] = []
        for payload in await self._report(settings, "VTODO"):
            tasks.extend(parse_todos(payload, account.id, settings.list_id))
        LOGGER.debug("CalDAV returned %d task(s) for %s", len(tasks), account.id)
        return tasks

    async def upsert_remote(
        self,
        account: Account,
        settings: TaskSettings,
        task: ReminderTask,
        parent_remote_id: str | None = None,
    ) -> None:
        if not task.remote_id:
            task.remote_id = task.id
        payload = render_calendar([render_todo(task, parent_remote_id)])
        await self._put(settings, task.remote_id, payload)
        LOGGER.info("Stored CalDAV task %s for %s", task.remote_id, account.id)


__all__ = ["CalDavTaskBackend"]
