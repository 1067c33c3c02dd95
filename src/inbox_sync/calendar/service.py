"""Calendar orchestration over the protocol backends and the record store."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from ..core.account_settings import CalendarSettings
from ..core.interfaces import CalendarBackend
from ..core.models import (
    Account,
    CalendarEvent,
    Provider,
    RsvpStatus,
    event_record_id,
)
from ..storage.sqlite import SqliteRecordStore
from .caldav import CalDavCalendarBackend
from .google import GoogleCalendarBackend
from .graph import GraphCalendarBackend
from .ical import parse_events, render_calendar, render_event

LOGGER = logging.getLogger(__name__)


class CalendarService:
    """Synchronize calendars and expose stored events."""

    def __init__(
        self,
        store: SqliteRecordStore,
        *,
        caldav: CalendarBackend | None = None,
        google: CalendarBackend | None = None,
        graph: CalendarBackend | None = None,
    ) -> None:
        self._store = store
        self._caldav = caldav or CalDavCalendarBackend()
        self._google = google or GoogleCalendarBackend()
        self._graph = graph or GraphCalendarBackend()

    def backend_for(self, provider: Provider) -> CalendarBackend:
        if provider is Provider.GMAIL:
            return self._google
        if provider in (Provider.OUTLOOK, Provider.EXCHANGE):
            return self._graph
        return self._caldav

    async def sync_range(
        self,
        account: Account,
        settings: CalendarSettings,
        start: datetime,
        end: datetime,
    ) -> int:
        """Fetch events overlapping ``[start, end)`` and merge them into storage."""
        backend = self.backend_for(account.provider)
        events = await backend.sync_range(account, settings, start, end)
        stored = self._store.upsert_calendar_events(events)
        LOGGER.info("Synchronized %d event(s) for %s", stored, account.id)
        return stored

    async def upsert_remote(
        self, account: Account, settings: CalendarSettings, event: CalendarEvent
    ) -> None:
        """Write ``event`` to the remote calendar, then store it under its remote key.

        A locally created event is re-keyed once the server assigns its id; the
        row stored under the local id is replaced rather than left behind.
        """
        backend = self.backend_for(account.provider)
        previous_id = event.id
        await backend.upsert_remote(account, settings, event)
        if event.remote_id:
            event.id = event_record_id(account.id, event.calendar_id, event.remote_id)
        self._store.replace_calendar_event(previous_id, event)

    def update_rsvp_status(self, event_id: str, status: RsvpStatus) -> bool:
        """Record the user's invitation response on a stored event."""
        return self._store.update_rsvp_status(event_id, status)

    def import_ics(self, account_id: str, calendar_id: str, text: str) -> int:
        events = parse_events(text, account_id, calendar_id)
        stored = self._store.upsert_calendar_events(events)
        LOGGER.info("Imported %d event(s) into %s/%s", stored, account_id, calendar_id)
        return stored

    @staticmethod
    def export_ics(events: Iterable[CalendarEvent]) -> str:
        return render_calendar(render_event(event) for event in events)

    def list_events(
        self, account_id: str, start: datetime, end: datetime
    ) -> list[CalendarEvent]:
        return self._store.list_calendar_events(account_id, start, end)

    def detect_conflicts(
        self, account_id: str, start: datetime, end: datetime
    ) -> list[tuple[CalendarEvent, CalendarEvent]]:
        """Return pairs of stored timed events that overlap inside the window.

        All-day events are not treated as conflicts.
        """
        events = sorted(
            (
                event
                for event in self._store.list_calendar_events(account_id, start, end)
                if not event.all_day
            ),
            key=lambda item: item.starts_at,
        )
        conflicts: list[tuple[CalendarEvent, CalendarEvent]] = []
        for index, first in enumerate(events):
            for second in events[index + 1 :]:
                if second.starts_at >= first.ends_at:
                    break
                conflicts.append((first, second))
        return conflicts


__all__ = ["CalendarService"]
