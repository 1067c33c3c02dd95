"""CalDAV calendar backend (RFC 4791)."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from ..core.account_settings import CalendarSettings, TaskSettings, secret_value
from ..core.datetime_utils import ensure_utc
from ..core.errors import ConfigurationError
from ..core.models import Account, CalendarEvent, new_record_id
from ..transport.http import HttpAdapter, client_auth
from .ical import extract_calendar_data, parse_events, render_calendar, render_event

LOGGER = logging.getLogger(__name__)

_REPORT_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<c:calendar-query xmlns:d="DAV:" xmlns:c="urn:ietf:params:xml:ns:caldav">
  <d:prop>
    <d:getetag/>
    <c:calendar-data/>
  </d:prop>
  <c:filter>
    <c:comp-filter name="VCALENDAR">
      <c:comp-filter name="{component}">{time_range}</c:comp-filter>
    </c:comp-filter>
  </c:filter>
</c:calendar-query>"""


class DavCollectionAdapter(HttpAdapter):
    """Shared REPORT and PUT plumbing for CalDAV collections."""

    async def _report(
        self,
        settings: CalendarSettings | TaskSettings,
        component: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[str]:
        """Run a calendar-query REPORT and return the embedded iCalendar bodies."""
        time_range = ""
        if start is not None and end is not None:
            time_range = (
                f'<c:time-range start="{ensure_utc(start):%Y%m%dT%H%M%SZ}" '
                f'end="{ensure_utc(end):%Y%m%dT%H%M%SZ}"/>'
            )
        body = _REPORT_TEMPLATE.format(component=component, time_range=time_range)
        options = self._auth(settings)
        headers = options.setdefault("headers", {})
        headers.update({"Depth": "1", "Content-Type": "application/xml; charset=utf-8"})
        async with self._client(**options) as client:
            response = await self._request(
                client,
                "REPORT",
                self._collection(settings),
                expected=(200, 207),
                content=body.encode("utf-8"),
            )
        return extract_calendar_data(response.text)

    async def _put(
        self, settings: CalendarSettings | TaskSettings, remote_id: str, body: str
    ) -> None:
        options = self._auth(settings)
        headers = options.setdefault("headers", {})
        headers["Content-Type"] = "text/calendar; charset=utf-8"
        url = f"{self._collection(settings).rstrip('/')}/{remote_id}.ics"
        async with self._client(**options) as client:
            await self._request(client, "PUT", url, content=body.encode("utf-8"))

    def _auth(self, settings: CalendarSettings | TaskSettings) -> dict[str, Any]:
        return client_auth(
            secret_value(settings.access_token),
            settings.username,
            secret_value(settings.password),
            "CalDAV",
        )

    def _collection(self, settings: CalendarSettings | TaskSettings) -> str:
        if not settings.endpoint:
            raise ConfigurationError("CalDAV endpoint is not configured")
        return settings.endpoint


class CalDavCalendarBackend(DavCollectionAdapter):
    """Read and write ``VEVENT`` resources in a CalDAV collection."""

    async def sync_range(
        self,
        account: Account,
        settings: CalendarSettings,
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        events: list[CalendarEvent] = []
        for payload in await self._report(settings, "VEVENT", start, end):
            events.extend(parse_events(payload, account.id, settings.calendar_id))
        LOGGER.debug("CalDAV returned %d event(s) for %s", len(events), account.id)
        return events

    async def upsert_remote(
        self, account: Account, settings: CalendarSettings, event: CalendarEvent
    ) -> None:
        if not event.remote_id:
            event.remote_id = new_record_id()
        await self._put(
            settings, event.remote_id, render_calendar([render_event(event)])
        )
        LOGGER.info("Stored CalDAV event %s for %s", event.remote_id, account.id)


__all__ = ["CalDavCalendarBackend", "DavCollectionAdapter"]
