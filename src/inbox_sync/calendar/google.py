"""Google Calendar REST backend."""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime, time
from typing import Any
from urllib.parse import quote

from ..core.account_settings import CalendarSettings, secret_value
from ..core.datetime_utils import ensure_utc, parse_remote_datetime, utc_now
from ..core.models import (
    Account,
    CalendarAlarm,
    CalendarEvent,
    RsvpStatus,
    event_record_id,
)
from ..transport.http import HttpAdapter, bearer_headers
from .ical import DEFAULT_EVENT_TITLE, normalize_end

LOGGER = logging.getLogger(__name__)

_RSVP = {
    "accepted": RsvpStatus.ACCEPTED,
    "declined": RsvpStatus.DECLINED,
    "tentative": RsvpStatus.TENTATIVE,
    "needsAction": RsvpStatus.NEEDS_ACTION,
}


class GoogleCalendarBackend(HttpAdapter):
    """Client for the Google Calendar v3 API using an OAuth bearer token."""

    CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

    async def sync_range(
        self,
        account: Account,
        settings: CalendarSettings,
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        """List single events between ``start`` and ``end``."""
        headers = bearer_headers(secret_value(settings.access_token), "Google Calendar")
        params = {
            "timeMin": _rfc3339(start),
            "timeMax": _rfc3339(end),
            "singleEvents": "true",
            "showDeleted": "false",
            "maxResults": 500,
        }
        async with self._client(headers=headers) as client:
            items = await self._google_pages(
                client, self._events_url(settings.calendar_id), params
            )

        events: list[CalendarEvent] = []
        for item in items:
            if item.get("status") == "cancelled" or not item.get("id"):
                continue
            event = _to_event(account.id, settings.calendar_id, item)
            if event is not None:
                events.append(event)
        LOGGER.info("Retrieved %d Google event(s) for %s", len(events), account.id)
        return events

    async def upsert_remote(
        self, account: Account, settings: CalendarSettings, event: CalendarEvent
    ) -> None:
        """Patch the remote event, or create it when it has no remote id yet."""
        headers = bearer_headers(secret_value(settings.access_token), "Google Calendar")
        body = _to_body(event)
        url = self._events_url(settings.calendar_id)
        async with self._client(headers=headers) as client:
            if event.remote_id:
                target = f"{url}/{quote(event.remote_id, safe='')}"
                created = await self._json(client, "PATCH", target, json=body)
            else:
                created = await self._json(client, "POST", url, json=body)
        if not event.remote_id and created.get("id"):
            event.remote_id = created["id"]
        LOGGER.info(
            "Stored Google event %s (ID: %s) for %s",
            event.title,
            event.remote_id,
            account.id,
        )

    def _events_url(self, calendar_id: str) -> str:
        calendar = quote(calendar_id, safe="")
        return f"{self.CALENDAR_API_BASE}/calendars/{calendar}/events"


def _rfc3339(value: datetime) -> str:
    return (ensure_utc(value) or value).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_when(when: dict[str, Any] | None) -> tuple[datetime | None, bool]:
    if not when:
        return None, False
    if when.get("date"):
        try:
            day = date.fromisoformat(when["date"])
        except ValueError:
            return None, False
        return datetime.combine(day, time.min, tzinfo=UTC), True
    return parse_remote_datetime(when.get("dateTime")), False


def _to_event(
    account_id: str, calendar_id: str, item: dict[str, Any]
) -> CalendarEvent | None:
    starts_at, all_day = _parse_when(item.get("start"))
    if starts_at is None:
        LOGGER.warning("Skipping Google event %s without a start", item.get("id"))
        return None
    ends_at, _ = _parse_when(item.get("end"))
    attendees = item.get("attendees") or []
    rsvp = next(
        (
            _RSVP.get(person.get("responseStatus", ""), RsvpStatus.NEEDS_ACTION)
            for person in attendees
            if person.get("self")
        ),
        RsvpStatus.NEEDS_ACTION,
    )
    recurrence = next(
        (
            rule[len("RRULE:") :]
            for rule in item.get("recurrence") or []
            if rule.startswith("RRULE:")
        ),
        None,
    )
    event = CalendarEvent(
        id=event_record_id(account_id, calendar_id, item["id"]),
        account_id=account_id,
        calendar_id=calendar_id,
        remote_id=item["id"],
        title=item.get("summary") or DEFAULT_EVENT_TITLE,
        starts_at=starts_at,
        ends_at=normalize_end(starts_at, ends_at, all_day),
        description=item.get("description"),
        location=item.get("location"),
        timezone=(item.get("start") or {}).get("timeZone"),
        all_day=all_day,
        recurrence_rule=recurrence,
        attendees=[person["email"] for person in attendees if person.get("email")],
        organizer=(item.get("organizer") or {}).get("email"),
        rsvp_status=rsvp,
        updated_at=parse_remote_datetime(item.get("updated")) or utc_now(),
    )
    overrides = (item.get("reminders") or {}).get("overrides")
    if overrides:
        event.alarms = [
            CalendarAlarm(minutes_before=int(entry.get("minutes", 0)))
            for entry in overrides
        ]
    return event


def _to_body(event: CalendarEvent) -> dict[str, Any]:
    if event.all_day:
        start = {"date": event.starts_at.date().isoformat()}
        end = {"date": event.ends_at.date().isoformat()}
    else:
        start = {"dateTime": _rfc3339(event.starts_at), "timeZone": "UTC"}
        end = {"dateTime": _rfc3339(event.ends_at), "timeZone": "UTC"}
    body: dict[str, Any] = {
        "summary": event.title,
        "description": event.description,
        "location": event.location,
        "start": start,
        "end": end,
        "attendees": [{"email": address} for address in event.attendees],
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "popup", "minutes": alarm.minutes_before}
                for alarm in event.alarms
            ],
        },
    }
    if event.recurrence_rule:
        body["recurrence"] = [f"RRULE:{event.recurrence_rule}"]
    return body


__all__ = ["GoogleCalendarBackend"]
