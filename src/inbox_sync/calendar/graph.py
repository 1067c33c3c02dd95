"""Microsoft Graph calendar backend."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

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

GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"

_GRAPH_FORMAT = "%Y-%m-%dT%H:%M:%S"
_FRACTION = re.compile(r"\.(\d+)")
_RSVP = {
    "accepted": RsvpStatus.ACCEPTED,
    "organizer": RsvpStatus.ACCEPTED,
    "declined": RsvpStatus.DECLINED,
    "tentativelyAccepted": RsvpStatus.TENTATIVE,
}


def parse_graph_datetime(value: dict[str, Any] | None) -> datetime | None:
    """Resolve a Graph ``dateTimeTimeZone`` object into an aware UTC datetime."""
    if not value or not value.get("dateTime"):
        return None
    text = _FRACTION.sub(lambda match: "." + match.group(1)[:6], value["dateTime"])
    try:
        parsed = datetime.fromisoformat(text.removesuffix("Z"))
    except ValueError:
        LOGGER.warning("Ignoring malformed Graph date-time %r", value["dateTime"])
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_zone(value.get("timeZone")))
    return ensure_utc(parsed)


def format_graph_datetime(value: datetime) -> dict[str, str]:
    return {
        "dateTime": (ensure_utc(value) or value).strftime(_GRAPH_FORMAT),
        "timeZone": "UTC",
    }


def _zone(name: str | None) -> Any:
    if not name or name.upper() in ("UTC", "Z"):
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.debug("Unknown Graph time zone %r, treating time as UTC", name)
        return UTC


class GraphCalendarBackend(HttpAdapter):
    """Read the calendar view and write events through Microsoft Graph."""

    async def sync_range(
        self,
        account: Account,
        settings: CalendarSettings,
        start: datetime,
        end: datetime,
    ) -> list[CalendarEvent]:
        headers = bearer_headers(secret_value(settings.access_token), "Graph")
        headers["Prefer"] = 'outlook.timezone="UTC"'
        url = f"{GRAPH_API_BASE}/me/calendars/{settings.calendar_id}/calendarView"
        params = {
            "startDateTime": (ensure_utc(start) or start).isoformat(),
            "endDateTime": (ensure_utc(end) or end).isoformat(),
        }
        async with self._client(headers=headers) as client:
            items = await self._graph_pages(client, url, params)

        events: list[CalendarEvent] = []
        for item in items:
            if not item.get("id") or item.get("isCancelled"):
                continue
            event = _to_event(account.id, settings.calendar_id, item)
            if event is not None:
                events.append(event)
        LOGGER.info("Retrieved %d Graph event(s) for %s", len(events), account.id)
        return events

    async def upsert_remote(
        self, account: Account, settings: CalendarSettings, event: CalendarEvent
    ) -> None:
        headers = bearer_headers(secret_value(settings.access_token), "Graph")
        body = _to_body(event)
        async with self._client(headers=headers) as client:
            if event.remote_id:
                await self._json(
                    client,
                    "PATCH",
                    f"{GRAPH_API_BASE}/me/events/{event.remote_id}",
                    json=body,
                )
            else:
                created = await self._json(
                    client,
                    "POST",
                    f"{GRAPH_API_BASE}/me/calendars/{settings.calendar_id}/events",
                    json=body,
                )
                event.remote_id = created.get("id", "")
        LOGGER.info("Stored Graph event %s for %s", event.remote_id, account.id)


def _to_event(
    account_id: str, calendar_id: str, item: dict[str, Any]
) -> CalendarEvent | None:
    starts_at = parse_graph_datetime(item.get("start"))
    if starts_at is None:
        LOGGER.warning("Skipping Graph event %s without a start", item.get("id"))
        return None
    all_day = bool(item.get("isAllDay"))
    ends_at = parse_graph_datetime(item.get("end"))
    body = item.get("body") or {}
    description = item.get("bodyPreview")
    if body.get("contentType", "").lower() == "text" and body.get("content"):
        description = body["content"]
    attendees = [
        person["emailAddress"]["address"]
        for person in item.get("attendees") or []
        if (person.get("emailAddress") or {}).get("address")
    ]
    response = (item.get("responseStatus") or {}).get("response", "")
    recurrence = (item.get("recurrence") or {}).get("pattern") or {}
    event = CalendarEvent(
        id=event_record_id(account_id, calendar_id, item["id"]),
        account_id=account_id,
        calendar_id=calendar_id,
        remote_id=item["id"],
        title=item.get("subject") or DEFAULT_EVENT_TITLE,
        starts_at=starts_at,
        ends_at=normalize_end(starts_at, ends_at, all_day),
        description=description or None,
        location=(item.get("location") or {}).get("displayName") or None,
        timezone=(item.get("start") or {}).get("timeZone"),
        all_day=all_day,
        recurrence_rule=_rrule(recurrence),
        attendees=attendees,
        organizer=((item.get("organizer") or {}).get("emailAddress") or {}).get(
            "address"
        ),
        rsvp_status=_RSVP.get(response, RsvpStatus.NEEDS_ACTION),
        updated_at=parse_remote_datetime(item.get("lastModifiedDateTime"))
        or utc_now(),
    )
    if item.get("isReminderOn") and item.get("reminderMinutesBeforeStart") is not None:
        event.alarms = [
            CalendarAlarm(minutes_before=int(item["reminderMinutesBeforeStart"]))
        ]
    return event


def _rrule(pattern: dict[str, Any]) -> str | None:
    kind = pattern.get("type")
    if not kind:
        return None
    frequency = {
        "daily": "DAILY",
        "weekly": "WEEKLY",
        "absoluteMonthly": "MONTHLY",
        "relativeMonthly": "MONTHLY",
        "absoluteYearly": "YEARLY",
        "relativeYearly": "YEARLY",
    }.get(kind)
    if frequency is None:
        return None
    interval = int(pattern.get("interval") or 1)
    return f"FREQ={frequency};INTERVAL={interval}"


def _to_body(event: CalendarEvent) -> dict[str, Any]:
    ends_at = event.ends_at
    if event.all_day and ends_at - event.starts_at < timedelta(days=1):
        ends_at = event.starts_at + timedelta(days=1)
    body: dict[str, Any] = {
        "subject": event.title,
        "body": {"contentType": "text", "content": event.description or ""},
        "start": format_graph_datetime(event.starts_at),
        "end": format_graph_datetime(ends_at),
        "isAllDay": event.all_day,
        "location": {"displayName": event.location or ""},
        "attendees": [
            {"emailAddress": {"address": address}, "type": "required"}
            for address in event.attendees
        ],
    }
    if event.alarms:
        body["isReminderOn"] = True
        body["reminderMinutesBeforeStart"] = event.alarms[0].minutes_before
    return body


__all__ = [
    "GRAPH_API_BASE",
    "GraphCalendarBackend",
    "format_graph_datetime",
    "parse_graph_datetime",
]
