"""Tests for the calendar backends and the calendar service."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from inbox_sync.calendar import (
    CalDavCalendarBackend,
    CalendarService,
    GoogleCalendarBackend,
    GraphCalendarBackend,
)
from inbox_sync.core.account_settings import CalendarSettings
from inbox_sync.core.models import (
    Account,
    CalendarEvent,
    Provider,
    RsvpStatus,
    event_record_id,
)

WINDOW_START = datetime(2025, 10, 1, tzinfo=UTC)
WINDOW_END = datetime(2025, 11, 1, tzinfo=UTC)


def _account(provider: Provider) -> Account:
    return Account(
        id="acct-1",
        provider=provider,
        display_name="Me",
        email_address="me@example.com",
    )


def _event(remote_id: str, start: datetime, end: datetime, **extra) -> CalendarEvent:
    return CalendarEvent(
        id=event_record_id("acct-1", "primary", remote_id),
        account_id="acct-1",
        calendar_id="primary",
        remote_id=remote_id,
        title=extra.pop("title", remote_id),
        starts_at=start,
        ends_at=end,
        **extra,
    )


GOOGLE_EVENTS = {
    "items": [
        {
            "id": "allday",
            "status": "confirmed",
            "summary": "Holiday",
            "start": {"date": "2025-10-24"},
            "end": {"date": "2025-10-25"},
        },
        {"id": "gone", "status": "cancelled"},
        {
            "id": "standup",
            "summary": "Standup",
            "start": {"dateTime": "2025-10-24T09:00:00Z", "timeZone": "UTC"},
            "attendees": [
                {"email": "boss@example.com", "responseStatus": "accepted"},
                {
                    "email": "me@example.com",
                    "self": True,
                    "responseStatus": "tentative",
                },
            ],
            "recurrence": ["EXDATE:20251031T090000Z", "RRULE:FREQ=DAILY;COUNT=5"],
            "reminders": {"useDefault": False, "overrides": [{"minutes": 30}]},
            "updated": "2025-10-20T08:00:00Z",
        },
    ]
}


@pytest.mark.asyncio
async def test_google_sync_range_normalizes_events() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=GOOGLE_EVENTS)

    backend = GoogleCalendarBackend(transport=httpx.MockTransport(handler))
    events = await backend.sync_range(
        _account(Provider.GMAIL),
        CalendarSettings(access_token="tok"),
        WINDOW_START,
        WINDOW_END,
    )

    assert requests[0].url.path == "/calendar/v3/calendars/primary/events"
    assert requests[0].url.params["timeMin"] == "2025-10-01T00:00:00Z"
    assert requests[0].url.params["singleEvents"] == "true"
    assert [event.remote_id for event in events] == ["allday", "standup"]

    holiday, standup = events
    assert holiday.all_day is True
    assert holiday.starts_at == datetime(2025, 10, 24, tzinfo=UTC)
    assert holiday.ends_at == datetime(2025, 10, 25, tzinfo=UTC)

    assert standup.all_day is False
    assert standup.ends_at - standup.starts_at == timedelta(hours=1)
    assert standup.rsvp_status is RsvpStatus.TENTATIVE
    assert standup.recurrence_rule == "FREQ=DAILY;COUNT=5"
    assert [alarm.minutes_before for alarm in standup.alarms] == [30]
    assert standup.attendees == ["boss@example.com", "me@example.com"]
    assert standup.id == event_record_id("acct-1", "primary", "standup")


@pytest.mark.asyncio
async def test_service_rekeys_event_created_remotely(record_store) -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "created-1"})

    service = CalendarService(
        record_store,
        google=GoogleCalendarBackend(transport=httpx.MockTransport(handler)),
    )
    start = datetime(2025, 10, 24, 13, 0, tzinfo=UTC)
    event = _event("", start, start + timedelta(minutes=30), title="Lunch")
    record_store.upsert_calendar_events([event])

    await service.upsert_remote(
        _account(Provider.GMAIL), CalendarSettings(access_token="tok"), event
    )

    assert bodies[0]["summary"] == "Lunch"
    assert bodies[0]["start"] == {"dateTime": "2025-10-24T13:00:00Z", "timeZone": "UTC"}
    assert event.remote_id == "created-1"
    assert event.id == event_record_id("acct-1", "primary", "created-1")
    stored = service.list_events("acct-1", WINDOW_START, WINDOW_END)
    assert [item.remote_id for item in stored] == ["created-1"]


GRAPH_VIEW = {
    "value": [
        {
            "id": "g1",
            "subject": "Review",
            "start": {"dateTime": "2025-10-24T10:00:00.0000000", "timeZone": "UTC"},
            "end": {"dateTime": "2025-10-24T11:30:00.0000000", "timeZone": "UTC"},
            "isAllDay": False,
            "bodyPreview": "Quarterly numbers",
            "location": {"displayName": "Room 4"},
            "attendees": [{"emailAddress": {"address": "ann@example.com"}}],
            "organizer": {"emailAddress": {"address": "boss@example.com"}},
            "responseStatus": {"response": "tentativelyAccepted"},
            "recurrence": {"pattern": {"type": "weekly", "interval": 2}},
            "isReminderOn": True,
            "reminderMinutesBeforeStart": 15,
        },
        {
            "id": "g2",
            "isCancelled": True,
            "start": {"dateTime": "2025-10-25T10:00:00", "timeZone": "UTC"},
        },
    ]
}


@pytest.mark.asyncio
async def test_graph_calendar_view_is_parsed() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=GRAPH_VIEW)

    backend = GraphCalendarBackend(transport=httpx.MockTransport(handler))
    events = await backend.sync_range(
        _account(Provider.OUTLOOK),
        CalendarSettings(access_token="tok", calendar_id="cal-9"),
        WINDOW_START,
        WINDOW_END,
    )

    assert requests[0].url.path == "/v1.0/me/calendars/cal-9/calendarView"
    assert requests[0].headers["Prefer"] == 'outlook.timezone="UTC"'
    assert len(events) == 1
    event = events[0]
    assert event.starts_at == datetime(2025, 10, 24, 10, 0, tzinfo=UTC)
    assert event.ends_at == datetime(2025, 10, 24, 11, 30, tzinfo=UTC)
    assert event.description == "Quarterly numbers"
    assert event.location == "Room 4"
    assert event.organizer == "boss@example.com"
    assert event.rsvp_status is RsvpStatus.TENTATIVE
    assert event.recurrence_rule == "FREQ=WEEKLY;INTERVAL=2"
    assert [alarm.minutes_before for alarm in event.alarms] == [15]


MULTISTATUS = """<?xml version="1.0" encoding="utf-8"?>
<d:multistatus xmlns:d="DAV:" xmlns:cal="urn:ietf:params:xml:ns:caldav">
  <d:response>
    <d:href>/cal/meeting.ics</d:href>
    <d:propstat><d:prop>
      <cal:calendar-data>BEGIN:VCALENDAR
VERSION:2.0
BEGIN:VEVENT
UID:meeting-1
DTSTART:20251024T140000Z
DTEND:20251024T150000Z
SUMMARY:Design &amp; review
END:VEVENT
END:VCALENDAR
</cal:calendar-data>
    </d:prop></d:propstat>
  </d:response>
</d:multistatus>"""

CALDAV_SETTINGS = CalendarSettings(
    endpoint="https://dav.example.com/cal/", username="me", password="pw"
)


@pytest.mark.asyncio
async def test_caldav_report_returns_events() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(207, text=MULTISTATUS)

    backend = CalDavCalendarBackend(transport=httpx.MockTransport(handler))
    events = await backend.sync_range(
        _account(Provider.ICLOUD), CALDAV_SETTINGS, WINDOW_START, WINDOW_END
    )

    request = requests[0]
    assert request.method == "REPORT"
    assert request.headers["Depth"] == "1"
    assert request.headers["Authorization"].startswith("Basic ")
    assert 'start="20251001T000000Z"' in request.content.decode()
    assert [event.title for event in events] == ["Design & review"]
    assert events[0].remote_id == "meeting-1"


@pytest.mark.asyncio
async def test_caldav_upsert_puts_calendar_resource() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201)

    backend = CalDavCalendarBackend(transport=httpx.MockTransport(handler))
    start = datetime(2025, 10, 24, 14, 0, tzinfo=UTC)
    event = _event("meeting-1", start, start + timedelta(hours=1))

    await backend.upsert_remote(_account(Provider.ICLOUD), CALDAV_SETTINGS, event)

    request = requests[0]
    assert request.method == "PUT"
    assert str(request.url) == "https://dav.example.com/cal/meeting-1.ics"
    body = request.content.decode()
    assert "UID:meeting-1" in body
    assert body.startswith("BEGIN:VCALENDAR\r\n")


@pytest.mark.asyncio
async def test_caldav_assigns_remote_id_for_new_events() -> None:
    backend = CalDavCalendarBackend(
        transport=httpx.MockTransport(lambda _: httpx.Response(204))
    )
    start = datetime(2025, 10, 24, 14, 0, tzinfo=UTC)
    event = _event("", start, start + timedelta(hours=1))

    await backend.upsert_remote(_account(Provider.ICLOUD), CALDAV_SETTINGS, event)

    assert event.remote_id


def test_backend_routing_by_provider(record_store) -> None:
    google, graph, caldav = object(), object(), object()
    service = CalendarService(record_store, caldav=caldav, google=google, graph=graph)

    assert service.backend_for(Provider.GMAIL) is google
    assert service.backend_for(Provider.OUTLOOK) is graph
    assert service.backend_for(Provider.EXCHANGE) is graph
    assert service.backend_for(Provider.ICLOUD) is caldav
    assert service.backend_for(Provider.GENERIC) is caldav


def test_detect_conflicts_ignores_all_day_events(record_store) -> None:
    base = datetime(2025, 10, 24, 9, 0, tzinfo=UTC)
    record_store.upsert_calendar_events(
        [
            _event("a", base, base + timedelta(hours=2)),
            _event("b", base + timedelta(hours=1), base + timedelta(hours=3)),
            _event("c", base + timedelta(hours=3), base + timedelta(hours=4)),
            _event(
                "holiday",
                datetime(2025, 10, 24, tzinfo=UTC),
                datetime(2025, 10, 25, tzinfo=UTC),
                all_day=True,
            ),
        ]
    )
    service = CalendarService(record_store)

    conflicts = service.detect_conflicts("acct-1", WINDOW_START, WINDOW_END)

    assert [(first.remote_id, second.remote_id) for first, second in conflicts] == [
        ("a", "b")
    ]


def test_import_and_export_ics(record_store) -> None:
    service = CalendarService(record_store)
    text = MULTISTATUS.split("<cal:calendar-data>")[1].split("</cal:calendar-data>")[0]

    assert service.import_ics("acct-1", "imported", text.replace("&amp;", "&")) == 1

    events = service.list_events("acct-1", WINDOW_START, WINDOW_END)
    exported = CalendarService.export_ics(events)
    assert "SUMMARY:Design & review" in exported
    assert exported.count("BEGIN:VEVENT") == 1


@pytest.mark.asyncio
async def test_graph_calendar_view_follows_next_link() -> None:
    requests: list[httpx.Request] = []
    next_link = (
        "https://graph.microsoft.com/v1.0/me/calendars/cal-9/calendarView"
        "?$skiptoken=page2"
    )
    first_page = {"value": [GRAPH_VIEW["value"][0]], "@odata.nextLink": next_link}
    second_page = {
        "value": [
            {
                "id": "g3",
                "subject": "Retro",
                "start": {"dateTime": "2025-10-27T10:00:00", "timeZone": "UTC"},
                "end": {"dateTime": "2025-10-27T11:00:00", "timeZone": "UTC"},
            }
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "$skiptoken" in request.url.params:
            return httpx.Response(200, json=second_page)
        return httpx.Response(200, json=first_page)

    backend = GraphCalendarBackend(transport=httpx.MockTransport(handler))
    events = await backend.sync_range(
        _account(Provider.OUTLOOK),
        CalendarSettings(access_token="tok", calendar_id="cal-9"),
        WINDOW_START,
        WINDOW_END,
    )

    assert [event.remote_id for event in events] == ["g1", "g3"]
    assert len(requests) == 2
    assert "startDateTime" not in requests[1].url.params


@pytest.mark.asyncio
async def test_google_events_follow_page_token() -> None:
    tokens: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        token = request.url.params.get("pageToken")
        tokens.append(token)
        if token is None:
            return httpx.Response(
                200, json={"items": GOOGLE_EVENTS["items"][:1], "nextPageToken": "n2"}
            )
        return httpx.Response(200, json={"items": GOOGLE_EVENTS["items"][2:]})

    backend = GoogleCalendarBackend(transport=httpx.MockTransport(handler))
    events = await backend.sync_range(
        _account(Provider.GMAIL),
        CalendarSettings(access_token="tok"),
        WINDOW_START,
        WINDOW_END,
    )

    assert tokens == [None, "n2"]
    assert [event.remote_id for event in events] == ["allday", "standup"]


def test_update_rsvp_status_persists_response(record_store) -> None:
    service = CalendarService(record_store)
    start = datetime(2025, 10, 24, 9, 0, tzinfo=UTC)
    event = _event("invite", start, start + timedelta(hours=1))
    record_store.upsert_calendar_events([event])

    assert service.update_rsvp_status(event.id, RsvpStatus.ACCEPTED) is True
    assert service.update_rsvp_status("missing", RsvpStatus.DECLINED) is False

    stored = record_store.get_calendar_event(event.id)
    assert stored is not None
    assert stored.rsvp_status is RsvpStatus.ACCEPTED
