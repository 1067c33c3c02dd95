"""Minimal iCalendar (RFC 5545) reader and writer for events and to-dos."""

from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from xml.sax.saxutils import unescape
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.datetime_utils import ensure_utc, utc_now
from ..core.models import (
    CalendarAlarm,
    CalendarEvent,
    ReminderTask,
    TaskPriority,
    TaskStatus,
    content_record_key,
    event_record_id,
    task_record_id,
)

LOGGER = logging.getLogger(__name__)

PRODID = "-//inbox-sync//EN"
DEFAULT_EVENT_TITLE = "Untitled event"
DEFAULT_TASK_TITLE = "Untitled task"

_UTC_FORMAT = "%Y%m%dT%H%M%SZ"
_FOLD_OCTETS = 75
_VOLATILE_PROPERTIES = frozenset({"DTSTAMP", "LAST-MODIFIED", "SEQUENCE"})
_CALENDAR_DATA = re.compile(
    r"(?is)<(?:[a-z0-9_]+:)?calendar-data[^>]*>(.*?)</(?:[a-z0-9_]+:)?calendar-data>"
)
_TRIGGER = re.compile(
    r"^-P(?:(\d+)W)?(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:\d+S)?)?$"
)
_XML_ENTITIES = {"&quot;": '"', "&apos;": "'", "&#13;": "\r"}

_STATUS_FROM_ICAL = {
    "COMPLETED": TaskStatus.COMPLETED,
    "IN-PROCESS": TaskStatus.IN_PROGRESS,
    "CANCELLED": TaskStatus.CANCELED,
    "NEEDS-ACTION": TaskStatus.NOT_STARTED,
}
_STATUS_TO_ICAL = {value: key for key, value in _STATUS_FROM_ICAL.items()}
_PRIORITY_TO_ICAL = {
    TaskPriority.CRITICAL: 1,
    TaskPriority.HIGH: 3,
    TaskPriority.NORMAL: 5,
    TaskPriority.LOW: 7,
}


@dataclass(slots=True)
class Property:
    """One content line: name, parameters, and raw value."""

    name: str
    value: str
    params: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class Component:
    """A ``BEGIN``/``END`` block with its properties and nested blocks."""

    name: str
    properties: list[Property] = field(default_factory=list)
    children: list[Component] = field(default_factory=list)

    def get(self, name: str) -> Property | None:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def text(self, name: str) -> str | None:
        prop = self.get(name)
        if prop is None:
            return None
        return unescape_text(prop.value).strip() or None

    def all(self, name: str) -> list[Property]:
        return [prop for prop in self.properties if prop.name == name]


# Lexing ----------------------------------------------------------------------
def unfold_lines(text: str) -> list[str]:
    """Join folded continuation lines and drop blank ones."""
    lines: list[str] = []
    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if raw[:1] in (" ", "\t") and lines:
            lines[-1] += raw[1:]
        elif raw.strip():
            lines.append(raw)
    return lines


def unescape_text(value: str) -> str:
    """Decode ``\\n``, ``\\\\``, ``\\;`` and ``\\,`` text escapes."""
    result: list[str] = []
    chars = iter(value)
    for char in chars:
        if char != "\\":
            result.append(char)
            continue
        following = next(chars, "")
        if following in ("n", "N"):
            result.append("\n")
        else:
            result.append(following)
    return "".join(result)


def escape_text(value: str) -> str:
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def parse_property(line: str) -> Property:
    """Split a content line into name, parameters, and value."""
    head, _, value = _split_unquoted(line, ":")
    name, *raw_params = _split_params(head)
    params: dict[str, str] = {}
    for raw in raw_params:
        key, _, param_value = raw.partition("=")
        params[key.upper()] = param_value.strip('"')
    return Property(name=name.upper(), value=value, params=params)


def parse_components(text: str) -> list[Component]:
    """Parse ``text`` into its top-level components."""
    roots: list[Component] = []
    stack: list[Component] = []
    for line in unfold_lines(text):
        prop = parse_property(line)
        if prop.name == "BEGIN":
            component = Component(name=prop.value.strip().upper())
            if stack:
                stack[-1].children.append(component)
            else:
                roots.append(component)
            stack.append(component)
        elif prop.name == "END":
            if stack:
                stack.pop()
        elif stack:
            stack[-1].properties.append(prop)
    return roots


def iter_components(roots: Iterable[Component], name: str) -> Iterator[Component]:
    """Yield every component called ``name`` at any depth."""
    for component in roots:
        if component.name == name:
            yield component
        yield from iter_components(component.children, name)


# Values ----------------------------------------------------------------------
def parse_ical_datetime(prop: Property | None) -> tuple[datetime | None, bool]:
    """Return the UTC instant for a date or date-time property and its all-day flag."""
    if prop is None or not prop.value.strip():
        return None, False
    value = prop.value.strip()
    if prop.params.get("VALUE", "").upper() == "DATE" or (
        len(value) == 8 and value.isdigit()
    ):
        try:
            day = datetime.strptime(value[:8], "%Y%m%d").date()
        except ValueError:
            LOGGER.warning("Ignoring malformed date %r", value)
            return None, False
        return datetime.combine(day, time.min, tzinfo=UTC), True

    try:
        if value.endswith("Z"):
            parsed = datetime.strptime(value, _UTC_FORMAT).replace(tzinfo=UTC)
        else:
            parsed = datetime.strptime(value, "%Y%m%dT%H%M%S")
            parsed = parsed.replace(tzinfo=_zone(prop.params.get("TZID")))
    except ValueError:
        LOGGER.warning("Ignoring malformed date-time %r", value)
        return None, False
    return ensure_utc(parsed), False


def normalize_end(
    starts_at: datetime, ends_at: datetime | None, all_day: bool
) -> datetime:
    """Default a missing or non-positive end to one day or one hour past the start."""
    if ends_at is not None and ends_at > starts_at:
        return ends_at
    return starts_at + (timedelta(days=1) if all_day else timedelta(hours=1))


def priority_from_ical(value: str | None) -> TaskPriority:
    try:
        number = int(value or "")
    except ValueError:
        return TaskPriority.NORMAL
    if number == 1:
        return TaskPriority.CRITICAL
    if 2 <= number <= 4:
        return TaskPriority.HIGH
    if 6 <= number <= 9:
        return TaskPriority.LOW
    return TaskPriority.NORMAL


def priority_to_ical(priority: TaskPriority) -> int:
    return _PRIORITY_TO_ICAL[priority]


def status_from_ical(value: str | None) -> TaskStatus:
    return _STATUS_FROM_ICAL.get((value or "").strip().upper(), TaskStatus.NOT_STARTED)


def status_to_ical(status: TaskStatus) -> str:
    return _STATUS_TO_ICAL[status]


# Readers ---------------------------------------------------------------------
def parse_events(text: str, account_id: str, calendar_id: str) -> list[CalendarEvent]:
    """Return the ``VEVENT`` components of ``text`` as normalized events."""
    events: list[CalendarEvent] = []
    for component in iter_components(parse_components(text), "VEVENT"):
        starts_at, all_day = parse_ical_datetime(component.get("DTSTART"))
        if starts_at is None:
            LOGGER.warning("Skipping VEVENT without a usable DTSTART")
            continue
        ends_at, _ = parse_ical_datetime(component.get("DTEND"))
        dtstart = component.get("DTSTART")
        organizer = component.get("ORGANIZER")
        remote_id = _remote_uid(component, account_id)
        alarms = _alarms(component)
        event = CalendarEvent(
            id=event_record_id(account_id, calendar_id, remote_id),
            account_id=account_id,
            calendar_id=calendar_id,
            remote_id=remote_id,
            title=component.text("SUMMARY") or DEFAULT_EVENT_TITLE,
            starts_at=starts_at,
            ends_at=normalize_end(starts_at, ends_at, all_day),
            description=component.text("DESCRIPTION"),
            location=component.text("LOCATION"),
            timezone=dtstart.params.get("TZID") if dtstart else None,
            all_day=all_day,
            recurrence_rule=component.text("RRULE"),
            attendees=[
                _strip_mailto(prop.value) for prop in component.all("ATTENDEE")
            ],
            organizer=_strip_mailto(organizer.value) if organizer else None,
            updated_at=_stamp(component),
        )
        if alarms:
            event.alarms = alarms
        events.append(event)
    return events


def parse_todos(text: str, account_id: str, list_id: str) -> list[ReminderTask]:
    """Return the ``VTODO`` components of ``text`` as normalized tasks."""
    tasks: list[ReminderTask] = []
    for component in iter_components(parse_components(text), "VTODO"):
        remote_id = _remote_uid(component, account_id)
        due_at, _ = parse_ical_datetime(component.get("DUE"))
        completed_at, _ = parse_ical_datetime(component.get("COMPLETED"))
        created_at, _ = parse_ical_datetime(component.get("CREATED"))
        parent_uid = component.text("RELATED-TO")
        tasks.append(
            ReminderTask(
                id=task_record_id(account_id, list_id, remote_id),
                account_id=account_id,
                list_id=list_id,
                remote_id=remote_id,
                title=component.text("SUMMARY") or DEFAULT_TASK_TITLE,
                notes=component.text("DESCRIPTION"),
                due_at=due_at,
                completed_at=completed_at,
                priority=priority_from_ical(component.text("PRIORITY")),
                status=status_from_ical(component.text("STATUS")),
                repeat_rule=component.text("RRULE"),
                parent_id=task_record_id(account_id, list_id, parent_uid)
                if parent_uid
                else None,
                created_at=created_at or utc_now(),
                updated_at=_stamp(component),
            )
        )
    return tasks


def extract_calendar_data(xml: str) -> list[str]:
    """Return the iCalendar payloads embedded in a CalDAV multistatus body."""
    return [
        unescape(match, _XML_ENTITIES).strip()
        for match in _CALENDAR_DATA.findall(xml)
        if match.strip()
    ]


# Writers ---------------------------------------------------------------------
def render_event(event: CalendarEvent) -> list[str]:
    """Return the content lines of a ``VEVENT`` block."""
    lines = [
        "BEGIN:VEVENT",
        f"UID:{escape_text(event.remote_id)}",
        f"DTSTAMP:{_utc(event.updated_at)}",
        f"SUMMARY:{escape_text(event.title)}",
    ]
    if event.all_day:
        lines.append(f"DTSTART;VALUE=DATE:{event.starts_at:%Y%m%d}")
        lines.append(f"DTEND;VALUE=DATE:{event.ends_at:%Y%m%d}")
    else:
        lines.append(f"DTSTART:{_utc(event.starts_at)}")
        lines.append(f"DTEND:{_utc(event.ends_at)}")
    if event.description:
        lines.append(f"DESCRIPTION:{escape_text(event.description)}")
    if event.location:
        lines.append(f"LOCATION:{escape_text(event.location)}")
    if event.recurrence_rule:
        lines.append(f"RRULE:{event.recurrence_rule}")
    if event.organizer:
        lines.append(f"ORGANIZER:mailto:{event.organizer}")
    lines.extend(f"ATTENDEE:mailto:{attendee}" for attendee in event.attendees)
    for alarm in event.alarms:
        lines.extend(
            [
                "BEGIN:VALARM",
                "ACTION:DISPLAY",
                f"TRIGGER:-PT{alarm.minutes_before}M",
                f"DESCRIPTION:{escape_text(alarm.message or event.title)}",
                "END:VALARM",
            ]
        )
    lines.append("END:VEVENT")
    return lines


def render_todo(task: ReminderTask, parent_uid: str | None = None) -> list[str]:
    """Return the content lines of a ``VTODO`` block.

    ``parent_uid`` is the remote UID of the parent to-do, written as
    ``RELATED-TO`` so servers keep the subtask link.
    """
    lines = [
        "BEGIN:VTODO",
        f"UID:{escape_text(task.remote_id or task.id)}",
        f"DTSTAMP:{_utc(task.updated_at)}",
        f"CREATED:{_utc(task.created_at)}",
        f"LAST-MODIFIED:{_utc(task.updated_at)}",
        f"SUMMARY:{escape_text(task.title)}",
        f"STATUS:{status_to_ical(task.status)}",
        f"PRIORITY:{priority_to_ical(task.priority)}",
    ]
    if task.notes:
        lines.append(f"DESCRIPTION:{escape_text(task.notes)}")
    if task.due_at:
        lines.append(f"DUE:{_utc(task.due_at)}")
    if task.completed_at:
        lines.append(f"COMPLETED:{_utc(task.completed_at)}")
    if task.repeat_rule:
        lines.append(f"RRULE:{task.repeat_rule}")
    if parent_uid:
        lines.append(f"RELATED-TO:{escape_text(parent_uid)}")
    lines.append("END:VTODO")
    return lines


def render_calendar(blocks: Iterable[list[str]]) -> str:
    """Wrap component blocks in a ``VCALENDAR`` with folded CRLF lines."""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", f"PRODID:{PRODID}", "CALSCALE:GREGORIAN"]
    for block in blocks:
        lines.extend(block)
    lines.append("END:VCALENDAR")
    return "\r\n".join(_fold(line) for line in lines) + "\r\n"


# Helpers ---------------------------------------------------------------------
def _split_unquoted(line: str, separator: str) -> tuple[str, str, str]:
    quoted = False
    for index, char in enumerate(line):
        if char == '"':
            quoted = not quoted
        elif char == separator and not quoted:
            return line[:index], separator, line[index + 1 :]
    return line, "", ""


def _split_params(head: str) -> list[str]:
    parts: list[str] = []
    rest = head
    while True:
        part, separator, rest = _split_unquoted(rest, ";")
        parts.append(part)
        if not separator:
            return parts


def _zone(tzid: str | None) -> tzinfo:
    if not tzid:
        return UTC
    try:
        return ZoneInfo(tzid)
    except (ZoneInfoNotFoundError, ValueError):
        LOGGER.warning("Unknown TZID %r, treating time as UTC", tzid)
        return UTC


def _alarms(component: Component) -> list[CalendarAlarm]:
    alarms: list[CalendarAlarm] = []
    for alarm in iter_components(component.children, "VALARM"):
        trigger = alarm.text("TRIGGER") or ""
        match = _TRIGGER.match(trigger)
        if match is None:
            continue
        weeks, days, hours, minutes = (int(group or 0) for group in match.groups())
        alarms.append(
            CalendarAlarm(
                minutes_before=((weeks * 7 + days) * 24 + hours) * 60 + minutes,
                message=alarm.text("DESCRIPTION"),
            )
        )
    return alarms


def _stamp(component: Component) -> datetime:
    for name in ("LAST-MODIFIED", "DTSTAMP"):
        value, _ = parse_ical_datetime(component.get(name))
        if value is not None:
            return value
    return utc_now()


def _strip_mailto(value: str) -> str:
    value = value.strip()
    if value.lower().startswith("mailto:"):
        return value[7:]
    return value


def _utc(value: datetime | date) -> str:
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min, tzinfo=UTC)
    return (ensure_utc(value) or value).strftime(_UTC_FORMAT)


def _remote_uid(component: Component, account_id: str) -> str:
    """Return the UID, or a stable key derived from the content when it is absent."""
    uid = component.text("UID")
    if uid:
        return uid
    digest = hashlib.sha256()
    for prop in component.properties:
        if prop.name in _VOLATILE_PROPERTIES:
            continue
        params = ";".join(f"{k}={v}" for k, v in sorted(prop.params.items()))
        digest.update(f"{prop.name};{params}:{prop.value}\n".encode("utf-8"))
    LOGGER.debug("%s without UID, deriving a content key", component.name)
    return content_record_key(account_id, digest.hexdigest())


def _fold(line: str) -> str:
    """Fold ``line`` so no physical line exceeds 75 octets of UTF-8.

    Continuation lines start with a space, which counts toward their width.
    Multi-byte characters are never split.
    """
    if len(line.encode("utf-8")) <= _FOLD_OCTETS:
        return line
    chunks: list[str] = []
    current = ""
    width = 0
    for char in line:
        size = len(char.encode("utf-8"))
        if width + size > _FOLD_OCTETS:
            chunks.append(current)
            current = " "
            width = 1
        current += char
        width += size
    chunks.append(current)
    return "\r\n".join(chunks)


__all__ = [
    "DEFAULT_EVENT_TITLE",
    "DEFAULT_TASK_TITLE",
    "PRODID",
    "extract_calendar_data",
    "normalize_end",
    "parse_components",
    "parse_events",
    "parse_ical_datetime",
    "parse_property",
    "parse_todos",
    "priority_from_ical",
    "priority_to_ical",
    "render_calendar",
    "render_event",
    "render_todo",
    "status_from_ical",
    "status_to_ical",
    "unescape_text",
    "unfold_lines",
]
