"""Calendar backends, the iCalendar codec, and the calendar service."""

from .caldav import CalDavCalendarBackend
from .google import GoogleCalendarBackend
from .graph import GraphCalendarBackend
from .service import CalendarService

__all__ = [
    "CalDavCalendarBackend",
    "CalendarService",
    "GoogleCalendarBackend",
    "GraphCalendarBackend",
]
