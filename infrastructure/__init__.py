"""Infrastructure implementations for Almanac CalDAV server."""

from .ical import PRODID, parse_vevent, build_vevent, update_vevent, parse_datetime, to_utc
from .models import Base, Account, Calendar, Event
from .repositories import CalendarStore, EventWrite, LOCAL_CALENDAR_PREFIX
from .remote import RemoteCalDAVRepository

__all__ = [
    'PRODID', 'parse_vevent', 'build_vevent', 'update_vevent', 'parse_datetime', 'to_utc',
    'Base', 'Account', 'Calendar', 'Event',
    'CalendarStore', 'EventWrite', 'LOCAL_CALENDAR_PREFIX',
    'RemoteCalDAVRepository'
]
