"""iCalendar VEVENT codec built on the icalendar library."""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union

from icalendar import Calendar, Event, vDatetime

from domain import EventStatus, ParsedEvent, EventData, EventChanges
from monitoring import InvalidCalendarDataError


PRODID = '-//Almanac//CalDAV Server//EN'

logger = logging.getLogger(__name__)


def to_utc(value: Union[date, datetime]) -> datetime:
    """Normalize a DATE or DATE-TIME value to an aware UTC datetime.

    DATE values become midnight UTC; floating times are taken as UTC.
    """
    if not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Union[str, date, datetime]) -> datetime:
    """Accept ISO 8601 text, iCalendar UTC text or date objects."""
    if isinstance(value, (date, datetime)):
        return to_utc(value)
    text = str(value).strip()
    if not text:
        raise ValueError("Empty date/time value")
    if 'T' in text and '-' not in text:
        # iCalendar basic format, e.g. 20250601T090000Z
        return to_utc(vDatetime.from_ical(text))
    if len(text) == 10:
        return to_utc(date.fromisoformat(text))
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return to_utc(datetime.fromisoformat(text))


def _load(raw_ical: str) -> Calendar:
    try:
        return Calendar.from_ical(raw_ical)
    except (ValueError, IndexError, KeyError) as e:
        raise InvalidCalendarDataError(f"Invalid iCalendar data: {e}", cause=e)


def _first_vevent(component) -> Optional[Event]:
    events = component.walk('VEVENT')
    return events[0] if events else None


def _text(vevent: Event, name: str) -> str:
    value = vevent.get(name)
    return str(value) if value is not None else ''


def parse_vevent(raw_ical: str) -> Optional[ParsedEvent]:
    """Project the first VEVENT of ``raw_ical``.

    Returns None when the object holds no VEVENT (or a VEVENT without
    DTSTART); raises InvalidCalendarDataError when the text is not iCalendar.
    """
    vevent = _first_vevent(_load(raw_ical))
    if vevent is None:
        return None

    dtstart = vevent.get('dtstart')
    if dtstart is None:
        return None

    start_value = dtstart.dt
    all_day = not isinstance(start_value, datetime)
    start_at = to_utc(start_value)

    dtend = vevent.get('dtend')
    duration = vevent.get('duration')
    if dtend is not None:
        end_at = to_utc(dtend.dt)
    elif duration is not None:
        end_at = start_at + duration.dt
    elif all_day:
        # DTEND is exclusive, so a lone DATE covers exactly one day
        end_at = start_at + timedelta(days=1)
    else:
        end_at = start_at

    return ParsedEvent(
        uid=_text(vevent, 'uid'),
        title=_text(vevent, 'summary') or 'Untitled',
        description=_text(vevent, 'description'),
        location=_text(vevent, 'location'),
        start_at=start_at,
        end_at=end_at,
        all_day=all_day,
        status=EventStatus.from_ical(vevent.get('status'))
    )


def _ical_time(value: Union[date, datetime, str], all_day: bool):
    moment = parse_datetime(value)
    return moment.date() if all_day else moment


def build_vevent(data: EventData) -> str:
    """Emit a minimal VCALENDAR holding one VEVENT.

    All-day events use DATE values and an exclusive DTEND; timed events use
    UTC DATE-TIME values.
    """
    cal = Calendar()
    cal.add('prodid', PRODID)
    cal.add('version', '2.0')

    event = Event()
    event.add('uid', data.uid)
    event.add('summary', data.title)
    event.add('dtstamp', datetime.now(timezone.utc))
    if data.description:
        event.add('description', data.description)
    if data.location:
        event.add('location', data.location)
    event.add('dtstart', _ical_time(data.start_at, data.all_day))
    event.add('dtend', _ical_time(data.end_at, data.all_day))
    event.add('status', 'CONFIRMED')

    cal.add_component(event)
    return cal.to_ical().decode('utf-8')


def _replace(vevent: Event, name: str, value) -> None:
    vevent.pop(name, None)
    if value is not None and value != '':
        vevent.add(name, value)


def update_vevent(raw_ical: str, changes: EventChanges) -> str:
    """Apply a partial patch to the first VEVENT and re-serialize.

    Properties not named in ``changes`` (alarms, attendees, X- properties,
    VTIMEZONE blocks) are kept. SEQUENCE is bumped and LAST-MODIFIED refreshed.
    """
    cal = _load(raw_ical)
    vevent = _first_vevent(cal)
    if vevent is None:
        raise InvalidCalendarDataError("No VEVENT found in iCal data")

    if changes.is_set('title'):
        _replace(vevent, 'summary', changes.title)
    if changes.is_set('description'):
        _replace(vevent, 'description', changes.description)
    if changes.is_set('location'):
        _replace(vevent, 'location', changes.location)
    if changes.is_set('status'):
        status = changes.status
        if isinstance(status, EventStatus):
            status = status.value
        _replace(vevent, 'status', status.upper() if status else None)

    if changes.is_set('all_day'):
        all_day = bool(changes.all_day)
    else:
        current = vevent.get('dtstart')
        all_day = current is not None and not isinstance(current.dt, datetime)

    for field_name, prop in (('start_at', 'dtstart'), ('end_at', 'dtend')):
        if changes.is_set(field_name):
            _replace(vevent, prop, _ical_time(getattr(changes, field_name), all_day))
        elif changes.is_set('all_day') and vevent.get(prop) is not None:
            # retype the existing value to match the new all-day flag
            _replace(vevent, prop, _ical_time(vevent.get(prop).dt, all_day))

    sequence = vevent.get('sequence')
    _replace(vevent, 'sequence', (int(sequence) if sequence is not None else 0) + 1)
    _replace(vevent, 'last-modified', datetime.now(timezone.utc))

    return cal.to_ical().decode('utf-8')
