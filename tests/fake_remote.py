"""
In-memory fake remote CalDAV server for testing.

Stand-in for RemoteCalDAVRepository. No network is involved: each account is
keyed by its server URL and holds calendars whose objects live in plain dicts.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from domain import (
    AccountCredentials, RemoteCalendar, RemoteCalendarRepository, RemoteEvent,
    RemoteEventBatch
)
from monitoring import RemoteCalDAVError, RemoteConnectionError, RemoteTimeoutError


def make_vevent(
    uid: str,
    summary: str,
    start: str = '20250601T090000Z',
    end: Optional[str] = '20250601T093000Z',
    extra: str = ''
) -> str:
    """Minimal VCALENDAR text with one VEVENT; dates are iCalendar literals."""
    all_day = 'T' not in start
    lines = [
        'BEGIN:VCALENDAR',
        'VERSION:2.0',
        'PRODID:-//Test//Fake Remote//EN',
        'BEGIN:VEVENT',
        f'UID:{uid}',
        'DTSTAMP:20250101T000000Z',
        f'SUMMARY:{summary}',
        f'DTSTART;VALUE=DATE:{start}' if all_day else f'DTSTART:{start}',
    ]
    if end:
        lines.append(f'DTEND;VALUE=DATE:{end}' if all_day else f'DTEND:{end}')
    if extra:
        lines.extend(extra.strip().splitlines())
    lines += ['END:VEVENT', 'END:VCALENDAR', '']
    return '\r\n'.join(lines)


class FakeCalendar:
    """One remote collection with a change log for sync tokens."""

    def __init__(self, url: str, display_name: str, color: Optional[str] = None):
        self.url = url
        self.display_name = display_name
        self.color = color
        self.version = 0
        self.objects: Dict[str, Tuple[str, str]] = {}  # url -> (etag, raw)
        self.changed_at: Dict[str, int] = {}
        self.deleted_at: Dict[str, int] = {}

    @property
    def sync_token(self) -> str:
        return f'tok-{self.version}'

    @property
    def ctag(self) -> str:
        return str(self.version)

    def object_url(self, uid: str) -> str:
        return f'{self.url}{uid}.ics'

    def put(self, uid: str, raw: str) -> str:
        self.version += 1
        url = self.object_url(uid)
        etag = f'"etag-{uid}-{self.version}"'
        self.objects[url] = (etag, raw)
        self.changed_at[url] = self.version
        self.deleted_at.pop(url, None)
        return etag

    def put_raw(self, url: str, raw: str) -> str:
        """Store a non-event object (VTODO, garbage) under an explicit URL."""
        self.version += 1
        etag = f'"etag-raw-{self.version}"'
        self.objects[url] = (etag, raw)
        self.changed_at[url] = self.version
        return etag

    def remove(self, uid: str) -> None:
        self.version += 1
        url = self.object_url(uid)
        self.objects.pop(url, None)
        self.changed_at.pop(url, None)
        self.deleted_at[url] = self.version


class FakeRemoteRepository(RemoteCalendarRepository):
    """In-memory stub that satisfies the RemoteCalendarRepository contract."""

    def __init__(self):
        self.accounts: Dict[str, Dict[str, FakeCalendar]] = {}
        self.unreachable: Set[str] = set()
        self.timing_out_calendars: Set[str] = set()
        self.reject_tokens = False
        self.fetch_calls: List[Tuple[str, Optional[str]]] = []
        self.pushes: List[str] = []
        self.updates: List[Tuple[str, str]] = []
        self.deletes: List[Tuple[str, str]] = []

    # ------------------------------------------------------------------ #
    # Test helpers                                                         #
    # ------------------------------------------------------------------ #

    def add_calendar(self, server_url: str, url: str, display_name: str, color: Optional[str] = None) -> FakeCalendar:
        calendar = FakeCalendar(url, display_name, color)
        self.accounts.setdefault(server_url, {})[url] = calendar
        return calendar

    def remove_calendar(self, server_url: str, url: str) -> None:
        self.accounts.get(server_url, {}).pop(url, None)

    def _calendars(self, credentials: AccountCredentials) -> Dict[str, FakeCalendar]:
        if credentials.server_url in self.unreachable:
            raise RemoteConnectionError(f"Cannot reach {credentials.server_url}")
        return self.accounts.get(credentials.server_url, {})

    def _calendar_for(self, credentials: AccountCredentials, url: str) -> FakeCalendar:
        for calendar in self._calendars(credentials).values():
            if url.startswith(calendar.url):
                return calendar
        raise RemoteCalDAVError(f"No calendar at {url}", status_code=404)

    # ------------------------------------------------------------------ #
    # RemoteCalendarRepository interface                                   #
    # ------------------------------------------------------------------ #

    async def fetch_remote_calendars(self, credentials):
        return [
            RemoteCalendar(
                url=c.url,
                display_name=c.display_name,
                color=c.color,
                ctag=c.ctag,
                sync_token=c.sync_token
            )
            for c in self._calendars(credentials).values()
        ]

    async def fetch_remote_events(self, credentials, calendar_url, sync_token=None):
        self.fetch_calls.append((calendar_url, sync_token))
        if calendar_url in self.timing_out_calendars:
            raise RemoteTimeoutError(f"{calendar_url} timed out")
        calendar = self._calendar_for(credentials, calendar_url)

        since = None
        if sync_token and not self.reject_tokens and sync_token.startswith('tok-'):
            since = int(sync_token[len('tok-'):])

        if since is None:
            events = [RemoteEvent(url, etag, raw) for url, (etag, raw) in calendar.objects.items()]
            return RemoteEventBatch(events=events, sync_token=calendar.sync_token, incremental=False)

        events = [
            RemoteEvent(url, etag, raw)
            for url, (etag, raw) in calendar.objects.items()
            if calendar.changed_at.get(url, 0) > since
        ]
        deleted = [url for url, version in calendar.deleted_at.items() if version > since]
        return RemoteEventBatch(
            events=events,
            deleted_urls=deleted,
            sync_token=calendar.sync_token,
            incremental=True
        )

    async def push_event(self, credentials, calendar_url, filename, raw_ical):
        calendar = self._calendar_for(credentials, calendar_url)
        uid = filename[:-len('.ics')]
        if calendar.object_url(uid) in calendar.objects:
            raise RemoteCalDAVError("Object exists", status_code=412)
        etag = calendar.put(uid, raw_ical)
        self.pushes.append(calendar.object_url(uid))
        return calendar.object_url(uid), etag

    async def update_remote_event(self, credentials, event_url, raw_ical, etag):
        calendar = self._calendar_for(credentials, event_url)
        current = calendar.objects.get(event_url)
        if current is None:
            raise RemoteCalDAVError("Not found", status_code=404)
        if etag != '*' and current[0] != etag:
            raise RemoteCalDAVError("Precondition failed", status_code=412)
        uid = event_url[len(calendar.url):-len('.ics')]
        self.updates.append((event_url, etag))
        return calendar.put(uid, raw_ical)

    async def delete_remote_event(self, credentials, event_url, etag):
        calendar = self._calendar_for(credentials, event_url)
        current = calendar.objects.get(event_url)
        if current is not None and etag != '*' and current[0] != etag:
            raise RemoteCalDAVError("Precondition failed", status_code=412)
        self.deletes.append((event_url, etag))
        if current is not None:
            calendar.remove(event_url[len(calendar.url):-len('.ics')])


def utc(year, month, day, hour=0, minute=0) -> datetime:
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
