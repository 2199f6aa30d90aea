"""Remote CalDAV access through the caldav client library."""

import asyncio
import logging
import re
from contextlib import contextmanager
from typing import ClassVar, Iterator, List, Optional, Tuple
from urllib.parse import urljoin

import caldav
import requests
from caldav.elements import dav
from caldav.elements.base import ValuedBaseElement
from caldav.elements.ical import CalendarColor
from caldav.lib import error as dav_error

from domain import (
    AccountCredentials, RemoteCalendar, RemoteEvent, RemoteEventBatch,
    RemoteCalendarRepository
)
from monitoring import RemoteCalDAVError, RemoteConnectionError, RemoteTimeoutError


class GetCtag(ValuedBaseElement):
    tag: ClassVar[str] = '{http://calendarserver.org/ns/}getctag'


_STATUS_PREFIX = re.compile(r'\s*(\d{3})\b')


def status_from_reason(reason) -> Optional[int]:
    """HTTP status at the head of a caldav error reason ("412 Precondition Failed ...")."""
    match = _STATUS_PREFIX.match(str(reason or ''))
    return int(match.group(1)) if match else None


class RemoteCalDAVRepository(RemoteCalendarRepository):
    """caldav-backed implementation of RemoteCalendarRepository.

    Every operation opens its own DAVClient and runs in a worker thread, so
    a slow server never holds the event loop.
    """

    def __init__(self, timeout: float = 30, user_agent: str = 'Almanac-CalDAV/1.0'):
        self.timeout = timeout
        self.user_agent = user_agent
        self.logger = logging.getLogger(__name__)

    def _client(self, credentials: AccountCredentials) -> caldav.DAVClient:
        return caldav.DAVClient(
            url=credentials.server_url,
            username=credentials.username,
            password=credentials.password,
            timeout=self.timeout,
            headers={'User-Agent': self.user_agent}
        )

    @contextmanager
    def _mapped_errors(self, action: str) -> Iterator[None]:
        """Translate transport and caldav failures into RemoteCalDAVError."""
        try:
            yield
        except requests.Timeout as e:
            raise RemoteTimeoutError(f"{action} timed out after {self.timeout}s", cause=e)
        except requests.ConnectionError as e:
            raise RemoteConnectionError(f"{action} failed: {e}", cause=e)
        except dav_error.AuthorizationError as e:
            status = 403 if 'forbidden' in str(e.reason).lower() else 401
            raise RemoteCalDAVError(
                f"{action} failed with HTTP {status}",
                status_code=status,
                details={'url': e.url},
                cause=e
            )
        except dav_error.DAVError as e:
            status = status_from_reason(e.reason)
            raise RemoteCalDAVError(
                f"{action} failed: {e.__class__.__name__} ({status or 'no status'})",
                status_code=status,
                details={'url': e.url},
                cause=e
            )

    @staticmethod
    def _check_status(response, method: str, url: str, expected: Tuple[int, ...]):
        if response.status not in expected:
            raise RemoteCalDAVError(
                f"{method} {url} failed with HTTP {response.status}",
                status_code=response.status,
                details={'method': method, 'url': url}
            )
        return response

    # Discovery

    async def fetch_remote_calendars(self, credentials: AccountCredentials) -> List[RemoteCalendar]:
        """Discover the calendar collections of an account."""
        return await asyncio.to_thread(self._discover, credentials)

    def _discover(self, credentials: AccountCredentials) -> List[RemoteCalendar]:
        calendars = []
        with self._mapped_errors(f"Discovery on {credentials.server_url}"):
            with self._client(credentials) as client:
                for calendar in client.principal().calendars():
                    if not self._holds_events(calendar):
                        continue
                    props = calendar.get_properties([
                        dav.DisplayName(), CalendarColor(), GetCtag(), dav.SyncToken()
                    ])
                    calendars.append(RemoteCalendar(
                        url=str(calendar.url),
                        display_name=props.get(dav.DisplayName.tag) or 'Unnamed',
                        color=props.get(CalendarColor.tag),
                        ctag=props.get(GetCtag.tag),
                        sync_token=props.get(dav.SyncToken.tag)
                    ))

        self.logger.info(f"Found {len(calendars)} remote calendars for {credentials.username}")
        return calendars

    @staticmethod
    def _holds_events(calendar) -> bool:
        # servers that do not report the component set hold events
        try:
            components = calendar.get_supported_components()
        except KeyError:
            return True
        names = {str(name).upper() for name in components or []}
        return not names or 'VEVENT' in names

    # Fetch

    async def fetch_remote_events(
        self,
        credentials: AccountCredentials,
        calendar_url: str,
        sync_token: Optional[str] = None
    ) -> RemoteEventBatch:
        """Incremental fetch when the token is accepted, full fetch otherwise."""
        return await asyncio.to_thread(self._fetch, credentials, calendar_url, sync_token)

    def _fetch(self, credentials: AccountCredentials, calendar_url: str, sync_token: Optional[str]) -> RemoteEventBatch:
        with self._client(credentials) as client:
            calendar = client.calendar(url=calendar_url)
            if sync_token:
                try:
                    with self._mapped_errors(f"Sync of {calendar_url}"):
                        return self._sync_collection(calendar, calendar_url, sync_token)
                except RemoteCalDAVError as e:
                    if isinstance(e, (RemoteTimeoutError, RemoteConnectionError)):
                        raise
                    self.logger.warning(
                        f"Sync token rejected for {calendar_url} (HTTP {e.status_code}), "
                        f"falling back to full fetch"
                    )
            with self._mapped_errors(f"Full fetch of {calendar_url}"):
                return self._full_fetch(calendar, calendar_url)

    def _sync_collection(self, calendar, calendar_url: str, sync_token: str) -> RemoteEventBatch:
        collection = calendar.objects_by_sync_token(
            sync_token=sync_token, load_objects=True, disable_fallback=True
        )

        batch = RemoteEventBatch(sync_token=collection.sync_token, incremental=True)
        for obj in collection.objects:
            url = urljoin(calendar_url, str(obj.url))
            # objects that could not be loaded are gone on the server
            if not obj.data:
                batch.deleted_urls.append(url)
                continue
            batch.events.append(RemoteEvent(url=url, etag=self._etag_of(obj), raw_ical=obj.data))

        self.logger.debug(
            f"Incremental fetch of {calendar_url}: {len(batch.events)} changed, "
            f"{len(batch.deleted_urls)} deleted"
        )
        return batch

    def _full_fetch(self, calendar, calendar_url: str) -> RemoteEventBatch:
        # token first, so changes racing the query show up on the next pass
        token = calendar.get_property(dav.SyncToken())
        events = [
            RemoteEvent(url=urljoin(calendar_url, str(obj.url)), etag=self._etag_of(obj), raw_ical=obj.data)
            for obj in calendar.search(event=True, props=[dav.GetEtag()])
            if obj.data
        ]
        self.logger.debug(f"Full fetch of {calendar_url}: {len(events)} objects")
        return RemoteEventBatch(events=events, sync_token=token, incremental=False)

    @staticmethod
    def _etag_of(obj) -> str:
        return obj.props.get(dav.GetEtag.tag) or ''

    # Writes

    async def push_event(
        self,
        credentials: AccountCredentials,
        calendar_url: str,
        filename: str,
        raw_ical: str
    ) -> Tuple[str, Optional[str]]:
        """Create a new calendar object; fails if the name is taken."""
        url = urljoin(calendar_url if calendar_url.endswith('/') else calendar_url + '/', filename)
        etag = await asyncio.to_thread(
            self._put, credentials, url, raw_ical, {'If-None-Match': '*'}
        )
        self.logger.info(f"Pushed event to {url}")
        return url, etag

    async def update_remote_event(
        self,
        credentials: AccountCredentials,
        event_url: str,
        raw_ical: str,
        etag: str
    ) -> Optional[str]:
        """Conditional replace; a changed remote copy surfaces as HTTP 412."""
        return await asyncio.to_thread(self._put, credentials, event_url, raw_ical, {'If-Match': etag})

    def _put(self, credentials: AccountCredentials, url: str, raw_ical: str, condition: dict) -> Optional[str]:
        headers = {'Content-Type': 'text/calendar; charset=utf-8'}
        headers.update(condition)
        with self._mapped_errors(f"PUT {url}"):
            with self._client(credentials) as client:
                response = client.put(url, raw_ical, headers)
        self._check_status(response, 'PUT', url, (200, 201, 204))
        return response.headers.get('ETag')

    async def delete_remote_event(
        self,
        credentials: AccountCredentials,
        event_url: str,
        etag: str
    ) -> None:
        """Conditional delete; an object that is already gone counts as deleted."""
        await asyncio.to_thread(self._delete, credentials, event_url, etag)

    def _delete(self, credentials: AccountCredentials, event_url: str, etag: str) -> None:
        with self._mapped_errors(f"DELETE {event_url}"):
            with self._client(credentials) as client:
                response = client.request(event_url, 'DELETE', '', {'If-Match': etag})
        self._check_status(response, 'DELETE', event_url, (200, 204, 404))
        if response.status == 404:
            self.logger.info(f"Remote event {event_url} was already deleted")
