"""Application services for Almanac CalDAV server."""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlparse

from domain import (
    AccountCredentials, EventChanges, EventData, PutOutcome, RemoteCalendarRepository,
    SyncResult, compute_etag, if_match_satisfied
)
from infrastructure import (
    Account, Calendar, CalendarStore, Event, EventWrite,
    build_vevent, parse_datetime, parse_vevent, update_vevent
)
from monitoring import (
    AccountNotFoundError, ConflictError, InvalidCalendarDataError, NotFoundError,
    PreconditionFailedError, ReadOnlyCalendarError, RemoteCalDAVError, SyncInProgressError,
    ValidationError, error_handler
)
from .sync import DataSyncService


RANGE_MIN = datetime(1900, 1, 1, tzinfo=timezone.utc)
RANGE_MAX = datetime(9999, 12, 31, tzinfo=timezone.utc)


class CalDAVService:
    """Backs the local CalDAV endpoint.

    Serves the local calendar plus every enabled remote-backed calendar;
    only the local calendar accepts writes.
    """

    def __init__(self, store: CalendarStore):
        self.store = store
        self.logger = logging.getLogger(__name__)

    def list_served_calendars(self) -> List[Calendar]:
        local = self.store.ensure_local_calendar()
        remote = [c for c in self.store.list_calendars(enabled_only=True) if not c.is_local]
        return [local] + remote

    def get_calendar(self, calendar_id: str) -> Optional[Calendar]:
        calendar = self.store.get_calendar(calendar_id)
        if calendar is None:
            return None
        if not calendar.is_local and not calendar.enabled:
            return None
        return calendar

    def _require_calendar(self, calendar_id: str) -> Calendar:
        calendar = self.get_calendar(calendar_id)
        if calendar is None:
            raise NotFoundError('Calendar not found', {'calendar_id': calendar_id})
        return calendar

    def _require_writable(self, calendar_id: str) -> Calendar:
        calendar = self._require_calendar(calendar_id)
        if not calendar.is_local:
            raise ReadOnlyCalendarError(calendar_id)
        return calendar

    def list_events(self, calendar_id: str) -> List[Event]:
        return self.store.list_events(calendar_id)

    def query_events(
        self,
        calendar_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[Event]:
        """Events of one calendar, optionally limited to a time range."""
        if start is None and end is None:
            return self.store.list_events(calendar_id)
        return self.store.events_in_range(start or RANGE_MIN, end or RANGE_MAX, calendar_id=calendar_id)

    def multiget(self, calendar_id: str, uids: List[str]) -> List[Event]:
        return self.store.find_events_by_uids(calendar_id, uids)

    def get_event(self, calendar_id: str, uid: str) -> Optional[Event]:
        return self.store.get_event_by_uid(calendar_id, uid)

    def put_event(
        self,
        calendar_id: str,
        uid: str,
        raw_ical: str,
        if_match: Optional[str] = None,
        if_none_match: Optional[str] = None
    ) -> PutOutcome:
        """Create or replace an event of the local calendar.

        Raises PreconditionFailedError when a conditional header does not hold;
        the stored event is left untouched in that case.
        """
        calendar = self._require_writable(calendar_id)
        parsed = parse_vevent(raw_ical)
        if parsed is None:
            raise InvalidCalendarDataError("No VEVENT found in iCal data")

        etag = compute_etag(raw_ical)
        write = EventWrite(
            uid=uid,
            raw_ical=raw_ical,
            parsed=parsed,
            etag=etag,
            url=f"{calendar.url}{uid}.ics"
        )

        with self.store.session_scope() as session:
            existing = self.store.get_event_by_uid(calendar.id, uid, session=session)
            if existing is not None:
                if if_none_match and if_none_match.strip() == '*':
                    raise PreconditionFailedError(details={'uid': uid})
                if not if_match_satisfied(existing.etag, if_match):
                    raise PreconditionFailedError(details={'uid': uid})
                self.store.overwrite_event(existing.id, write, session=session)
                created = False
            else:
                if if_match and if_match.strip():
                    raise PreconditionFailedError(details={'uid': uid})
                self.store.insert_event(calendar.id, write, session=session)
                created = True
            self.store.bump_ctag(calendar.id, session=session)

        self.logger.info(f"{'Created' if created else 'Updated'} event {uid} in calendar {calendar.id}")
        return PutOutcome(created=created, etag=etag)

    def delete_event(self, calendar_id: str, uid: str, if_match: Optional[str] = None) -> None:
        calendar = self._require_writable(calendar_id)
        with self.store.session_scope() as session:
            existing = self.store.get_event_by_uid(calendar.id, uid, session=session)
            if existing is None:
                raise NotFoundError('Event not found', {'uid': uid})
            if not if_match_satisfied(existing.etag, if_match):
                raise PreconditionFailedError(details={'uid': uid})
            self.store.delete_event(existing.id, session=session)
            self.store.bump_ctag(calendar.id, session=session)
        self.logger.info(f"Deleted event {uid} from calendar {calendar.id}")


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


def _check_text(name: str, value: Any, max_length: int, required: bool = False) -> None:
    if value is None:
        if required:
            raise ValidationError(f"{name} is required", {'field': name})
        return
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string", {'field': name})
    if required and not value.strip():
        raise ValidationError(f"{name} is required", {'field': name})
    if len(value) > max_length:
        raise ValidationError(f"{name} must be at most {max_length} characters", {'field': name})


def _to_datetime(name: str, value: Any) -> datetime:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"{name} is not a valid date/time: {value!r}", {'field': name}) from e


class CalendarService:
    """Entry points used by the JSON API and the background sync loop."""

    def __init__(
        self,
        store: CalendarStore,
        sync_service: DataSyncService,
        remote: RemoteCalendarRepository,
        executor=None,
        sync_timeout: Optional[float] = None
    ):
        self.store = store
        self.sync_service = sync_service
        self.remote = remote
        self.executor = executor
        self.sync_timeout = sync_timeout
        self.logger = logging.getLogger(__name__)
        self._in_flight: Set[str] = set()

    # Sync

    async def _guarded_sync(self, account_id: str) -> SyncResult:
        if account_id in self._in_flight:
            raise SyncInProgressError(account_id)
        self._in_flight.add(account_id)
        try:
            return await self.sync_service.sync_account(account_id)
        finally:
            self._in_flight.discard(account_id)

    async def _run_sync(self, account_id: Optional[str]) -> SyncResult:
        if account_id is None:
            return await self.sync_service.sync_all_accounts(self._guarded_sync)
        try:
            return await self._guarded_sync(account_id)
        except SyncInProgressError as e:
            return SyncResult(errors=[e.message])

    async def trigger_sync(self, account_id: Optional[str] = None) -> SyncResult:
        """Sync one account (or all of them) and report the aggregate result.

        A missing account raises. A sync of an account that is already
        running is refused with an error entry instead of overlapping.
        """
        if self.sync_timeout:
            try:
                return await asyncio.wait_for(self._run_sync(account_id), timeout=self.sync_timeout)
            except asyncio.TimeoutError:
                message = f"Sync timed out after {self.sync_timeout}s"
                self.logger.error(message)
                return SyncResult(errors=[message])
        return await self._run_sync(account_id)

    def trigger_sync_in_background(self, account_id: Optional[str] = None):
        """Best-effort sync: failures are logged and never reach the caller."""
        if self.executor is None:
            self.logger.debug("No background executor, skipping best-effort sync")
            return None

        async def run():
            try:
                result = await self.trigger_sync(account_id)
                for message in result.errors:
                    self.logger.warning(f"Background sync: {message}")
                return result
            except Exception as e:
                error_handler.handle_error(e, "background_sync", {'account_id': account_id})
                return None

        return self.executor.submit(run())

    # Queries

    def get_events_by_date_range(self, start: Any, end: Any) -> List[Dict[str, Any]]:
        """Events of enabled calendars overlapping ``[start, end)``."""
        start_at = _to_datetime('start', start)
        end_at = _to_datetime('end', end)
        if end_at < start_at:
            raise ValidationError("end must not be before start")

        calendars = {c.id: c for c in self.store.list_calendars()}
        items = []
        for event in self.store.events_in_range(start_at, end_at, enabled_only=True):
            calendar = calendars.get(event.calendar_id)
            item = event.to_dict()
            item['calendar_color'] = calendar.color if calendar else None
            item['calendar_name'] = calendar.display_name if calendar else 'Unknown'
            items.append(item)
        return items

    def list_calendars(self) -> List[Dict[str, Any]]:
        self.store.ensure_local_calendar()
        accounts = {a.id: a for a in self.store.list_accounts()}
        items = []
        for calendar in self.store.list_calendars():
            item = calendar.to_dict()
            account = accounts.get(calendar.account_id)
            item['account_display_name'] = account.display_name if account else None
            items.append(item)
        return items

    def list_accounts(self) -> List[Account]:
        return self.store.list_accounts()

    # Accounts

    def create_account(self, server_url: str, username: str, password: str, display_name: str) -> Account:
        if not isinstance(server_url, str) or not _is_http_url(server_url):
            raise ValidationError("server_url must be an http(s) URL", {'field': 'server_url'})
        _check_text('username', username, 255, required=True)
        _check_text('password', password, 1024, required=True)
        _check_text('display_name', display_name, 200, required=True)

        account = self.store.create_account(server_url, username, password, display_name)
        self.trigger_sync_in_background(account.id)
        return account

    def update_account(self, account_id: str, **changes) -> Account:
        allowed = {'server_url', 'username', 'password', 'display_name'}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown account fields: {', '.join(sorted(unknown))}")

        if 'server_url' in changes and (not isinstance(changes['server_url'], str)
                                        or not _is_http_url(changes['server_url'])):
            raise ValidationError("server_url must be an http(s) URL", {'field': 'server_url'})
        for name, limit in (('username', 255), ('password', 1024), ('display_name', 200)):
            if name in changes:
                _check_text(name, changes[name], limit, required=True)

        account = self.store.update_account(account_id, **changes)
        if account is None:
            raise AccountNotFoundError(account_id)

        if {'server_url', 'username', 'password'} & set(changes):
            self.trigger_sync_in_background(account_id)
        return account

    def delete_account(self, account_id: str) -> None:
        if not self.store.delete_account(account_id):
            raise AccountNotFoundError(account_id)

    def toggle_calendar(self, calendar_id: str) -> Calendar:
        calendar = self.store.get_calendar(calendar_id)
        if calendar is None:
            raise NotFoundError('Calendar not found', {'calendar_id': calendar_id})
        return self.store.update_calendar(calendar_id, enabled=not calendar.enabled)

    # Events

    def _credentials_for(self, calendar: Calendar) -> AccountCredentials:
        account = self.store.get_account(calendar.account_id)
        if account is None:
            raise AccountNotFoundError(calendar.account_id)
        return AccountCredentials(account.server_url, account.username, account.password)

    @staticmethod
    def _conflict_or_raise(e: RemoteCalDAVError):
        if e.status_code == 412:
            raise ConflictError(cause=e) from e
        raise e

    async def create_event(
        self,
        title: str,
        start_at: Any,
        end_at: Any,
        all_day: bool = False,
        description: Optional[str] = None,
        location: Optional[str] = None,
        calendar_id: Optional[str] = None
    ) -> Event:
        """Create an event; remote-backed calendars get it on the server first."""
        _check_text('title', title, 500, required=True)
        _check_text('description', description, 5000)
        _check_text('location', location, 500)
        start = _to_datetime('start_at', start_at)
        end = _to_datetime('end_at', end_at)
        if end < start:
            raise ValidationError("end_at must not be before start_at")

        if calendar_id is None:
            calendar = self.store.ensure_local_calendar()
        else:
            calendar = self.store.get_calendar(calendar_id)
            if calendar is None:
                raise NotFoundError('Calendar not found', {'calendar_id': calendar_id})

        uid = str(uuid.uuid4())
        raw_ical = build_vevent(EventData(
            uid=uid,
            title=title,
            start_at=start,
            end_at=end,
            all_day=bool(all_day),
            description=description,
            location=location
        ))
        parsed = parse_vevent(raw_ical)
        filename = f"{uid}.ics"

        if calendar.is_local:
            write = EventWrite(uid, raw_ical, parsed, compute_etag(raw_ical), f"{calendar.url}{filename}")
        else:
            credentials = self._credentials_for(calendar)
            try:
                url, etag = await self.remote.push_event(credentials, calendar.url, filename, raw_ical)
            except RemoteCalDAVError as e:
                self._conflict_or_raise(e)
            write = EventWrite(uid, raw_ical, parsed, etag, url)

        with self.store.session_scope() as session:
            event = self.store.insert_event(calendar.id, write, session=session)
            if calendar.is_local:
                self.store.bump_ctag(calendar.id, session=session)
        self.logger.info(f"Created event {uid} in calendar {calendar.display_name}")
        return event

    async def update_event(self, event_id: str, changes: EventChanges) -> Event:
        """Patch an event; a remote copy changed since the last sync is a conflict."""
        event = self.store.get_event(event_id)
        if event is None:
            raise NotFoundError('Event not found', {'event_id': event_id})
        if changes.is_empty:
            return event

        if changes.is_set('title'):
            _check_text('title', changes.title, 500, required=True)
        if changes.is_set('description'):
            _check_text('description', changes.description, 5000)
        if changes.is_set('location'):
            _check_text('location', changes.location, 500)
        for name in ('start_at', 'end_at'):
            if changes.is_set(name):
                if getattr(changes, name) is None:
                    raise ValidationError(f"{name} cannot be cleared", {'field': name})
                setattr(changes, name, _to_datetime(name, getattr(changes, name)))

        raw_ical = update_vevent(event.raw_ical, changes)
        parsed = parse_vevent(raw_ical)
        if parsed.end_at < parsed.start_at:
            raise ValidationError("end_at must not be before start_at")

        calendar = self.store.get_calendar(event.calendar_id)
        if calendar.is_local:
            etag = compute_etag(raw_ical)
        else:
            if not event.url:
                raise ValidationError("Event has no remote URL yet; sync before editing")
            credentials = self._credentials_for(calendar)
            try:
                etag = await self.remote.update_remote_event(credentials, event.url, raw_ical, event.etag or '*')
            except RemoteCalDAVError as e:
                self._conflict_or_raise(e)

        write = EventWrite(event.uid, raw_ical, parsed, etag, None)
        with self.store.session_scope() as session:
            updated = self.store.overwrite_event(event.id, write, session=session)
            if calendar.is_local:
                self.store.bump_ctag(calendar.id, session=session)
        return updated

    async def delete_event(self, event_id: str) -> None:
        event = self.store.get_event(event_id)
        if event is None:
            raise NotFoundError('Event not found', {'event_id': event_id})

        calendar = self.store.get_calendar(event.calendar_id)
        if not calendar.is_local and event.url:
            credentials = self._credentials_for(calendar)
            try:
                await self.remote.delete_remote_event(credentials, event.url, event.etag or '*')
            except RemoteCalDAVError as e:
                self._conflict_or_raise(e)

        with self.store.session_scope() as session:
            self.store.delete_event(event.id, session=session)
            if calendar.is_local:
                self.store.bump_ctag(calendar.id, session=session)
        self.logger.info(f"Deleted event {event.uid} from calendar {calendar.display_name}")
