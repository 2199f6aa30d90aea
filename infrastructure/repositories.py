"""Relational store for accounts, calendars and events."""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import and_, create_engine, event as sa_event, or_, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from domain import ParsedEvent
from .models import Account, Base, Calendar, DEFAULT_COLOR, Event, new_id, utcnow


LOCAL_CALENDAR_PREFIX = '/api/caldav/calendars/'


@dataclass
class EventWrite:
    """One event row to insert or overwrite during reconciliation."""

    uid: str
    raw_ical: str
    parsed: ParsedEvent
    etag: Optional[str]
    url: Optional[str]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()


def next_ctag(previous: Optional[str], now: Optional[datetime] = None) -> str:
    """Millisecond timestamp, forced to move forward."""
    stamp = int((now or utcnow()).timestamp() * 1000)
    try:
        if previous is not None and stamp <= int(previous):
            stamp = int(previous) + 1
    except ValueError:
        pass
    return str(stamp)


class CalendarStore:
    """SQLAlchemy implementation of the local store.

    Every public method runs in its own transaction unless a ``session`` is
    passed in, in which case it joins the caller's transaction.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.logger = logging.getLogger(__name__)
        url = make_url(database_url)
        self._is_sqlite = url.get_backend_name() == 'sqlite'

        connect_args = {}
        if self._is_sqlite:
            connect_args['check_same_thread'] = False
            if url.database and url.database != ':memory:':
                directory = os.path.dirname(os.path.abspath(url.database))
                os.makedirs(directory, exist_ok=True)

        self.engine = create_engine(database_url, echo=echo, connect_args=connect_args)
        if self._is_sqlite:
            sa_event.listen(self.engine, 'connect', _enable_sqlite_foreign_keys)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        """Create missing tables."""
        Base.metadata.create_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self, session: Optional[Session] = None) -> Iterator[Session]:
        """Transaction boundary; reuses ``session`` when one is given."""
        if session is not None:
            yield session
            return
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        with self.session_scope() as session:
            session.execute(text('SELECT 1'))
        return True

    # Accounts

    def list_accounts(self) -> List[Account]:
        with self.session_scope() as session:
            return session.query(Account).order_by(Account.created_at).all()

    def get_account(self, account_id: str, session: Optional[Session] = None) -> Optional[Account]:
        with self.session_scope(session) as s:
            return s.get(Account, account_id)

    def create_account(self, server_url: str, username: str, password: str, display_name: str) -> Account:
        now = utcnow()
        with self.session_scope() as session:
            account = Account(
                id=new_id(),
                server_url=server_url,
                username=username,
                password=password,
                display_name=display_name,
                created_at=now,
                updated_at=now
            )
            session.add(account)
        self.logger.info(f"Created account {account.id} ({display_name})")
        return account

    def update_account(self, account_id: str, **values) -> Optional[Account]:
        with self.session_scope() as session:
            account = session.get(Account, account_id)
            if account is None:
                return None
            for name, value in values.items():
                setattr(account, name, value)
            account.updated_at = utcnow()
            return account

    def delete_account(self, account_id: str) -> bool:
        """Delete an account; its calendars and their events cascade."""
        with self.session_scope() as session:
            account = session.get(Account, account_id)
            if account is None:
                return False
            session.delete(account)
        self.logger.info(f"Deleted account {account_id}")
        return True

    def mark_account_synced(self, account_id: str, when: datetime) -> None:
        with self.session_scope() as session:
            account = session.get(Account, account_id)
            if account is not None:
                account.last_sync_at = when
                account.updated_at = when

    # Calendars

    def list_calendars(self, enabled_only: bool = False) -> List[Calendar]:
        with self.session_scope() as session:
            query = session.query(Calendar)
            if enabled_only:
                query = query.filter(Calendar.enabled.is_(True))
            return query.order_by(Calendar.is_local.desc(), Calendar.display_name).all()

    def list_account_calendars(self, account_id: str) -> List[Calendar]:
        with self.session_scope() as session:
            return session.query(Calendar).filter(Calendar.account_id == account_id).all()

    def get_calendar(self, calendar_id: str, session: Optional[Session] = None) -> Optional[Calendar]:
        with self.session_scope(session) as s:
            return s.get(Calendar, calendar_id)

    def ensure_local_calendar(self, display_name: str = 'Almanac', url_prefix: str = LOCAL_CALENDAR_PREFIX) -> Calendar:
        """Get-or-create the single locally owned calendar."""
        with self.session_scope() as session:
            existing = session.query(Calendar).filter(Calendar.is_local.is_(True)).first()
            if existing is not None:
                return existing

        calendar_id = new_id()
        now = utcnow()
        try:
            with self.session_scope() as session:
                calendar = Calendar(
                    id=calendar_id,
                    account_id=None,
                    url=f"{url_prefix}{calendar_id}/",
                    display_name=display_name,
                    color=DEFAULT_COLOR,
                    ctag=next_ctag(None, now),
                    enabled=True,
                    is_local=True,
                    created_at=now,
                    updated_at=now
                )
                session.add(calendar)
            self.logger.info(f"Created local calendar {calendar_id}")
            return calendar
        except IntegrityError:
            # lost the race against a concurrent creator
            with self.session_scope() as session:
                return session.query(Calendar).filter(Calendar.is_local.is_(True)).one()

    def insert_calendar(self, **values) -> Calendar:
        now = utcnow()
        values.setdefault('id', new_id())
        values.setdefault('created_at', now)
        values.setdefault('updated_at', now)
        with self.session_scope() as session:
            calendar = Calendar(**values)
            session.add(calendar)
            return calendar

    def update_calendar(self, calendar_id: str, **values) -> Optional[Calendar]:
        with self.session_scope() as session:
            calendar = session.get(Calendar, calendar_id)
            if calendar is None:
                return None
            for name, value in values.items():
                setattr(calendar, name, value)
            calendar.updated_at = utcnow()
            return calendar

    def delete_calendar(self, calendar_id: str) -> bool:
        """Delete a calendar; its events cascade."""
        with self.session_scope() as session:
            calendar = session.get(Calendar, calendar_id)
            if calendar is None:
                return False
            session.delete(calendar)
            return True

    def bump_ctag(self, calendar_id: str, session: Optional[Session] = None) -> Optional[str]:
        with self.session_scope(session) as s:
            calendar = s.get(Calendar, calendar_id)
            if calendar is None:
                return None
            now = utcnow()
            calendar.ctag = next_ctag(calendar.ctag, now)
            calendar.updated_at = now
            return calendar.ctag

    # Events

    def list_events(self, calendar_id: str, session: Optional[Session] = None) -> List[Event]:
        with self.session_scope(session) as s:
            return s.query(Event).filter(Event.calendar_id == calendar_id).order_by(Event.start_at).all()

    def get_event(self, event_id: str) -> Optional[Event]:
        with self.session_scope() as session:
            return session.get(Event, event_id)

    def get_event_by_uid(self, calendar_id: str, uid: str, session: Optional[Session] = None) -> Optional[Event]:
        with self.session_scope(session) as s:
            return s.query(Event).filter(
                Event.calendar_id == calendar_id, Event.uid == uid
            ).first()

    def find_events_by_uids(self, calendar_id: str, uids: Sequence[str]) -> List[Event]:
        if not uids:
            return []
        with self.session_scope() as session:
            return session.query(Event).filter(
                Event.calendar_id == calendar_id, Event.uid.in_(list(uids))
            ).order_by(Event.start_at).all()

    def events_in_range(
        self,
        start: datetime,
        end: datetime,
        calendar_id: Optional[str] = None,
        enabled_only: bool = False
    ) -> List[Event]:
        """Events overlapping [start, end); zero-length events match on their start."""
        with self.session_scope() as session:
            query = session.query(Event).filter(
                Event.start_at < end,
                or_(
                    Event.end_at > start,
                    and_(Event.end_at == Event.start_at, Event.start_at >= start)
                )
            )
            if calendar_id is not None:
                query = query.filter(Event.calendar_id == calendar_id)
            if enabled_only:
                query = query.join(Calendar).filter(Calendar.enabled.is_(True))
            return query.order_by(Event.start_at).all()

    def insert_event(self, calendar_id: str, write: EventWrite, session: Optional[Session] = None) -> Event:
        now = utcnow()
        with self.session_scope(session) as s:
            row = Event(
                id=new_id(),
                calendar_id=calendar_id,
                uid=write.uid,
                etag=write.etag,
                url=write.url,
                raw_ical=write.raw_ical,
                created_at=now,
                updated_at=now
            )
            row.apply_parsed(write.parsed)
            s.add(row)
            s.flush()
            return row

    def overwrite_event(self, event_id: str, write: EventWrite, session: Optional[Session] = None) -> Optional[Event]:
        """Replace raw data, ETag and every projected field in one step."""
        with self.session_scope(session) as s:
            row = s.get(Event, event_id)
            if row is None:
                return None
            row.raw_ical = write.raw_ical
            row.etag = write.etag
            if write.url is not None:
                row.url = write.url
            row.apply_parsed(write.parsed)
            row.updated_at = utcnow()
            return row

    def delete_event(self, event_id: str, session: Optional[Session] = None) -> bool:
        with self.session_scope(session) as s:
            row = s.get(Event, event_id)
            if row is None:
                return False
            s.delete(row)
            return True

    def apply_calendar_sync(
        self,
        calendar_id: str,
        inserts: Sequence[EventWrite],
        updates: Sequence[Tuple[str, EventWrite]],
        delete_ids: Sequence[str],
        sync_token: Optional[str] = None
    ) -> None:
        """Commit one calendar's reconciliation atomically."""
        with self.session_scope() as session:
            for event_id in delete_ids:
                self.delete_event(event_id, session=session)
            session.flush()
            for event_id, write in updates:
                self.overwrite_event(event_id, write, session=session)
            for write in inserts:
                self.insert_event(calendar_id, write, session=session)
            if sync_token:
                calendar = session.get(Calendar, calendar_id)
                if calendar is not None:
                    calendar.sync_token = sync_token
                    calendar.updated_at = utcnow()
