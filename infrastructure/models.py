"""Database tables for accounts, calendars and events."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, String, Text, UniqueConstraint, text
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

from domain import EventStatus


Base = declarative_base()

DEFAULT_COLOR = '#3b82f6'


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return value.replace(tzinfo=timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


class Account(Base):
    """Remote CalDAV credentials."""

    __tablename__ = 'accounts'

    id = Column(String(36), primary_key=True, default=new_id)
    server_url = Column(String(1024), nullable=False)
    username = Column(String(255), nullable=False)
    password = Column(String(1024), nullable=False)
    display_name = Column(String(200), nullable=False)
    sync_token = Column(String(1024), nullable=True)
    last_sync_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    calendars = relationship(
        'Calendar', back_populates='account',
        cascade='all, delete-orphan', passive_deletes=True
    )

    def to_dict(self):
        """Convert to dictionary for API responses; the password is never exposed."""
        return {
            'id': self.id,
            'server_url': self.server_url,
            'username': self.username,
            'display_name': self.display_name,
            'last_sync_at': _iso(self.last_sync_at),
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }


class Calendar(Base):
    """A calendar collection, either local or mirrored from an account."""

    __tablename__ = 'calendars'

    id = Column(String(36), primary_key=True, default=new_id)
    account_id = Column(String(36), ForeignKey('accounts.id', ondelete='CASCADE'), nullable=True, index=True)
    url = Column(String(1024), nullable=False, unique=True)
    display_name = Column(String(255), nullable=False)
    color = Column(String(32), nullable=False, default=DEFAULT_COLOR)
    ctag = Column(String(255), nullable=True)
    sync_token = Column(String(1024), nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    is_local = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    account = relationship('Account', back_populates='calendars')
    events = relationship(
        'Event', back_populates='calendar',
        cascade='all, delete-orphan', passive_deletes=True
    )

    __table_args__ = (
        # at most one locally-owned calendar
        Index(
            'uq_calendars_single_local', 'is_local', unique=True,
            sqlite_where=text('is_local = 1'),
            postgresql_where=text('is_local')
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'account_id': self.account_id,
            'url': self.url,
            'display_name': self.display_name,
            'color': self.color,
            'ctag': self.ctag,
            'enabled': self.enabled,
            'is_local': self.is_local
        }


class Event(Base):
    """Stored calendar object; ``raw_ical`` is authoritative, the rest is a projection of it."""

    __tablename__ = 'events'

    id = Column(String(36), primary_key=True, default=new_id)
    calendar_id = Column(String(36), ForeignKey('calendars.id', ondelete='CASCADE'), nullable=False, index=True)
    uid = Column(String(512), nullable=False)
    etag = Column(String(255), nullable=True)
    url = Column(String(1024), nullable=True)
    title = Column(String(500), nullable=False, default='Untitled')
    description = Column(Text, nullable=False, default='')
    location = Column(String(500), nullable=False, default='')
    start_at = Column(UTCDateTime, nullable=False, index=True)
    end_at = Column(UTCDateTime, nullable=False, index=True)
    all_day = Column(Boolean, nullable=False, default=False)
    status = Column(String(16), nullable=False, default=EventStatus.CONFIRMED.value)
    raw_ical = Column(Text, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    calendar = relationship('Calendar', back_populates='events')

    __table_args__ = (
        UniqueConstraint('calendar_id', 'uid', name='uq_events_calendar_uid'),
    )

    def apply_parsed(self, parsed) -> None:
        """Copy the projected fields of a ParsedEvent onto the row."""
        self.title = parsed.title
        self.description = parsed.description
        self.location = parsed.location
        self.start_at = parsed.start_at
        self.end_at = parsed.end_at
        self.all_day = parsed.all_day
        self.status = parsed.status.value

    def to_dict(self):
        return {
            'id': self.id,
            'calendar_id': self.calendar_id,
            'uid': self.uid,
            'etag': self.etag,
            'url': self.url,
            'title': self.title,
            'description': self.description,
            'location': self.location,
            'start_at': _iso(self.start_at),
            'end_at': _iso(self.end_at),
            'all_day': self.all_day,
            'status': self.status,
            'created_at': _iso(self.created_at),
            'updated_at': _iso(self.updated_at)
        }
