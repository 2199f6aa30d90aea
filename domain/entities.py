"""Domain entities for the Almanac CalDAV server."""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional, Dict, List, Any
from enum import Enum


class EventStatus(Enum):
    """Event status enumeration."""
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"

    @classmethod
    def from_ical(cls, value: Optional[str]) -> 'EventStatus':
        """Map an iCalendar STATUS value; anything unrecognized is confirmed."""
        if value:
            try:
                return cls(str(value).strip().lower())
            except ValueError:
                pass
        return cls.CONFIRMED


class _Unset:
    """Marker for a patch field that was not supplied."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return 'UNSET'


UNSET = _Unset()


@dataclass
class ParsedEvent:
    """Projection of a VEVENT onto the fields the store keeps."""

    uid: str
    title: str
    description: str
    location: str
    start_at: datetime
    end_at: datetime
    all_day: bool
    status: EventStatus = EventStatus.CONFIRMED


@dataclass
class EventData:
    """Input for building a fresh VEVENT."""

    uid: str
    title: str
    start_at: datetime
    end_at: datetime
    all_day: bool = False
    description: Optional[str] = None
    location: Optional[str] = None


@dataclass
class EventChanges:
    """Partial update of an event.

    A field left at ``UNSET`` is not touched. ``None`` (or an empty string
    for text fields) clears the value.
    """

    title: Any = UNSET
    description: Any = UNSET
    location: Any = UNSET
    start_at: Any = UNSET
    end_at: Any = UNSET
    all_day: Any = UNSET
    status: Any = UNSET

    def is_set(self, name: str) -> bool:
        return getattr(self, name) is not UNSET

    def provided(self) -> Dict[str, Any]:
        """Fields explicitly supplied by the caller."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    @property
    def is_empty(self) -> bool:
        return not self.provided()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EventChanges':
        """Build a patch from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class AccountCredentials:
    """Connection details for one remote CalDAV account."""

    server_url: str
    username: str
    password: str

    def __repr__(self):
        return f"AccountCredentials(server_url={self.server_url!r}, username={self.username!r})"


@dataclass
class RemoteCalendar:
    """A calendar collection discovered on a remote server."""

    url: str
    display_name: str
    color: Optional[str] = None
    ctag: Optional[str] = None
    sync_token: Optional[str] = None


@dataclass
class RemoteEvent:
    """A calendar object fetched from a remote server."""

    url: str
    etag: str
    raw_ical: str


@dataclass
class RemoteEventBatch:
    """Result of one remote object fetch.

    ``incremental`` is True only when the server honoured the supplied sync
    token, in which case ``events`` holds changes only and ``deleted_urls``
    the objects removed since that token.
    """

    events: List[RemoteEvent] = field(default_factory=list)
    deleted_urls: List[str] = field(default_factory=list)
    sync_token: Optional[str] = None
    incremental: bool = False


@dataclass
class SyncResult:
    """Aggregate outcome of a sync pass."""

    synced: int = 0
    errors: List[str] = field(default_factory=list)

    def merge(self, other: 'SyncResult') -> 'SyncResult':
        self.synced += other.synced
        self.errors.extend(other.errors)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {'synced': self.synced, 'errors': list(self.errors)}


@dataclass
class PutOutcome:
    """Result of storing an event through the local CalDAV server."""

    created: bool
    etag: str
