"""Domain layer for the Almanac CalDAV server."""

from .entities import (
    EventStatus, UNSET, ParsedEvent, EventData, EventChanges,
    AccountCredentials, RemoteCalendar, RemoteEvent, RemoteEventBatch,
    SyncResult, PutOutcome
)
from .etag import compute_etag, normalize_etag, quote_etag, if_match_satisfied
from .interfaces import RemoteCalendarRepository

__all__ = [
    'EventStatus', 'UNSET', 'ParsedEvent', 'EventData', 'EventChanges',
    'AccountCredentials', 'RemoteCalendar', 'RemoteEvent', 'RemoteEventBatch',
    'SyncResult', 'PutOutcome',
    'compute_etag', 'normalize_etag', 'quote_etag', 'if_match_satisfied',
    'RemoteCalendarRepository'
]
