"""Domain interfaces for the Almanac CalDAV server."""

from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .entities import AccountCredentials, RemoteCalendar, RemoteEventBatch


class RemoteCalendarRepository(ABC):
    """Abstract access to a remote CalDAV account."""

    @abstractmethod
    async def fetch_remote_calendars(self, credentials: AccountCredentials) -> List[RemoteCalendar]:
        """List the calendar collections of the account."""
        pass

    @abstractmethod
    async def fetch_remote_events(
        self,
        credentials: AccountCredentials,
        calendar_url: str,
        sync_token: Optional[str] = None
    ) -> RemoteEventBatch:
        """Fetch calendar objects, incrementally when a sync token is accepted."""
        pass

    @abstractmethod
    async def push_event(
        self,
        credentials: AccountCredentials,
        calendar_url: str,
        filename: str,
        raw_ical: str
    ) -> Tuple[str, Optional[str]]:
        """Create a new object; returns its URL and the server ETag."""
        pass

    @abstractmethod
    async def update_remote_event(
        self,
        credentials: AccountCredentials,
        event_url: str,
        raw_ical: str,
        etag: str
    ) -> Optional[str]:
        """Replace an object if it still has ``etag``; returns the new ETag."""
        pass

    @abstractmethod
    async def delete_remote_event(
        self,
        credentials: AccountCredentials,
        event_url: str,
        etag: str
    ) -> None:
        """Delete an object if it still has ``etag``."""
        pass
