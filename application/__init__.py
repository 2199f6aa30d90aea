"""Application services for Almanac CalDAV server."""

from .sync import DataSyncService, CalendarSyncPlan, plan_calendar_sync
from .services import CalDAVService, CalendarService

__all__ = [
    'DataSyncService', 'CalendarSyncPlan', 'plan_calendar_sync',
    'CalDAVService', 'CalendarService'
]
