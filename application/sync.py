"""Pulls remote CalDAV accounts into the local store."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from domain import (
    AccountCredentials, RemoteCalendar, RemoteEventBatch, RemoteCalendarRepository,
    SyncResult, normalize_etag
)
from infrastructure import CalendarStore, EventWrite, Calendar, Event, parse_vevent
from infrastructure.models import DEFAULT_COLOR, utcnow
from monitoring import AccountNotFoundError, InvalidCalendarDataError, error_handler


@dataclass
class CalendarSyncPlan:
    """Changes one fetched batch implies for one local calendar."""

    inserts: List[EventWrite] = field(default_factory=list)
    updates: List[Tuple[str, EventWrite]] = field(default_factory=list)
    delete_ids: List[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def synced(self) -> int:
        return len(self.inserts) + len(self.updates)


def _etag_changed(existing: Event, write: EventWrite) -> bool:
    if write.etag:
        return normalize_etag(existing.etag) != normalize_etag(write.etag)
    # server sent no ETag; fall back to the content itself
    return existing.raw_ical != write.raw_ical


def plan_calendar_sync(local_events: List[Event], batch: RemoteEventBatch) -> CalendarSyncPlan:
    """Diff a fetched batch against the calendar's current rows by uid.

    Deletion inference only happens for a full fetch. An incremental batch
    deletes exactly the objects the server reported as removed.
    """
    plan = CalendarSyncPlan()
    by_uid: Dict[str, Event] = {event.uid: event for event in local_events}

    writes: Dict[str, EventWrite] = {}
    fetched_urls = set()
    for remote in batch.events:
        fetched_urls.add(remote.url)
        try:
            parsed = parse_vevent(remote.raw_ical)
        except InvalidCalendarDataError as e:
            logging.getLogger(__name__).warning(f"Skipping unparseable object {remote.url}: {e.message}")
            plan.skipped += 1
            continue
        if parsed is None or not parsed.uid:
            plan.skipped += 1
            continue
        writes[parsed.uid] = EventWrite(
            uid=parsed.uid,
            raw_ical=remote.raw_ical,
            parsed=parsed,
            etag=remote.etag or None,
            url=remote.url
        )

    for uid, write in writes.items():
        existing = by_uid.get(uid)
        if existing is None:
            plan.inserts.append(write)
        elif _etag_changed(existing, write):
            plan.updates.append((existing.id, write))

    if batch.incremental:
        gone = set(batch.deleted_urls)
        plan.delete_ids = [
            event.id for event in local_events
            if event.url in gone and event.uid not in writes
        ]
    else:
        plan.delete_ids = [
            event.id for event in local_events
            if event.uid not in writes and event.url not in fetched_urls
        ]

    return plan


class DataSyncService:
    """Sync engine for remote accounts.

    Holds no lock of its own: callers must not run two passes over the same
    account at once.
    """

    def __init__(self, store: CalendarStore, remote: RemoteCalendarRepository):
        self.store = store
        self.remote = remote
        self.logger = logging.getLogger(__name__)

    async def sync_account(self, account_id: str) -> SyncResult:
        """Run one pull for an account.

        A missing account or a failed calendar discovery raises; a failure
        inside one calendar is recorded and the remaining calendars continue.
        """
        account = self.store.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)

        credentials = AccountCredentials(
            server_url=account.server_url,
            username=account.username,
            password=account.password
        )

        remote_calendars = await self.remote.fetch_remote_calendars(credentials)
        calendars = self._reconcile_calendars(account.id, remote_calendars)

        result = SyncResult()
        for calendar in calendars:
            if not calendar.enabled:
                continue
            try:
                result.synced += await self._sync_calendar(credentials, calendar)
            except Exception as e:
                handled = error_handler.handle_error(
                    e, "sync_calendar", {'calendar_id': calendar.id, 'account_id': account.id}
                )
                result.errors.append(f'Calendar "{calendar.display_name}": {handled.message}')

        self.store.mark_account_synced(account.id, utcnow())
        self.logger.info(
            f"Synced account {account.display_name}: {result.synced} events, {len(result.errors)} errors"
        )
        return result

    async def sync_all_accounts(
        self,
        account_sync: Optional[Callable[[str], Awaitable[SyncResult]]] = None
    ) -> SyncResult:
        """Sync every account; one account failing does not stop the others."""
        account_sync = account_sync or self.sync_account
        result = SyncResult()
        for account in self.store.list_accounts():
            try:
                result.merge(await account_sync(account.id))
            except Exception as e:
                handled = error_handler.handle_error(e, "sync_account", {'account_id': account.id})
                result.errors.append(f'Account "{account.display_name}": {handled.message}')
        return result

    def get_last_sync_time(self) -> Optional[datetime]:
        """Most recent completed account sync."""
        times = [a.last_sync_at for a in self.store.list_accounts() if a.last_sync_at]
        return max(times) if times else None

    def _reconcile_calendars(self, account_id: str, remote_calendars: List[RemoteCalendar]) -> List[Calendar]:
        """Diff remote collections against local ones by URL."""
        local_by_url = {c.url: c for c in self.store.list_account_calendars(account_id)}
        remote_urls = set()

        for remote in remote_calendars:
            remote_urls.add(remote.url)
            existing = local_by_url.get(remote.url)
            if existing is not None:
                # sync_token only advances once the objects themselves are reconciled
                self.store.update_calendar(
                    existing.id,
                    display_name=remote.display_name,
                    color=remote.color or existing.color,
                    ctag=remote.ctag
                )
            else:
                self.store.insert_calendar(
                    account_id=account_id,
                    url=remote.url,
                    display_name=remote.display_name,
                    color=remote.color or DEFAULT_COLOR,
                    ctag=remote.ctag,
                    sync_token=None,
                    enabled=True,
                    is_local=False
                )
                self.logger.info(f"Discovered calendar {remote.display_name} at {remote.url}")

        for url, calendar in local_by_url.items():
            if url not in remote_urls:
                self.store.delete_calendar(calendar.id)
                self.logger.info(f"Removed calendar {calendar.display_name}, gone from server")

        return self.store.list_account_calendars(account_id)

    async def _sync_calendar(self, credentials: AccountCredentials, calendar: Calendar) -> int:
        batch = await self.remote.fetch_remote_events(credentials, calendar.url, calendar.sync_token)
        plan = plan_calendar_sync(self.store.list_events(calendar.id), batch)

        self.store.apply_calendar_sync(
            calendar.id,
            inserts=plan.inserts,
            updates=plan.updates,
            delete_ids=plan.delete_ids,
            sync_token=batch.sync_token
        )

        mode = 'incremental' if batch.incremental else 'full'
        self.logger.debug(
            f"Calendar {calendar.display_name} ({mode}): {len(plan.inserts)} new, "
            f"{len(plan.updates)} updated, {len(plan.delete_ids)} deleted, {plan.skipped} skipped"
        )
        return plan.synced
