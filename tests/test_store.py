"""Tests for the SQLAlchemy calendar store."""

import pytest
from sqlalchemy.exc import IntegrityError

from domain import EventStatus, ParsedEvent
from infrastructure import EventWrite
from infrastructure.repositories import next_ctag
from fake_remote import utc


def write_for(uid, start, end, title='Event', url=None, etag='"1"'):
    parsed = ParsedEvent(
        uid=uid, title=title, description='', location='',
        start_at=start, end_at=end, all_day=False, status=EventStatus.CONFIRMED
    )
    return EventWrite(uid=uid, raw_ical=f'RAW {uid} {title}', parsed=parsed, etag=etag, url=url)


def remote_calendar(store, account, url='https://dav.example.com/cal/'):
    return store.insert_calendar(
        account_id=account.id, url=url, display_name='Remote', color='#ff0000', enabled=True, is_local=False
    )


class TestLocalCalendar:

    def test_get_or_create_is_idempotent(self, store):
        first = store.ensure_local_calendar()
        second = store.ensure_local_calendar()

        assert first.id == second.id
        assert first.is_local is True
        assert first.account_id is None
        assert first.url == f'/api/caldav/calendars/{first.id}/'
        assert len([c for c in store.list_calendars() if c.is_local]) == 1

    def test_second_local_calendar_is_rejected(self, store):
        store.ensure_local_calendar()
        with pytest.raises(IntegrityError):
            store.insert_calendar(url='/other/', display_name='Other', is_local=True, enabled=True)


class TestCascade:

    def test_deleting_account_removes_calendars_and_events(self, store, account):
        calendar = remote_calendar(store, account)
        store.insert_event(calendar.id, write_for('e1', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        assert store.delete_account(account.id) is True

        assert store.get_calendar(calendar.id) is None
        assert store.list_events(calendar.id) == []

    def test_deleting_calendar_removes_events(self, store, account):
        calendar = remote_calendar(store, account)
        store.insert_event(calendar.id, write_for('e1', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        store.delete_calendar(calendar.id)

        assert store.list_events(calendar.id) == []


class TestEvents:

    def test_uid_unique_per_calendar(self, store, account):
        calendar = remote_calendar(store, account)
        store.insert_event(calendar.id, write_for('dup', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        with pytest.raises(IntegrityError):
            store.insert_event(calendar.id, write_for('dup', utc(2025, 6, 2, 9), utc(2025, 6, 2, 10)))

    def test_same_uid_allowed_in_other_calendar(self, store, account):
        first = remote_calendar(store, account)
        local = store.ensure_local_calendar()
        store.insert_event(first.id, write_for('shared', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))
        store.insert_event(local.id, write_for('shared', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        assert store.get_event_by_uid(local.id, 'shared') is not None

    def test_times_come_back_as_aware_utc(self, store):
        local = store.ensure_local_calendar()
        store.insert_event(local.id, write_for('tz', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        event = store.get_event_by_uid(local.id, 'tz')

        assert event.start_at == utc(2025, 6, 1, 9)
        assert event.start_at.tzinfo is not None

    def test_overwrite_replaces_projection(self, store):
        local = store.ensure_local_calendar()
        row = store.insert_event(local.id, write_for('o', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        store.overwrite_event(row.id, write_for('o', utc(2025, 6, 2, 9), utc(2025, 6, 2, 10), title='Moved', etag='"2"'))

        event = store.get_event(row.id)
        assert event.title == 'Moved'
        assert event.raw_ical == 'RAW o Moved'
        assert event.etag == '"2"'
        assert event.start_at == utc(2025, 6, 2, 9)


class TestEventsInRange:

    def setup_method(self):
        self.window = (utc(2025, 6, 1, 10), utc(2025, 6, 1, 12))

    def _seed(self, store):
        local = store.ensure_local_calendar()
        for uid, start, end in [
            ('before', utc(2025, 6, 1, 8), utc(2025, 6, 1, 10)),
            ('overlap-start', utc(2025, 6, 1, 9), utc(2025, 6, 1, 11)),
            ('inside', utc(2025, 6, 1, 10, 30), utc(2025, 6, 1, 11)),
            ('spanning', utc(2025, 6, 1, 0), utc(2025, 6, 2, 0)),
            ('after', utc(2025, 6, 1, 12), utc(2025, 6, 1, 13)),
            ('instant-in', utc(2025, 6, 1, 10), utc(2025, 6, 1, 10)),
            ('instant-end', utc(2025, 6, 1, 12), utc(2025, 6, 1, 12)),
        ]:
            store.insert_event(local.id, write_for(uid, start, end))
        return local

    def test_overlap_semantics(self, store):
        local = self._seed(store)

        uids = {e.uid for e in store.events_in_range(*self.window, calendar_id=local.id)}

        assert uids == {'overlap-start', 'inside', 'spanning', 'instant-in'}

    def test_enabled_only_skips_disabled_calendars(self, store, account):
        calendar = remote_calendar(store, account)
        store.insert_event(calendar.id, write_for('hidden', utc(2025, 6, 1, 10), utc(2025, 6, 1, 11)))
        store.update_calendar(calendar.id, enabled=False)

        assert store.events_in_range(*self.window, enabled_only=True) == []
        assert len(store.events_in_range(*self.window)) == 1


class TestApplyCalendarSync:

    def test_applies_all_changes_and_token(self, store, account):
        calendar = remote_calendar(store, account)
        keep = store.insert_event(calendar.id, write_for('keep', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))
        gone = store.insert_event(calendar.id, write_for('gone', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        store.apply_calendar_sync(
            calendar.id,
            inserts=[write_for('new', utc(2025, 6, 3, 9), utc(2025, 6, 3, 10))],
            updates=[(keep.id, write_for('keep', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10), title='Kept'))],
            delete_ids=[gone.id],
            sync_token='tok-9'
        )

        assert {e.uid: e.title for e in store.list_events(calendar.id)} == {'keep': 'Kept', 'new': 'Event'}
        assert store.get_calendar(calendar.id).sync_token == 'tok-9'

    def test_failure_commits_nothing(self, store, account):
        calendar = remote_calendar(store, account)
        existing = store.insert_event(calendar.id, write_for('a', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))
        other = store.insert_event(calendar.id, write_for('b', utc(2025, 6, 1, 9), utc(2025, 6, 1, 10)))

        with pytest.raises(IntegrityError):
            store.apply_calendar_sync(
                calendar.id,
                inserts=[write_for('a', utc(2025, 6, 3, 9), utc(2025, 6, 3, 10))],
                updates=[],
                delete_ids=[other.id],
                sync_token='tok-2'
            )

        assert {e.uid for e in store.list_events(calendar.id)} == {'a', 'b'}
        assert store.get_event(existing.id) is not None
        assert store.get_calendar(calendar.id).sync_token is None


def test_next_ctag_moves_forward():
    now = utc(2025, 6, 1, 9)
    first = next_ctag(None, now)
    second = next_ctag(first, now)

    assert int(second) > int(first)
    assert next_ctag('not-a-number', now) == first
