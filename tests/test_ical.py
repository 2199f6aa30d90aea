"""Tests for the VEVENT codec."""

from datetime import timedelta

import pytest
from icalendar import Calendar

from domain import EventChanges, EventData, EventStatus
from infrastructure import build_vevent, parse_datetime, parse_vevent, update_vevent
from monitoring import InvalidCalendarDataError
from fake_remote import make_vevent, utc


class TestParseVEvent:

    def test_timed_event(self):
        parsed = parse_vevent(make_vevent('e1', 'Standup'))

        assert parsed.uid == 'e1'
        assert parsed.title == 'Standup'
        assert parsed.start_at == utc(2025, 6, 1, 9, 0)
        assert parsed.end_at == utc(2025, 6, 1, 9, 30)
        assert parsed.all_day is False
        assert parsed.status is EventStatus.CONFIRMED

    def test_all_day_end_is_exclusive(self):
        parsed = parse_vevent(make_vevent('d1', 'Holiday', start='20250601', end='20250602'))

        assert parsed.all_day is True
        assert parsed.start_at == utc(2025, 6, 1)
        assert parsed.end_at == utc(2025, 6, 2)

    def test_all_day_without_dtend_spans_one_day(self):
        parsed = parse_vevent(make_vevent('d2', 'Birthday', start='20250601', end=None))
        assert parsed.end_at - parsed.start_at == timedelta(days=1)

    def test_timed_without_dtend_uses_duration(self):
        parsed = parse_vevent(make_vevent('e2', 'Call', end=None, extra='DURATION:PT45M'))
        assert parsed.end_at == utc(2025, 6, 1, 9, 45)

    def test_timed_without_dtend_or_duration_ends_at_start(self):
        parsed = parse_vevent(make_vevent('e3', 'Reminder', end=None))
        assert parsed.end_at == parsed.start_at

    def test_tzid_converted_to_utc(self):
        raw = make_vevent('tz', 'Lunch', start='20250601T120000', end='20250601T130000')
        raw = raw.replace('DTSTART:', 'DTSTART;TZID=Europe/Berlin:').replace('DTEND:', 'DTEND;TZID=Europe/Berlin:')

        parsed = parse_vevent(raw)

        assert parsed.start_at == utc(2025, 6, 1, 10, 0)

    def test_floating_time_taken_as_utc(self):
        parsed = parse_vevent(make_vevent('f', 'Floating', start='20250601T080000', end='20250601T090000'))
        assert parsed.start_at == utc(2025, 6, 1, 8, 0)

    @pytest.mark.parametrize('value, expected', [
        ('TENTATIVE', EventStatus.TENTATIVE),
        ('CANCELLED', EventStatus.CANCELLED),
        ('NEEDS-ACTION', EventStatus.CONFIRMED),
    ])
    def test_status(self, value, expected):
        parsed = parse_vevent(make_vevent('s', 'Status', extra=f'STATUS:{value}'))
        assert parsed.status is expected

    def test_missing_summary_is_untitled(self):
        raw = make_vevent('u', 'x').replace('SUMMARY:x\r\n', '')
        assert parse_vevent(raw).title == 'Untitled'

    def test_no_vevent_returns_none(self):
        raw = (
            'BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//x//EN\r\n'
            'BEGIN:VTODO\r\nUID:t1\r\nSUMMARY:Todo\r\nEND:VTODO\r\n'
            'END:VCALENDAR\r\n'
        )
        assert parse_vevent(raw) is None

    def test_not_icalendar_raises(self):
        with pytest.raises(InvalidCalendarDataError):
            parse_vevent('this is not a calendar')


class TestBuildVEvent:

    def test_round_trip_timed(self):
        data = EventData(
            uid='b1',
            title='Planning',
            start_at=utc(2025, 6, 2, 14, 0),
            end_at=utc(2025, 6, 2, 15, 0),
            description='Quarterly',
            location='Room 4'
        )

        parsed = parse_vevent(build_vevent(data))

        assert (parsed.uid, parsed.title, parsed.description, parsed.location) == \
            ('b1', 'Planning', 'Quarterly', 'Room 4')
        assert parsed.start_at == data.start_at
        assert parsed.end_at == data.end_at
        assert parsed.all_day is False

    def test_round_trip_all_day(self):
        data = EventData(uid='b2', title='Off', start_at=utc(2025, 6, 3), end_at=utc(2025, 6, 4), all_day=True)

        raw = build_vevent(data)
        parsed = parse_vevent(raw)

        assert 'DTSTART;VALUE=DATE:20250603' in raw
        assert parsed.all_day is True
        assert parsed.start_at == data.start_at
        assert parsed.end_at == data.end_at

    def test_required_properties(self):
        raw = build_vevent(EventData(uid='b3', title='T', start_at=utc(2025, 1, 1, 10), end_at=utc(2025, 1, 1, 11)))
        vevent = Calendar.from_ical(raw).walk('VEVENT')[0]
        cal = Calendar.from_ical(raw)

        assert str(cal['VERSION']) == '2.0'
        assert 'PRODID' in cal
        assert 'DTSTAMP' in vevent
        assert parse_vevent(raw).start_at == utc(2025, 1, 1, 10)


class TestUpdateVEvent:

    def setup_method(self):
        self.raw = make_vevent(
            'p1', 'Original',
            extra='X-CUSTOM-PROP:keep me\r\nSEQUENCE:3\r\nBEGIN:VALARM\r\nACTION:DISPLAY\r\n'
                  'TRIGGER:-PT15M\r\nDESCRIPTION:Reminder\r\nEND:VALARM'
        )

    def test_title_only_patch_preserves_everything_else(self):
        updated = update_vevent(self.raw, EventChanges(title='X'))

        before = Calendar.from_ical(self.raw).walk('VEVENT')[0]
        after = Calendar.from_ical(updated).walk('VEVENT')[0]
        assert str(after['SUMMARY']) == 'X'
        assert int(after['SEQUENCE']) == 4
        assert 'LAST-MODIFIED' in after
        assert after['DTSTART'].dt == before['DTSTART'].dt
        assert after['DTEND'].dt == before['DTEND'].dt
        assert str(after['UID']) == 'p1'
        assert str(after['X-CUSTOM-PROP']) == 'keep me'
        assert len(after.walk('VALARM')) == 1

    def test_sequence_starts_at_one(self):
        updated = update_vevent(make_vevent('p2', 'No seq'), EventChanges(title='Seq'))
        assert int(Calendar.from_ical(updated).walk('VEVENT')[0]['SEQUENCE']) == 1

    def test_unset_differs_from_clear(self):
        raw = make_vevent('p3', 'Loc', extra='LOCATION:Office\r\nDESCRIPTION:Notes')

        untouched = parse_vevent(update_vevent(raw, EventChanges(title='New')))
        cleared = parse_vevent(update_vevent(raw, EventChanges(location=None, description='')))

        assert untouched.location == 'Office'
        assert untouched.description == 'Notes'
        assert cleared.location == ''
        assert cleared.description == ''

    def test_times_keep_existing_value_type(self):
        raw = make_vevent('p4', 'Day', start='20250601', end='20250602')

        updated = parse_vevent(update_vevent(raw, EventChanges(end_at=utc(2025, 6, 4))))

        assert updated.all_day is True
        assert updated.end_at == utc(2025, 6, 4)

    def test_switch_to_all_day_retypes_existing_times(self):
        updated = update_vevent(self.raw, EventChanges(all_day=True))
        assert 'DTSTART;VALUE=DATE:20250601' in updated
        assert parse_vevent(updated).all_day is True

    def test_status_patch(self):
        updated = parse_vevent(update_vevent(self.raw, EventChanges(status=EventStatus.CANCELLED)))
        assert updated.status is EventStatus.CANCELLED

    def test_no_vevent_raises(self):
        raw = 'BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//x//EN\r\nEND:VCALENDAR\r\n'
        with pytest.raises(InvalidCalendarDataError):
            update_vevent(raw, EventChanges(title='x'))


@pytest.mark.parametrize('text, expected', [
    ('20250601T090000Z', utc(2025, 6, 1, 9)),
    ('2025-06-01T09:00:00Z', utc(2025, 6, 1, 9)),
    ('2025-06-01T11:00:00+02:00', utc(2025, 6, 1, 9)),
    ('2025-06-01', utc(2025, 6, 1)),
])
def test_parse_datetime(text, expected):
    assert parse_datetime(text) == expected
