"""Unit tests for CalendarEventList reconciliation."""
from datetime import date, datetime

import pytest

from processor.calendar_event import CalendarEvent
from processor.event_list import CalendarEventList

# A Monday
NOW = datetime(2025, 3, 10, 12, 0)
TODAY = NOW.date()


def make_event(**overrides):
    """Create an event valid for the first half of 2025, Mondays by default."""
    fields = {
        'weekday': 1,
        'start_time': (9, 0),
        'end_time': (11, 0),
        'section': 'Open swim',
        'title': 'Piscine Quintal open swim',
        'period_start': date(2025, 1, 1),
        'period_end': date(2025, 6, 30),
        'created_at': datetime(2025, 1, 2, 8, 0),
        'updated_at': datetime(2025, 1, 2, 8, 0),
    }
    fields.update(overrides)
    return CalendarEvent(**fields)


def assert_sorted(events):
    keys = [event.sort_key() for event in events]
    assert keys == sorted(keys)


@pytest.fixture
def weekly_batch():
    """Three slots of a regular weekly schedule."""
    return [
        make_event(),
        make_event(weekday=3, start_time=(18, 0), end_time=(20, 0)),
        make_event(weekday=6, section='Lanes'),
    ]


class TestConstruction:
    """Test cases for building and filling a list."""

    def test_empty(self):
        """Test an empty list has no events and no bounds."""
        events = CalendarEventList()

        assert len(events) == 0
        assert not events
        assert events.period_start is None
        assert events.end_date is None

    def test_rejects_non_events(self):
        """Test that only CalendarEvent objects are accepted."""
        with pytest.raises(TypeError):
            CalendarEventList([make_event(), {'weekday': 1}])

    def test_add_rejects_non_events(self):
        """Test that add refuses other objects."""
        events = CalendarEventList()
        with pytest.raises(TypeError):
            events.add('not an event')

    def test_sorted_on_construction(self, weekly_batch):
        """Test the list is sorted whatever the input order."""
        events = CalendarEventList(reversed(weekly_batch))

        assert_sorted(events)
        assert [event.first_day for event in events] == [
            date(2025, 1, 1), date(2025, 1, 4), date(2025, 1, 6)
        ]

    def test_aggregate_bounds(self):
        """Test period and occurrence bounds over all events."""
        events = CalendarEventList([
            make_event(period_start=date(2025, 2, 1), period_end=date(2025, 2, 14)),
            make_event(weekday=6, period_start=date(2025, 1, 1), period_end=date(2025, 3, 31)),
        ])

        assert events.period_start == date(2025, 1, 1)
        assert events.period_end == date(2025, 3, 31)
        assert events.start_date == date(2025, 1, 4)
        assert events.end_date == date(2025, 3, 31)

    def test_list_round_trip(self, weekly_batch):
        """Test to_list and from_list preserve the events."""
        events = CalendarEventList(weekly_batch)

        restored = CalendarEventList.from_list(events.to_list())

        assert [event.dynamic_hash for event in restored] == \
            [event.dynamic_hash for event in events]


class TestUpsert:
    """Test cases for single-event reconciliation."""

    def test_upsert_new_event(self):
        """Test an unknown slot is appended."""
        events = CalendarEventList()
        event = make_event()

        outcome = events.upsert(event, now=NOW)

        assert outcome == 'added'
        assert len(events) == 1
        assert events[0] is event
        assert event.seen

    def test_upsert_unchanged_refreshes_last_day(self):
        """Test an identical slot extends the stored one instead of duplicating."""
        stored = make_event(last_day=date(2025, 3, 3))
        events = CalendarEventList([stored])

        outcome = events.upsert(make_event(), now=NOW)

        assert outcome == 'unchanged'
        assert len(events) == 1
        assert events[0] is stored
        assert stored.last_day == date(2025, 6, 30)
        assert stored.seen

    def test_upsert_changed_notice_versions(self):
        """Test a notice change closes the old version and opens a new one."""
        stored = make_event()
        events = CalendarEventList([stored])
        changed = make_event(notice='Pool closed')

        outcome = events.upsert(changed, now=NOW)

        assert outcome == 'versioned'
        assert len(events) == 2
        old, new = events[0], events[1]
        assert old is stored
        assert new is changed
        assert old.static_hash == new.static_hash
        assert old.last_day == date(2025, 3, 9)
        assert old.last_day < TODAY
        assert old.updated_at == NOW
        assert new.first_day == date(2025, 3, 10)
        assert new.first_day >= TODAY
        assert new.first_day > old.last_day
        assert not old.overlap(new)

    def test_upsert_matches_latest_version(self):
        """Test matching prefers the most recent version of a slot."""
        original = make_event()
        original.end_before(date(2025, 2, 10))
        closed = make_event(notice='Pool closed')
        closed.start_after(date(2025, 2, 10))
        events = CalendarEventList([original, closed])

        assert events.upsert(make_event(notice='Pool closed'), now=NOW) == 'unchanged'
        assert len(events) == 2

        reopened = make_event()
        assert events.upsert(reopened, now=NOW) == 'versioned'

        assert len(events) == 3
        assert original.last_day == date(2025, 2, 9)
        assert closed.last_day == date(2025, 3, 9)
        assert reopened.first_day == date(2025, 3, 10)

    def test_upsert_requires_overlap(self):
        """Test a same-identity event outside the stored range is a new slot."""
        stored = make_event(first_day=date(2025, 1, 6), last_day=date(2025, 1, 27))
        events = CalendarEventList([stored])
        later = make_event(notice='Pool closed')
        later.start_after(date(2025, 2, 1))

        outcome = events.upsert(later, now=NOW)

        assert outcome == 'added'
        assert len(events) == 2
        assert stored.last_day == date(2025, 1, 27)

    def test_upsert_keeps_sort_order(self, weekly_batch):
        """Test the list stays sorted after insertions."""
        events = CalendarEventList()
        for event in reversed(weekly_batch):
            events.upsert(event, now=NOW)

        assert_sorted(events)

    def test_upsert_rejects_non_events(self):
        """Test upsert refuses other objects."""
        with pytest.raises(TypeError):
            CalendarEventList().upsert({'weekday': 1}, now=NOW)


class TestUpsertAll:
    """Test cases for full reconciliation passes."""

    def test_identical_batch_is_noop(self, weekly_batch):
        """Test reconciling the current state changes nothing but seen flags."""
        events = CalendarEventList(weekly_batch)
        before = [(event.static_hash, event.dynamic_hash) for event in events]

        fresh = [make_event(), make_event(weekday=3, start_time=(18, 0), end_time=(20, 0)),
                 make_event(weekday=6, section='Lanes')]
        result = events.upsert_all(fresh, now=NOW)

        assert len(events) == 3
        assert [(event.static_hash, event.dynamic_hash) for event in events] == before
        assert result.unchanged == 3
        assert result.added == 0
        assert result.closed == 0
        assert all(event.seen for event in events)
        assert all(event.last_day == date(2025, 6, 30) for event in events)

    def test_changed_notice_is_versioned(self, weekly_batch):
        """Test one changed notice yields two versions of that slot."""
        events = CalendarEventList(weekly_batch)
        fresh = [make_event(notice='Pool closed'),
                 make_event(weekday=3, start_time=(18, 0), end_time=(20, 0)),
                 make_event(weekday=6, section='Lanes')]
        static_hash = fresh[0].static_hash

        result = events.upsert_all(fresh, now=NOW)

        assert len(events) == 4
        assert result.versioned == 1
        assert result.unchanged == 2
        assert result.closed == 0
        versions = [event for event in events if event.static_hash == static_hash]
        assert len(versions) == 2
        old = next(event for event in versions if event.notice is None)
        new = next(event for event in versions if event.notice == 'Pool closed')
        assert old.last_day < TODAY
        assert new.first_day >= TODAY
        assert new.first_day > old.last_day

    def test_unseen_events_are_closed(self, weekly_batch):
        """Test a slot missing from the batch ends as of today."""
        events = CalendarEventList(weekly_batch)
        removed = weekly_batch[2]

        fresh = [make_event(), make_event(weekday=3, start_time=(18, 0), end_time=(20, 0))]
        result = events.upsert_all(fresh, now=NOW)

        assert result.closed == 1
        assert len(events) == 3
        assert removed.last_day <= TODAY
        assert removed.last_day == date(2025, 3, 9)
        assert removed.updated_at == NOW

    def test_already_ended_events_are_left_alone(self):
        """Test end-unseen skips events that already ended."""
        ended = make_event(section='Lanes', last_day=date(2025, 2, 1))
        events = CalendarEventList([ended])

        result = events.upsert_all([make_event()], now=NOW)

        assert result.closed == 0
        assert ended.last_day == date(2025, 2, 1)
        assert ended.updated_at == datetime(2025, 1, 2, 8, 0)

    def test_seen_flags_reset_between_passes(self):
        """Test a slot seen in one pass is closed when missing from the next."""
        events = CalendarEventList()
        events.upsert_all([make_event(), make_event(section='Lanes')], now=NOW)

        result = events.upsert_all([make_event()], now=NOW)

        lanes = next(event for event in events if event.section == 'Lanes')
        assert result.closed == 1
        assert lanes.last_day == date(2025, 3, 9)

    def test_expired_events_are_removed(self):
        """Test events that ended over two years ago are dropped."""
        ancient = make_event(
            section='Old',
            period_start=date(2022, 1, 1),
            period_end=date(2022, 12, 31)
        )
        recent = make_event(
            section='Recent',
            period_start=date(2023, 1, 1),
            period_end=date(2023, 6, 30)
        )
        events = CalendarEventList([ancient, recent])

        result = events.upsert_all([make_event()], now=NOW)

        assert result.expired == 1
        sections = [event.section for event in events]
        assert 'Old' not in sections
        assert 'Recent' in sections

    def test_degenerate_events_are_removed(self):
        """Test a version that would start after it ends is dropped."""
        stored = make_event(period_end=date(2025, 3, 12))
        events = CalendarEventList([stored])

        events.upsert_all([make_event(period_end=date(2025, 3, 12), notice='Closed')],
                          now=datetime(2025, 3, 13, 9, 0))

        assert len(events) == 1
        assert events[0] is stored
        assert stored.last_day == date(2025, 3, 12)

    def test_upsert_future_slot_keeps_first_day(self):
        """Test versioning a slot that has not started yet keeps its start."""
        summer = {'period_start': date(2025, 6, 1), 'period_end': date(2025, 8, 31)}
        events = CalendarEventList([make_event(**summer)])

        result = events.upsert_all([make_event(notice='Closed', **summer)], now=NOW)

        assert result.versioned == 1
        assert len(events) == 1
        assert events[0].notice == 'Closed'
        assert events[0].first_day == date(2025, 6, 2)
        assert events[0].first_day >= events[0].period_start
        assert events[0].last_day == date(2025, 8, 31)

    def test_result_sorted(self, weekly_batch):
        """Test the list is sorted after a pass."""
        events = CalendarEventList([make_event(weekday=6, section='Lanes')])

        events.upsert_all(list(reversed(weekly_batch)) + [make_event(notice='Closed')], now=NOW)

        assert_sorted(events)


class TestCleanup:
    """Test cases for expiry."""

    def test_expiry_threshold(self):
        """Test the threshold is two years back."""
        assert CalendarEventList().expiry_threshold(NOW) == date(2023, 3, 10)

    def test_expiry_threshold_leap_day(self):
        """Test February 29 maps to February 28 two years back."""
        threshold = CalendarEventList().expiry_threshold(datetime(2024, 2, 29, 10, 0))
        assert threshold == date(2022, 2, 28)

    def test_cleanup_count(self):
        """Test cleanup reports removed events."""
        events = CalendarEventList([
            make_event(),
            make_event(section='Broken', first_day=date(2025, 3, 3), last_day=date(2025, 3, 2)),
        ])

        assert events.cleanup(NOW) == 1
        assert len(events) == 1


class TestOverride:
    """Test cases for layering special schedules."""

    def test_override_carves_base(self):
        """Test a special period punches a hole in the base schedule."""
        base = CalendarEventList([make_event(
            weekday=6,
            period_start=date(2025, 1, 1),
            period_end=date(2025, 3, 31)
        )])
        holidays = CalendarEventList([make_event(
            weekday=6,
            section='Holidays',
            title='Piscine Quintal holidays',
            period_start=date(2025, 2, 1),
            period_end=date(2025, 2, 14)
        )])

        base.override(holidays, use_period=True, now=NOW)

        assert len(base) == 3
        before, special, after = base
        assert (before.first_day, before.last_day) == (date(2025, 1, 4), date(2025, 1, 31))
        assert special.section == 'Holidays'
        assert (special.first_day, special.last_day) == (date(2025, 2, 1), date(2025, 2, 14))
        assert (after.first_day, after.last_day) == (date(2025, 2, 15), date(2025, 3, 31))

    def test_override_using_occurrence_bounds(self):
        """Test use_period=False uses the actual first and last days."""
        base = CalendarEventList([make_event(
            weekday=6,
            period_start=date(2025, 1, 1),
            period_end=date(2025, 3, 31)
        )])
        special = make_event(
            weekday=6,
            section='Holidays',
            period_start=date(2025, 1, 1),
            period_end=date(2025, 3, 31),
            first_day=date(2025, 2, 1),
            last_day=date(2025, 2, 14)
        )

        base.override(CalendarEventList([special]), use_period=False, now=NOW)

        assert len(base) == 3
        assert base[0].last_day == date(2025, 1, 31)
        assert base[2].first_day == date(2025, 2, 15)

    def test_override_period_can_eliminate_base(self):
        """Test a special period covering the base replaces it entirely."""
        base = CalendarEventList([make_event(period_start=date(2025, 2, 1),
                                             period_end=date(2025, 2, 28))])
        special = CalendarEventList([make_event(section='Holidays')])

        base.override(special, use_period=True, now=NOW)

        assert len(base) == 1
        assert base[0].section == 'Holidays'

    def test_override_with_empty_list(self, weekly_batch):
        """Test an empty override leaves the list unchanged."""
        events = CalendarEventList(weekly_batch)

        events.override(CalendarEventList(), now=NOW)

        assert len(events) == 3
