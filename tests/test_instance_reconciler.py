"""Unit tests for instance reconciliation."""
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from recurrence.instance_reconciler import reconcile
from recurrence.models import EventInstance, EventStatus, OccurrenceTimestamp
from recurrence.occurrence_generator import generate
from recurrence.rule_normalizer import normalize

CHICAGO = ZoneInfo('America/Chicago')


def _occurrence(day: date, hour: int = 18) -> OccurrenceTimestamp:
    start = datetime(day.year, day.month, day.day, hour, tzinfo=CHICAGO)
    return OccurrenceTimestamp(start=start, end=start + timedelta(hours=2), instance_date=day)


def _instance(event_id, day, sequence=None, hour=18, **kwargs) -> EventInstance:
    start = datetime(day.year, day.month, day.day, hour, tzinfo=CHICAGO)
    kwargs.setdefault('status', EventStatus.PUBLISHED)
    return EventInstance(
        event_id=event_id,
        series_id='series-1',
        instance_date=day,
        start_datetime=start,
        end_datetime=start + timedelta(hours=2),
        series_sequence=sequence,
        **kwargs
    )


@pytest.fixture
def march_tuesdays():
    """Tuesday 6pm occurrences for March 2025."""
    return [_occurrence(date(2025, 3, d)) for d in (4, 11, 18, 25)]


class TestReconcile:
    """Test cases for reconcile()."""

    def test_no_existing_instances(self, march_tuesdays):
        """Test everything is created when nothing is stored."""
        result = reconcile(march_tuesdays, [])

        assert result.to_create == march_tuesdays
        assert result.to_retire == []
        assert result.unchanged == []

    def test_matching_instances_unchanged(self, march_tuesdays):
        """Test stored instances on generated dates need no action."""
        existing = [_instance(f'e{i}', occ.instance_date, i + 1)
                    for i, occ in enumerate(march_tuesdays)]

        result = reconcile(march_tuesdays, existing)

        assert result.to_create == []
        assert result.to_retire == []
        assert result.unchanged == existing

    def test_match_by_date_not_timestamp(self, march_tuesdays):
        """Test an instance at a different hour still matches its date."""
        existing = [_instance('e1', date(2025, 3, 4), 1, hour=20)]

        result = reconcile(march_tuesdays, existing)

        assert [o.instance_date for o in result.to_create] == [
            date(2025, 3, 11), date(2025, 3, 18), date(2025, 3, 25)
        ]
        assert result.unchanged == existing

    def test_manual_override_claims_date(self, march_tuesdays):
        """Test override moved to 7pm suppresses the rule's 6pm occurrence."""
        override = _instance('moved', date(2025, 3, 4), 1, hour=19, is_manual_override=True)

        result = reconcile(march_tuesdays, [override])

        assert date(2025, 3, 4) not in [o.instance_date for o in result.to_create]
        assert override in result.unchanged
        assert override not in result.to_retire

    def test_override_never_retired(self, march_tuesdays):
        """Test overrides on dates the rule no longer produces are kept."""
        override = _instance('makeup', date(2025, 3, 6), 2, is_manual_override=True)

        result = reconcile(march_tuesdays, [override])

        assert result.to_retire == []
        assert result.unchanged == [override]

    def test_shortened_end_date_retires_instance(self):
        """Test instances past a new, earlier end_date are retired."""
        rule = normalize({
            'frequency': 'weekly',
            'days_of_week': [2],
            'time': '18:00',
            'end_type': 'date',
            'end_date': '2025-03-11',
            'start_date': '2025-03-01',
            'timezone': 'America/Chicago',
        }).rule
        window_start = datetime(2025, 3, 1, tzinfo=CHICAGO)
        window_end = datetime(2025, 3, 31, tzinfo=CHICAGO)
        occurrences = list(generate(rule, window_start, window_end))
        existing = [
            _instance('e1', date(2025, 3, 4), 1),
            _instance('e2', date(2025, 3, 11), 2),
            _instance('e3', date(2025, 3, 18), 3),
        ]

        result = reconcile(occurrences, existing, window_start, window_end)

        assert [i.event_id for i in result.to_retire] == ['e3']
        assert [i.event_id for i in result.unchanged] == ['e1', 'e2']
        assert result.to_create == []

    def test_removed_weekday_retires_instances(self, march_tuesdays):
        """Test dropping a weekday from the rule retires its instances."""
        thursday = _instance('thu', date(2025, 3, 6), 2)

        result = reconcile(march_tuesdays, [thursday])

        assert result.to_retire == [thursday]

    def test_instances_outside_window_kept(self, march_tuesdays):
        """Test past and far-future instances are not retired by a March window."""
        window_start = datetime(2025, 3, 1, tzinfo=CHICAGO)
        window_end = datetime(2025, 3, 31, 23, 59, tzinfo=CHICAGO)
        past = _instance('past', date(2025, 2, 25), 1)
        future = _instance('future', date(2025, 4, 1), 6)

        result = reconcile(march_tuesdays, [past, future], window_start, window_end)

        assert result.to_retire == []
        assert result.unchanged == [past, future]

    def test_same_day_before_window_start_kept(self):
        """Test an instance earlier on the window's first day is outside it."""
        window_start = datetime(2025, 3, 4, 12, tzinfo=CHICAGO)
        window_end = datetime(2025, 3, 31, tzinfo=CHICAGO)
        morning = _instance('morning', date(2025, 3, 4), 1, hour=9)

        result = reconcile([], [morning], window_start, window_end)

        assert result.unchanged == [morning]

    def test_already_cancelled_not_retired_again(self, march_tuesdays):
        """Test cancelled instances stay put on later syncs."""
        cancelled = _instance('old', date(2025, 3, 6), status=EventStatus.CANCELLED)

        result = reconcile(march_tuesdays, [cancelled])

        assert result.to_retire == []
        assert result.unchanged == [cancelled]

    def test_cancelled_instance_holds_its_date(self, march_tuesdays):
        """Test a session cancelled by a shortened end_date is not recreated when it is extended."""
        cancelled = _instance('e4', date(2025, 3, 25), status=EventStatus.CANCELLED)
        existing = [
            _instance('e1', date(2025, 3, 4), 1),
            _instance('e2', date(2025, 3, 11), 2),
            _instance('e3', date(2025, 3, 18), 3),
            cancelled,
        ]

        result = reconcile(march_tuesdays, existing)

        assert result.to_create == []
        assert result.to_retire == []
        assert cancelled in result.unchanged

    def test_duplicate_rows_for_one_date(self, march_tuesdays):
        """Test extra rows for an already matched date are retired."""
        keep = _instance('a', date(2025, 3, 4), 1)
        duplicate = _instance('b', date(2025, 3, 4), 2)

        result = reconcile(march_tuesdays, [duplicate, keep])

        assert result.to_retire == [duplicate]
        assert keep in result.unchanged
        assert date(2025, 3, 4) not in [o.instance_date for o in result.to_create]

    def test_non_override_sharing_override_date_retired(self, march_tuesdays):
        """Test a generated row is retired when an override owns its date."""
        override = _instance('moved', date(2025, 3, 4), 1, hour=19, is_manual_override=True)
        generated = _instance('gen', date(2025, 3, 4), 2)

        result = reconcile(march_tuesdays, [override, generated])

        assert result.to_retire == [generated]
        assert override in result.unchanged

    def test_duplicate_occurrences_created_once(self):
        """Test two occurrences on the same date produce one creation."""
        occurrences = [_occurrence(date(2025, 3, 4)), _occurrence(date(2025, 3, 4))]

        result = reconcile(occurrences, [])

        assert len(result.to_create) == 1

    def test_deterministic_output_order(self, march_tuesdays):
        """Test output does not depend on the order rows were loaded in."""
        existing = [
            _instance('e3', date(2025, 3, 20), 3),
            _instance('e1', date(2025, 3, 5), 1),
            _instance('e2', date(2025, 3, 12), 2),
        ]

        forward = reconcile(march_tuesdays, existing)
        backward = reconcile(list(reversed(march_tuesdays)), list(reversed(existing)))

        assert forward == backward
        assert [i.event_id for i in forward.to_retire] == ['e1', 'e2', 'e3']

    def test_empty_inputs(self):
        """Test degenerate inputs produce an empty plan."""
        result = reconcile([], [])

        assert result.to_create == []
        assert result.to_retire == []
        assert result.unchanged == []


class TestOverrideSupremacy:
    """Override instances win over regeneration for every generated date."""

    @pytest.mark.parametrize('override_day', [4, 11, 18, 25])
    def test_override_on_each_generated_date(self, march_tuesdays, override_day):
        day = date(2025, 3, override_day)
        override = _instance('ovr', day, hour=20, is_manual_override=True)
        others = [_instance(f'e{d}', date(2025, 3, d), hour=18)
                  for d in (4, 11, 18, 25) if d != override_day]

        result = reconcile(march_tuesdays, others + [override])

        assert day not in [o.instance_date for o in result.to_create]
        assert override not in result.to_retire
        assert override in result.unchanged
