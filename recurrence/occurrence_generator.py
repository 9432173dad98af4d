"""Lazy expansion of a recurrence rule into concrete occurrences."""
import calendar
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Iterator
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from recurrence.models import (
    WEEKLY_FREQUENCIES,
    EndType,
    Frequency,
    OccurrenceTimestamp,
    RecurrenceRule,
)

logger = logging.getLogger(__name__)


def sunday_weekday(day: date) -> int:
    """Weekday index with 0=Sunday..6=Saturday."""
    return day.isoweekday() % 7


def generate(
    rule: RecurrenceRule,
    window_start: datetime,
    window_end: datetime
) -> Iterator[OccurrenceTimestamp]:
    """
    Yield the occurrences a rule implies inside [window_start, window_end].

    Occurrences come out in ascending order. Counting for end_type=count
    starts at the rule's anchor, so slots before window_start use up the
    count without being yielded. Calling again with the same arguments
    yields the same sequence.

    Args:
        rule: Rule produced by ``normalize``
        window_start: Inclusive lower bound (naive values are read in the
            rule's timezone)
        window_end: Inclusive upper bound, required

    Yields:
        OccurrenceTimestamp for each slot in the window
    """
    _check_contract(rule, window_start, window_end)

    tz = ZoneInfo(rule.timezone)
    window_start = _localize(window_start, tz)
    window_end = _localize(window_end, tz)
    if window_start > window_end:
        return

    anchor = rule.start_date or window_start.date()
    duration = timedelta(minutes=rule.duration_minutes)
    produced = 0

    for slot in _candidate_dates(rule, anchor):
        if rule.end_type == EndType.DATE and slot > rule.end_date:
            return
        if rule.end_type == EndType.COUNT and produced >= rule.end_count:
            return

        start = datetime.combine(slot, rule.time, tzinfo=tz)
        if start > window_end:
            return

        produced += 1
        if start < window_start:
            continue

        # Add the duration in absolute time so DST shifts keep the length
        end = (start.astimezone(timezone.utc) + duration).astimezone(tz)
        yield OccurrenceTimestamp(start=start, end=end, instance_date=slot)


def _check_contract(rule, window_start, window_end) -> None:
    """Reject input that could only come from skipping normalization."""
    if not isinstance(rule, RecurrenceRule):
        raise AssertionError(f"generate() needs a normalized RecurrenceRule, got {type(rule).__name__}")
    if window_start is None or window_end is None:
        raise AssertionError("generate() needs a bounded window")
    if rule.interval < 1 or rule.duration_minutes < 0:
        raise AssertionError(f"Rule has invalid interval/duration: {rule}")
    if rule.frequency in WEEKLY_FREQUENCIES and not rule.days_of_week:
        raise AssertionError("Weekly rule without days_of_week")
    if rule.frequency == Frequency.MONTHLY and rule.day_of_month is None:
        raise AssertionError("Monthly rule without day_of_month")
    if rule.frequency == Frequency.YEARLY and rule.start_date is None:
        raise AssertionError("Yearly rule without start_date")
    if rule.end_type == EndType.DATE and rule.end_date is None:
        raise AssertionError("end_type=date without end_date")
    if rule.end_type == EndType.COUNT and not rule.end_count:
        raise AssertionError("end_type=count without end_count")


def _localize(value: datetime, tz: ZoneInfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def _candidate_dates(rule: RecurrenceRule, anchor: date) -> Iterator[date]:
    """Every date the pattern matches on or after the anchor, ascending, unbounded."""
    if rule.frequency == Frequency.DAILY:
        step = timedelta(days=rule.interval)
        current = anchor
        while True:
            yield current
            current += step

    elif rule.frequency in WEEKLY_FREQUENCIES:
        weeks = rule.interval * (2 if rule.frequency == Frequency.BIWEEKLY else 1)
        week_start = anchor - timedelta(days=sunday_weekday(anchor))
        while True:
            for offset in rule.days_of_week:
                slot = week_start + timedelta(days=offset)
                if slot >= anchor:
                    yield slot
            week_start += timedelta(weeks=weeks)

    elif rule.frequency == Frequency.MONTHLY:
        first_of_month = anchor.replace(day=1)
        periods = 0
        while True:
            month = first_of_month + relativedelta(months=periods * rule.interval)
            last_day = calendar.monthrange(month.year, month.month)[1]
            slot = month.replace(day=min(rule.day_of_month, last_day))
            if slot >= anchor:
                yield slot
            periods += 1

    elif rule.frequency == Frequency.YEARLY:
        periods = 0
        while True:
            # relativedelta clamps Feb 29 to Feb 28 in common years
            yield anchor + relativedelta(years=periods * rule.interval)
            periods += 1

    else:
        raise AssertionError(f"Unsupported frequency: {rule.frequency}")
