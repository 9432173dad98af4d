"""Validation and normalization of raw recurrence rules."""
import logging
from datetime import date, datetime, time
from typing import Any, List, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from recurrence.models import (
    WEEKLY_FREQUENCIES,
    ContradictoryEndPolicy,
    EndType,
    Frequency,
    InvalidFormat,
    MissingField,
    NormalizeResult,
    OutOfRange,
    RecurrenceRule,
    ValidationError,
)

logger = logging.getLogger(__name__)

DATE_FORMATS = [
    '%Y-%m-%d',      # ISO 8601
    '%m/%d/%Y',      # US format
    '%m-%d-%Y',      # US format with dashes
    '%B %d, %Y',     # Full month name
    '%b %d, %Y',     # Abbreviated month name
    '%Y/%m/%d',      # Alternative ISO format
]

TIME_FORMATS = [
    '%H:%M',         # 24-hour format
    '%H:%M:%S',      # 24-hour with seconds (Postgres TIME)
    '%I:%M %p',      # 12-hour format with AM/PM
    '%I:%M%p',       # 12-hour format without space
]


def normalize(raw_rule: Optional[Mapping[str, Any]]) -> NormalizeResult:
    """
    Validate a raw recurrence description and build a canonical rule.

    Every problem found is collected; nothing is raised for bad input.

    Args:
        raw_rule: Mapping shaped like the stored recurrence JSON
            (frequency, interval, days_of_week, day_of_month, time,
            duration_minutes, end_type, end_date, end_count) with optional
            start_date and timezone.

    Returns:
        NormalizeResult holding either the rule or the validation errors
    """
    return RuleNormalizer().normalize(raw_rule)


def parse_date(value: Any) -> Optional[date]:
    """
    Parse a calendar date from a date object or one of DATE_FORMATS.

    Returns:
        date or None if parsing fails
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue

    return None


def parse_time(value: Any) -> Optional[time]:
    """
    Parse a wall-clock time from a time object or one of TIME_FORMATS.

    Returns:
        time (minute precision) or None if parsing fails
    """
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if not isinstance(value, str):
        return None

    value = value.strip()
    for fmt in TIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).time().replace(second=0)
        except ValueError:
            continue

    return None


def _is_present(raw: Mapping[str, Any], key: str) -> bool:
    value = raw.get(key)
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


class RuleNormalizer:
    """Turns the loosely-typed stored rule into a RecurrenceRule."""

    MIN_DAY_OF_MONTH = 1
    MAX_DAY_OF_MONTH = 31
    DEFAULT_INTERVAL = 1
    DEFAULT_DURATION_MINUTES = 0
    DEFAULT_TIMEZONE = 'UTC'

    def normalize(self, raw: Optional[Mapping[str, Any]]) -> NormalizeResult:
        """Validate ``raw``; see module-level ``normalize``."""
        if raw is None:
            return NormalizeResult(
                errors=[MissingField('recurrence_rule', 'Recurrence rule is required')]
            )
        if not isinstance(raw, Mapping):
            return NormalizeResult(
                errors=[InvalidFormat('recurrence_rule', 'Recurrence rule must be an object')]
            )

        errors: List[ValidationError] = []

        frequency = self._frequency(raw, errors)
        interval = self._positive_int(
            raw, 'interval', self.DEFAULT_INTERVAL, minimum=1, errors=errors
        )
        duration = self._positive_int(
            raw, 'duration_minutes', self.DEFAULT_DURATION_MINUTES,
            minimum=0, errors=errors
        )
        start_time = self._time(raw, errors)
        start_date = self._date(raw, 'start_date', errors)
        timezone = self._timezone(raw, errors)

        days_of_week = ()
        day_of_month = None
        if frequency in WEEKLY_FREQUENCIES:
            days_of_week = self._days_of_week(raw, errors)
        elif frequency == Frequency.MONTHLY:
            day_of_month = self._day_of_month(raw, start_date, errors)
        elif frequency == Frequency.YEARLY and not _is_present(raw, 'start_date'):
            errors.append(MissingField(
                'start_date', 'Yearly recurrence requires a start date'
            ))

        end_type, end_date, end_count = self._end_policy(raw, errors)

        if errors:
            logger.debug(f"Recurrence rule rejected with {len(errors)} error(s)")
            return NormalizeResult(errors=errors)

        rule = RecurrenceRule(
            frequency=frequency,
            interval=interval,
            time=start_time,
            duration_minutes=duration,
            end_type=end_type,
            days_of_week=days_of_week,
            day_of_month=day_of_month,
            end_date=end_date,
            end_count=end_count,
            start_date=start_date,
            timezone=timezone
        )
        return NormalizeResult(rule=rule)

    def _frequency(self, raw, errors) -> Optional[Frequency]:
        if not _is_present(raw, 'frequency'):
            errors.append(MissingField('frequency', 'Frequency is required'))
            return None

        value = raw['frequency']
        try:
            return Frequency(str(value).strip().lower())
        except ValueError:
            allowed = ', '.join(f.value for f in Frequency)
            errors.append(OutOfRange(
                'frequency', f"Frequency '{value}' is not one of: {allowed}"
            ))
            return None

    def _positive_int(self, raw, key, default, minimum, errors) -> Optional[int]:
        if not _is_present(raw, key):
            return default

        value = raw[key]
        # bool is an int subclass; true/false is never a count
        if isinstance(value, bool):
            errors.append(InvalidFormat(key, f"{key} must be an integer"))
            return None
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(InvalidFormat(key, f"{key} must be an integer"))
            return None
        if isinstance(value, float) and value != number:
            errors.append(InvalidFormat(key, f"{key} must be a whole number"))
            return None

        if number < minimum:
            errors.append(OutOfRange(key, f"{key} must be at least {minimum}"))
            return None
        return number

    def _time(self, raw, errors) -> Optional[time]:
        if not _is_present(raw, 'time'):
            errors.append(MissingField('time', 'Start time is required'))
            return None

        parsed = parse_time(raw['time'])
        if parsed is None:
            errors.append(InvalidFormat(
                'time', f"Invalid time '{raw['time']}', expected HH:MM"
            ))
        return parsed

    def _date(self, raw, key, errors) -> Optional[date]:
        if not _is_present(raw, key):
            return None

        parsed = parse_date(raw[key])
        if parsed is None:
            errors.append(InvalidFormat(
                key, f"Invalid date '{raw[key]}', expected YYYY-MM-DD"
            ))
        return parsed

    def _timezone(self, raw, errors) -> str:
        if not _is_present(raw, 'timezone'):
            return self.DEFAULT_TIMEZONE

        name = str(raw['timezone']).strip()
        try:
            ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            errors.append(InvalidFormat('timezone', f"Unknown timezone '{name}'"))
        return name

    def _days_of_week(self, raw, errors) -> tuple:
        value = raw.get('days_of_week')
        if value is None or (hasattr(value, '__len__') and len(value) == 0):
            errors.append(MissingField(
                'days_of_week',
                'Weekly recurrence requires at least one day of the week'
            ))
            return ()
        if isinstance(value, (str, bytes)) or not hasattr(value, '__iter__'):
            errors.append(InvalidFormat(
                'days_of_week', 'days_of_week must be a list of integers'
            ))
            return ()

        days = set()
        for day in value:
            if isinstance(day, bool) or not isinstance(day, int):
                errors.append(InvalidFormat(
                    'days_of_week', f"Invalid day of week '{day}'"
                ))
                continue
            if not 0 <= day <= 6:
                errors.append(OutOfRange(
                    'days_of_week',
                    f"Day of week {day} must be between 0 (Sunday) and 6 (Saturday)"
                ))
                continue
            days.add(day)

        return tuple(sorted(days))

    def _day_of_month(self, raw, start_date, errors) -> Optional[int]:
        if not _is_present(raw, 'day_of_month'):
            if start_date is not None:
                return start_date.day
            errors.append(MissingField(
                'day_of_month',
                'Monthly recurrence requires a day of the month or a start date'
            ))
            return None

        value = raw['day_of_month']
        if isinstance(value, bool):
            errors.append(InvalidFormat('day_of_month', 'day_of_month must be an integer'))
            return None
        try:
            day = int(value)
        except (TypeError, ValueError):
            errors.append(InvalidFormat('day_of_month', 'day_of_month must be an integer'))
            return None
        if isinstance(value, float) and value != day:
            errors.append(InvalidFormat('day_of_month', 'day_of_month must be a whole number'))
            return None

        if not self.MIN_DAY_OF_MONTH <= day <= self.MAX_DAY_OF_MONTH:
            errors.append(OutOfRange(
                'day_of_month',
                f"day_of_month must be between {self.MIN_DAY_OF_MONTH} "
                f"and {self.MAX_DAY_OF_MONTH}"
            ))
            return None
        return day

    def _end_policy(self, raw, errors):
        """Validate end_type together with end_date/end_count."""
        if not _is_present(raw, 'end_type'):
            errors.append(MissingField('end_type', 'End type is required'))
            return None, None, None

        try:
            end_type = EndType(str(raw['end_type']).strip().lower())
        except ValueError:
            allowed = ', '.join(e.value for e in EndType)
            errors.append(OutOfRange(
                'end_type', f"End type '{raw['end_type']}' is not one of: {allowed}"
            ))
            return None, None, None

        has_date = _is_present(raw, 'end_date')
        has_count = _is_present(raw, 'end_count')
        end_date = None
        end_count = None

        if end_type == EndType.DATE:
            if has_count:
                errors.append(ContradictoryEndPolicy(
                    'end_count', 'end_count cannot be set when end_type is "date"'
                ))
            if not has_date:
                errors.append(MissingField(
                    'end_date', 'end_date is required when end_type is "date"'
                ))
            else:
                end_date = self._date(raw, 'end_date', errors)

        elif end_type == EndType.COUNT:
            if has_date:
                errors.append(ContradictoryEndPolicy(
                    'end_date', 'end_date cannot be set when end_type is "count"'
                ))
            if not has_count:
                errors.append(MissingField(
                    'end_count', 'end_count is required when end_type is "count"'
                ))
            else:
                end_count = self._positive_int(
                    raw, 'end_count', None, minimum=1, errors=errors
                )

        elif has_date or has_count:
            errors.append(ContradictoryEndPolicy(
                'end_type', 'end_date and end_count must be empty when end_type is "never"'
            ))

        return end_type, end_date, end_count
