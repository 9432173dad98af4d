"""Human-readable labels for recurrence rules and series sessions."""
from datetime import time
from typing import Optional, Union

from recurrence.models import WEEKLY_FREQUENCIES, Frequency, RecurrenceRule

DAY_OF_WEEK_LABELS = [
    'Sunday',
    'Monday',
    'Tuesday',
    'Wednesday',
    'Thursday',
    'Friday',
    'Saturday',
]

RECURRENCE_LABELS = {
    Frequency.DAILY: 'Every day',
    Frequency.WEEKLY: 'Every week',
    Frequency.BIWEEKLY: 'Every 2 weeks',
    Frequency.MONTHLY: 'Every month',
    Frequency.YEARLY: 'Every year',
}

UNIT_NAMES = {
    Frequency.DAILY: 'days',
    Frequency.WEEKLY: 'weeks',
    Frequency.MONTHLY: 'months',
    Frequency.YEARLY: 'years',
}


def ordinal(n: int) -> str:
    """1 -> '1st', 2 -> '2nd', 11 -> '11th', 23 -> '23rd'."""
    if 10 <= n % 100 <= 20:
        suffix = 'th'
    else:
        suffix = {1: 'st', 2: 'nd', 3: 'rd'}.get(n % 10, 'th')
    return f"{n}{suffix}"


def format_time_display(value: Union[time, str, None]) -> Optional[str]:
    """
    Format a wall-clock time for display.

    Example: "09:00" -> "9:00 AM", "17:30:00" -> "5:30 PM"
    """
    if value is None:
        return None
    if isinstance(value, str):
        try:
            hours, minutes = (int(part) for part in value.split(':')[:2])
        except ValueError:
            return None
    else:
        hours, minutes = value.hour, value.minute

    period = 'PM' if hours >= 12 else 'AM'
    display_hours = hours % 12 or 12
    return f"{display_hours}:{minutes:02d} {period}"


def format_duration(minutes: Optional[int]) -> Optional[str]:
    """120 -> '2 hours', 90 -> '1 hour 30 min', 45 -> '45 min'."""
    if not minutes:
        return None

    hours, rest = divmod(minutes, 60)
    parts = []
    if hours:
        parts.append(f"{hours} hour" if hours == 1 else f"{hours} hours")
    if rest:
        parts.append(f"{rest} min")
    return ' '.join(parts)


def format_session_label(sequence: Optional[int], total: Optional[int] = None) -> Optional[str]:
    """'Session 3 of 6', or 'Session 3' for open-ended series."""
    if sequence is None:
        return None
    if total:
        return f"Session {sequence} of {total}"
    return f"Session {sequence}"


def _join_days(days) -> str:
    names = [DAY_OF_WEEK_LABELS[d] for d in days]
    if len(names) == 1:
        return names[0]
    return ', '.join(names[:-1]) + ' and ' + names[-1]


def _weeks_between(rule: RecurrenceRule) -> int:
    return rule.interval * (2 if rule.frequency == Frequency.BIWEEKLY else 1)


def format_recurrence(rule: Optional[RecurrenceRule]) -> str:
    """
    Format a recurrence rule as a short sentence.

    Example: "Every Tuesday at 7:00 PM", "Monthly on the 31st at 6:00 PM"
    """
    if rule is None:
        return ''

    parts = []

    if rule.frequency in WEEKLY_FREQUENCIES and rule.days_of_week:
        weeks = _weeks_between(rule)
        days = _join_days(rule.days_of_week)
        if weeks == 1:
            parts.append(f"Every {days}")
        elif weeks == 2:
            parts.append(f"Every other {days}")
        else:
            parts.append(f"Every {weeks} weeks on {days}")
    elif rule.frequency == Frequency.MONTHLY and rule.day_of_month:
        if rule.interval == 1:
            parts.append(f"Monthly on the {ordinal(rule.day_of_month)}")
        else:
            parts.append(
                f"Every {rule.interval} months on the {ordinal(rule.day_of_month)}"
            )
    elif rule.interval > 1 and rule.frequency in UNIT_NAMES:
        parts.append(f"Every {rule.interval} {UNIT_NAMES[rule.frequency]}")
    else:
        parts.append(RECURRENCE_LABELS[rule.frequency])

    if rule.time is not None:
        parts.append(f"at {format_time_display(rule.time)}")

    return ' '.join(parts)
