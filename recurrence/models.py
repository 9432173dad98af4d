"""Data models for recurring series scheduling."""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Frequency(str, Enum):
    """How often a recurrence rule repeats."""
    DAILY = 'daily'
    WEEKLY = 'weekly'
    BIWEEKLY = 'biweekly'
    MONTHLY = 'monthly'
    YEARLY = 'yearly'


class EndType(str, Enum):
    """Termination policy of a recurrence rule."""
    DATE = 'date'
    COUNT = 'count'
    NEVER = 'never'


class EventStatus(str, Enum):
    """Lifecycle status of an event instance (owned by the review workflow)."""
    DRAFT = 'draft'
    PENDING_REVIEW = 'pending_review'
    PUBLISHED = 'published'
    REJECTED = 'rejected'
    CANCELLED = 'cancelled'
    POSTPONED = 'postponed'


# Instances in these statuses do not count as sessions of a series
RETIRED_STATUSES = frozenset({EventStatus.CANCELLED, EventStatus.REJECTED})

WEEKLY_FREQUENCIES = frozenset({Frequency.WEEKLY, Frequency.BIWEEKLY})


@dataclass(frozen=True)
class RecurrenceRule:
    """Canonical, validated recurrence rule.

    Only ``normalize`` should build these; the generator trusts every
    field to already be consistent.
    """
    frequency: Frequency
    interval: int
    time: time
    duration_minutes: int
    end_type: EndType
    days_of_week: Tuple[int, ...] = ()
    day_of_month: Optional[int] = None
    end_date: Optional[date] = None
    end_count: Optional[int] = None
    start_date: Optional[date] = None
    timezone: str = 'UTC'


@dataclass(frozen=True)
class OccurrenceTimestamp:
    """One generated slot of a rule, before it is matched to a stored instance."""
    start: datetime
    end: datetime
    instance_date: date


@dataclass(frozen=True)
class EventInstance:
    """A persisted event belonging to a series (or standalone)."""
    event_id: str
    instance_date: date
    series_id: Optional[str] = None
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    series_sequence: Optional[int] = None
    status: EventStatus = EventStatus.DRAFT
    is_manual_override: bool = False

    @property
    def is_retired(self) -> bool:
        return self.status in RETIRED_STATUSES


@dataclass
class Series:
    """A group of event instances sharing one title and recurrence pattern."""
    series_id: str
    title: str
    total_sessions: Optional[int] = None
    start_date: Optional[date] = None
    recurrence_rule: Optional[Dict[str, Any]] = None
    timezone: str = 'UTC'


@dataclass(frozen=True)
class ValidationError:
    """Field-level problem found while normalizing a raw rule."""
    field: str
    message: str

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, str]:
        return {
            'type': self.error_type,
            'field': self.field,
            'message': self.message
        }


@dataclass(frozen=True)
class MissingField(ValidationError):
    """A field required by the frequency/end_type combination is absent."""


@dataclass(frozen=True)
class OutOfRange(ValidationError):
    """A value is outside its allowed range or set."""


@dataclass(frozen=True)
class ContradictoryEndPolicy(ValidationError):
    """end_date/end_count supplied inconsistently with end_type."""


@dataclass(frozen=True)
class InvalidFormat(ValidationError):
    """A value could not be parsed at all."""


@dataclass
class NormalizeResult:
    """Outcome of rule normalization: a rule, or the errors that prevented one."""
    rule: Optional[RecurrenceRule] = None
    errors: List[ValidationError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.rule is not None and not self.errors


@dataclass
class ReconcileResult:
    """Actionable diff between generated occurrences and stored instances."""
    to_create: List[OccurrenceTimestamp] = field(default_factory=list)
    to_retire: List[EventInstance] = field(default_factory=list)
    unchanged: List[EventInstance] = field(default_factory=list)


@dataclass
class SyncResult:
    """Result of applying a reconciliation plan to storage."""
    created: int
    retired: int
    resequenced: int
    errors: list[str]
