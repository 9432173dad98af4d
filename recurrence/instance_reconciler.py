"""Diffing of generated occurrences against stored event instances."""
import logging
from datetime import date, datetime
from typing import Dict, Iterable, Optional

from recurrence.models import (
    EventInstance,
    EventStatus,
    OccurrenceTimestamp,
    ReconcileResult,
)

logger = logging.getLogger(__name__)


def instance_sort_key(instance: EventInstance):
    """Chronological ordering key that is stable for identical inputs."""
    start = instance.start_datetime.isoformat() if instance.start_datetime else ''
    return (instance.instance_date, start, instance.event_id or '')


def reconcile(
    occurrences: Iterable[OccurrenceTimestamp],
    existing_instances: Iterable[EventInstance],
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None
) -> ReconcileResult:
    """
    Compare what a rule implies with what is already stored.

    Instances are matched to occurrences by calendar date. Manual overrides
    always land in ``unchanged`` and claim their date, so no occurrence is
    created on top of them. Non-override instances that the rule no longer
    produces are retired, except when they sit outside the generation
    window (the generator could not have produced them) or were already
    cancelled.

    A cancelled instance still holds its date. If a later rule produces
    that date again (say ``end_date`` is extended after a shortening
    retired the session), nothing is created there; the organizer
    reinstates the cancelled row instead of getting a second one.

    Args:
        occurrences: Output of ``generate`` for the window
        existing_instances: Stored instances of the series
        window_start: Start of the window the occurrences were generated for
        window_end: End of that window

    Returns:
        ReconcileResult with to_create, to_retire and unchanged
    """
    occurrences = sorted(occurrences, key=lambda occ: occ.start)
    existing = sorted(existing_instances, key=_match_priority)

    # Overrides claim their date no matter where the window lies
    override_dates = {
        instance.instance_date for instance in existing
        if instance.is_manual_override
    }

    generated_dates = {occ.instance_date for occ in occurrences}
    result = ReconcileResult()
    matched: Dict[date, EventInstance] = {}

    for instance in existing:
        if instance.is_manual_override:
            result.unchanged.append(instance)
        elif instance.instance_date in generated_dates:
            if instance.instance_date in matched or instance.instance_date in override_dates:
                # Duplicate row for a date that is already covered
                if instance.status == EventStatus.CANCELLED:
                    result.unchanged.append(instance)
                else:
                    result.to_retire.append(instance)
            else:
                matched[instance.instance_date] = instance
                result.unchanged.append(instance)
        elif instance.status == EventStatus.CANCELLED:
            result.unchanged.append(instance)
        elif not _in_window(instance, window_start, window_end):
            result.unchanged.append(instance)
        else:
            result.to_retire.append(instance)

    seen_dates = set()
    for occ in occurrences:
        if occ.instance_date in override_dates or occ.instance_date in matched:
            continue
        if occ.instance_date in seen_dates:
            continue
        seen_dates.add(occ.instance_date)
        result.to_create.append(occ)

    result.to_retire.sort(key=instance_sort_key)
    result.unchanged.sort(key=instance_sort_key)

    logger.info(
        f"Reconcile plan: {len(result.to_create)} to create, "
        f"{len(result.to_retire)} to retire, "
        f"{len(result.unchanged)} unchanged"
    )
    return result


def _match_priority(instance: EventInstance):
    """Order in which instances get to claim a date: live rows, then lowest sequence."""
    sequence = instance.series_sequence if instance.series_sequence is not None else float('inf')
    return (
        instance.instance_date,
        instance.status == EventStatus.CANCELLED,
        sequence,
        instance.event_id or ''
    )


def _comparable(instance: EventInstance, bound: datetime):
    """Pair the instance with a window bound at datetime precision when possible."""
    start = instance.start_datetime
    if start is not None and (start.tzinfo is None) == (bound.tzinfo is None):
        return start, bound
    return instance.instance_date, bound.date()


def _in_window(
    instance: EventInstance,
    window_start: Optional[datetime],
    window_end: Optional[datetime]
) -> bool:
    if window_start is not None:
        value, bound = _comparable(instance, window_start)
        if value < bound:
            return False
    if window_end is not None:
        value, bound = _comparable(instance, window_end)
        if value > bound:
            return False
    return True
