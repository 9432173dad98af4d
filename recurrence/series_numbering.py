"""Display sequence numbers ("Session 3 of 6") for series instances."""
import logging
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional

from recurrence.instance_reconciler import instance_sort_key
from recurrence.models import EventInstance, Series

logger = logging.getLogger(__name__)


def renumber(instances: Iterable[EventInstance]) -> List[EventInstance]:
    """
    Assign series_sequence 1, 2, 3, ... in date order within each series.

    Retired instances (cancelled, rejected) and standalone events get no
    sequence. The input is not modified; a new list of instances is
    returned, grouped by series in first-seen order with each series'
    active instances first in chronological order, then its retired ones.
    Running it on its own output changes nothing.

    Args:
        instances: Instances of one or more series

    Returns:
        New list of instances with series_sequence assigned
    """
    by_series: Dict[Optional[str], List[EventInstance]] = {}
    for instance in instances:
        by_series.setdefault(instance.series_id, []).append(instance)

    numbered: List[EventInstance] = []
    for series_id, members in by_series.items():
        members = sorted(members, key=instance_sort_key)
        if series_id is None:
            numbered.extend(_with_sequence(i, None) for i in members)
            continue

        active = [i for i in members if not i.is_retired]
        retired = [i for i in members if i.is_retired]
        numbered.extend(
            _with_sequence(instance, position)
            for position, instance in enumerate(active, start=1)
        )
        numbered.extend(_with_sequence(i, None) for i in retired)

    return numbered


def changed_sequences(
    before: Iterable[EventInstance],
    after: Iterable[EventInstance]
) -> List[EventInstance]:
    """Instances of ``after`` whose sequence differs from the same event_id in ``before``."""
    previous = {i.event_id: i.series_sequence for i in before}
    return [
        instance for instance in after
        if instance.event_id in previous
        and previous[instance.event_id] != instance.series_sequence
    ]


def sessions_remaining(
    series: Series,
    instances: Iterable[EventInstance],
    today: date
) -> Optional[int]:
    """
    Sessions left in a series: total_sessions minus sessions already held.

    Returns:
        Remaining count, or None for open-ended series
    """
    if series.total_sessions is None:
        return None

    elapsed = sum(
        1 for instance in instances
        if instance.series_id == series.series_id
        and not instance.is_retired
        and instance.instance_date < today
    )
    return max(0, series.total_sessions - elapsed)


def _with_sequence(instance: EventInstance, sequence: Optional[int]) -> EventInstance:
    if instance.series_sequence == sequence:
        return instance
    return replace(instance, series_sequence=sequence)
