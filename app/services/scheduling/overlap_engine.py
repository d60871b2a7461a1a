"""
Overlap engine.
Intersects two weekly availability calendars day by day.
"""

from collections.abc import Iterable

from app.models.domain.availability_domain import (
    DAYS,
    Interval,
    OverlapSlot,
    WeeklyAvailability,
)

MIN_OVERLAP_HOURS = 1


def _intersect_day(left: list[Interval], right: list[Interval]) -> list[Interval]:
    """Two-pointer merge of two sorted, disjoint interval lists."""
    result: list[Interval] = []
    i = j = 0
    while i < len(left) and j < len(right):
        start = max(left[i][0], right[j][0])
        end = min(left[i][1], right[j][1])
        if start < end:
            result.append((start, end))
        # Advance whichever interval finishes first
        if left[i][1] < right[j][1]:
            i += 1
        else:
            j += 1
    return result


def intersect(
    a: WeeklyAvailability,
    b: WeeklyAvailability,
    min_hours: int = MIN_OVERLAP_HOURS,
) -> list[OverlapSlot]:
    """
    Compute per-day overlap between two calendars.

    Args:
        a: first user's availability
        b: second user's availability
        min_hours: shortest slot worth reporting

    Returns:
        Overlap slots ordered by day then start hour. Symmetric in a and b.
    """
    days = set(a.days()) | set(b.days())
    slots: list[OverlapSlot] = []
    for day in DAYS:
        if day not in days:
            continue
        for start, end in _intersect_day(a.intervals(day), b.intervals(day)):
            if end - start >= min_hours:
                slots.append(OverlapSlot(day=day, start=start, end=end))
    return slots


def slot_fits(slots: Iterable[OverlapSlot], day: str, start: int, end: int) -> bool:
    """Check whether [start, end) on day lies fully inside one overlap slot."""
    return any(slot.contains(day, start, end) for slot in slots)
