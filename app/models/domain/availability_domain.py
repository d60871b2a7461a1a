# app/models/domain/availability_domain.py
"""
Availability Domain Models
Weekly availability calendars and the values derived from them
(overlap slots, session candidates, weekly plans).
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from app.models.domain.coordination_errors import InvalidSlotError

DAYS: tuple[str, ...] = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_DAY_ALIASES = {
    "monday": "mon",
    "tuesday": "tue",
    "wednesday": "wed",
    "thursday": "thu",
    "friday": "fri",
    "saturday": "sat",
    "sunday": "sun",
}

HOURS_PER_DAY = 24
MIN_PLAN_GAP = 1
MAX_PLAN_GAP = 5
IDEAL_PLAN_GAP = 3

Interval = tuple[int, int]


def normalize_day(day: str) -> str:
    """Return the canonical three-letter day, accepting full names in any case."""
    if not isinstance(day, str):
        raise InvalidSlotError(f"Day must be a string, got {type(day).__name__}")
    key = day.strip().lower()
    key = _DAY_ALIASES.get(key, key)
    if key not in DAYS:
        raise InvalidSlotError(f"Unknown day '{day}'", error_code="invalid_day")
    return key


def day_index(day: str) -> int:
    return DAYS.index(normalize_day(day))


def validate_slot(day: str, start: int, end: int) -> str:
    """
    Validate a half-open hour range on one day.

    Returns:
        The normalized day.

    Raises:
        InvalidSlotError: bad day, non-integer hours, hours outside [0, 24]
            or a non-positive duration.
    """
    normalized = normalize_day(day)
    for value in (start, end):
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidSlotError(f"Hours must be integers, got {value!r}", error_code="invalid_hour")
        if value < 0 or value > HOURS_PER_DAY:
            raise InvalidSlotError(f"Hour {value} outside [0, 24]", error_code="invalid_hour")
    if end <= start:
        raise InvalidSlotError(
            f"Slot {normalized} {start}-{end} has non-positive duration",
            error_code="invalid_duration",
        )
    return normalized


class WeeklyAvailability:
    """
    A user's declared weekly availability.

    Each day holds sorted, disjoint, half-open [start, end) hour intervals.
    Overlapping or touching intervals are merged on insert.
    """

    def __init__(self, intervals: Mapping[str, Iterable[Interval]] | None = None):
        self._days: dict[str, list[Interval]] = {}
        for day, ranges in (intervals or {}).items():
            for start, end in ranges:
                self.add(day, start, end)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, day: str, start: int, end: int) -> None:
        """Insert [start, end) on day, merging with any overlapping or adjacent interval."""
        day = validate_slot(day, start, end)
        merged: list[Interval] = []
        placed = False
        for cur_start, cur_end in self._days.get(day, []):
            if cur_end < start:
                merged.append((cur_start, cur_end))
            elif end < cur_start:
                if not placed:
                    merged.append((start, end))
                    placed = True
                merged.append((cur_start, cur_end))
            else:
                start = min(start, cur_start)
                end = max(end, cur_end)
        if not placed:
            merged.append((start, end))
        merged.sort()
        self._days[day] = merged

    def remove(self, day: str, start: int, end: int) -> None:
        """Subtract [start, end) from day, splitting intervals as needed."""
        day = validate_slot(day, start, end)
        remaining: list[Interval] = []
        for cur_start, cur_end in self._days.get(day, []):
            if cur_end <= start or cur_start >= end:
                remaining.append((cur_start, cur_end))
                continue
            if cur_start < start:
                remaining.append((cur_start, start))
            if cur_end > end:
                remaining.append((end, cur_end))
        if remaining:
            self._days[day] = remaining
        else:
            self._days.pop(day, None)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def intervals(self, day: str) -> list[Interval]:
        return list(self._days.get(normalize_day(day), []))

    def days(self) -> list[str]:
        """Days that carry at least one interval, in week order."""
        return [day for day in DAYS if self._days.get(day)]

    def contains(self, day: str, start: int, end: int) -> bool:
        """Check whether [start, end) lies inside a single declared interval."""
        day = validate_slot(day, start, end)
        return any(s <= start and end <= e for s, e in self._days.get(day, []))

    def total_hours(self) -> int:
        return sum(end - start for ranges in self._days.values() for start, end in ranges)

    def is_empty(self) -> bool:
        return not any(self._days.values())

    def copy(self) -> "WeeklyAvailability":
        clone = WeeklyAvailability()
        clone._days = {day: list(ranges) for day, ranges in self._days.items()}
        return clone

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, list[list[int]]]:
        """Convert to a JSON-friendly mapping, e.g. {"mon": [[18, 20]]}."""
        return {day: [[s, e] for s, e in self._days[day]] for day in self.days()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "WeeklyAvailability":
        availability = cls()
        for day, ranges in (data or {}).items():
            for item in ranges:
                if len(item) != 2:
                    raise InvalidSlotError(f"Interval {item!r} must have two hours")
                availability.add(day, item[0], item[1])
        return availability

    @classmethod
    def from_hour_sets(cls, hours_by_day: Mapping[str, Iterable[int]]) -> "WeeklyAvailability":
        """
        Build from per-hour selections such as {"mon": {18, 19}}.
        Each selected hour h becomes [h, h+1); consecutive hours merge.
        """
        availability = cls()
        for day, hours in hours_by_day.items():
            for hour in sorted(set(hours)):
                availability.add(day, hour, hour + 1)
        return availability

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WeeklyAvailability):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"WeeklyAvailability({self.to_dict()!r})"


@dataclass(frozen=True, slots=True)
class OverlapSlot:
    """Hour range on one day where both users are available."""

    day: str
    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start

    def contains(self, day: str, start: int, end: int) -> bool:
        return self.day == day and self.start <= start and end <= self.end

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day, "start": self.start, "end": self.end, "duration": self.duration}


@dataclass(frozen=True, slots=True)
class SessionCandidate:
    """Fixed-length session window that fits inside an overlap slot."""

    day: str
    start: int
    end: int

    @property
    def day_index(self) -> int:
        return DAYS.index(self.day)

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day, "start": self.start, "end": self.end}


@dataclass(frozen=True, slots=True)
class WeeklyPlan:
    """Two session candidates on distinct days, scored by spacing."""

    first: SessionCandidate
    second: SessionCandidate
    gap: int
    score: int

    @classmethod
    def build(cls, a: SessionCandidate, b: SessionCandidate) -> "WeeklyPlan":
        """
        Order the pair by day index and score it.

        Raises:
            InvalidSlotError: if the day gap lies outside [1, 5]
        """
        first, second = (a, b) if a.day_index <= b.day_index else (b, a)
        gap = second.day_index - first.day_index
        if gap < MIN_PLAN_GAP or gap > MAX_PLAN_GAP:
            raise InvalidSlotError(
                f"Day gap {gap} between {first.day} and {second.day} outside [1, 5]",
                error_code="invalid_plan_gap",
            )
        return cls(first=first, second=second, gap=gap, score=abs(gap - IDEAL_PLAN_GAP))

    def sort_key(self) -> tuple[int, int, int, int, int]:
        return (
            self.score,
            self.first.day_index,
            self.first.start,
            self.second.day_index,
            self.second.start,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessions": [self.first.to_dict(), self.second.to_dict()],
            "gap_days": self.gap,
            "score": self.score,
        }
