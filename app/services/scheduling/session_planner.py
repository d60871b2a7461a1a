"""
Session planner.

Turns overlap slots into fixed-length session candidates, then composes
two-session weekly plans ranked by how close their spacing is to three days.
"""

from itertools import combinations

from app.models.domain.availability_domain import (
    MAX_PLAN_GAP,
    MIN_PLAN_GAP,
    OverlapSlot,
    SessionCandidate,
    WeeklyPlan,
)
from app.models.domain.coordination_errors import InvalidSlotError

DEFAULT_SESSION_HOURS = 2
DEFAULT_MAX_PLANS = 5


def candidates(
    slots: list[OverlapSlot], duration: int = DEFAULT_SESSION_HOURS
) -> list[SessionCandidate]:
    """
    Slide a duration-hour window across each slot in 1-hour steps.

    A slot of length L yields max(0, L - duration + 1) candidates.

    Raises:
        InvalidSlotError: if duration is not a positive integer
    """
    if isinstance(duration, bool) or not isinstance(duration, int) or duration <= 0:
        raise InvalidSlotError(
            f"Session duration must be a positive number of hours, got {duration!r}",
            error_code="invalid_duration",
        )

    result: list[SessionCandidate] = []
    for slot in slots:
        for start in range(slot.start, slot.end - duration + 1):
            result.append(SessionCandidate(day=slot.day, start=start, end=start + duration))
    return result


def plans(
    session_candidates: list[SessionCandidate], limit: int = DEFAULT_MAX_PLANS
) -> list[WeeklyPlan]:
    """
    Rank two-session plans over distinct days.

    Pairs whose day gap is 0 or above 5 are dropped. Score is |gap - 3|;
    ties go to the earlier day, then the earlier start hour.
    """
    ranked: list[WeeklyPlan] = []
    for a, b in combinations(session_candidates, 2):
        gap = abs(a.day_index - b.day_index)
        if gap < MIN_PLAN_GAP or gap > MAX_PLAN_GAP:
            continue
        ranked.append(WeeklyPlan.build(a, b))

    ranked.sort(key=WeeklyPlan.sort_key)
    return ranked[:limit]


def best_candidate(
    weekly_plans: list[WeeklyPlan], session_candidates: list[SessionCandidate]
) -> SessionCandidate | None:
    """Pick the session to auto-suggest: the best plan's first session, else the earliest fit."""
    if weekly_plans:
        return weekly_plans[0].first
    if session_candidates:
        return min(session_candidates, key=lambda c: (c.day_index, c.start))
    return None
