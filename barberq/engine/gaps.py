from __future__ import annotations

from typing import List, Tuple

from barberq.engine.calendar import (
    DayWindow,
    format_minutes,
    minutes_to_time,
    time_to_minutes,
)
from barberq.schemas.booking import BookingMode
from barberq.schemas.calendar import CalendarRules
from barberq.schemas.timeline import Allocation, GapCandidate, TimelineEntry

WASTE_PENALTY = 0.3
# Below the lowest score a real gap can reach (-WASTE_PENALTY).
QUEUE_JOIN_EFFICIENCY = -0.5
MAX_CANDIDATES = 5


def gap_efficiency(gap_minutes: int, required_minutes: int) -> float:
    """Score how well a request uses a gap; a snug fit scores close to 1."""
    if gap_minutes <= 0 or gap_minutes < required_minutes:
        return 0.0
    utilization = required_minutes / gap_minutes
    waste = (gap_minutes - required_minutes) / gap_minutes
    return utilization - WASTE_PENALTY * waste


def free_intervals(timeline: List[TimelineEntry], rules: CalendarRules) -> List[Tuple[int, int]]:
    """Free time around the placed scheduled bookings, lunch break removed."""
    window = DayWindow.from_rules(rules)
    scheduled = sorted(
        (
            entry
            for entry in timeline
            if entry.mode == BookingMode.scheduled and not entry.is_overflow
        ),
        key=lambda entry: (time_to_minutes(entry.projected_start), entry.timeline_position),
    )

    raw: List[Tuple[int, int]] = []
    previous_end = window.opening
    for entry in scheduled:
        start = time_to_minutes(entry.projected_start)
        if start > previous_end:
            raw.append((previous_end, min(start, window.closing)))
        previous_end = max(previous_end, time_to_minutes(entry.projected_end))
    if previous_end < window.closing:
        raw.append((previous_end, window.closing))

    intervals: List[Tuple[int, int]] = []
    for start, end in raw:
        intervals.extend(window.split_around_blocked(start, end))
    return intervals


def find_gaps(
    timeline: List[TimelineEntry],
    rules: CalendarRules,
    required_minutes: int,
    queue_allocation: Allocation,
) -> List[GapCandidate]:
    """Rank the windows a new request of ``required_minutes`` could use.

    The queue option is always part of the answer and always ranks last.
    """
    candidates: List[GapCandidate] = []
    for start, end in free_intervals(timeline, rules):
        gap_minutes = end - start
        if gap_minutes < required_minutes:
            continue
        candidates.append(
            GapCandidate(
                kind="gap",
                efficiency=round(gap_efficiency(gap_minutes, required_minutes), 4),
                start=minutes_to_time(start),
                end=minutes_to_time(start + required_minutes),
                gap_start=minutes_to_time(start),
                gap_end=minutes_to_time(end),
                gap_minutes=gap_minutes,
                description=(
                    f"Available {gap_minutes}min window "
                    f"{format_minutes(start)}-{format_minutes(end)}"
                ),
            )
        )

    candidates.sort(key=lambda candidate: (-candidate.efficiency, candidate.start))
    ranked = candidates[: MAX_CANDIDATES - 1]
    ranked.append(
        GapCandidate(
            kind="queue_join",
            efficiency=QUEUE_JOIN_EFFICIENCY,
            queue_position=queue_allocation.queue_position,
            estimated_wait_minutes=queue_allocation.estimated_wait_minutes,
            description=f"Join queue at position #{queue_allocation.queue_position}",
        )
    )
    return ranked
