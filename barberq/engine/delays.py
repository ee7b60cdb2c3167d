from __future__ import annotations

from typing import List, Optional

from barberq.engine.calendar import minutes_to_time, time_to_minutes
from barberq.schemas.booking import BookingStatus
from barberq.schemas.timeline import DelayShift, TimelineEntry

FROZEN_STATUSES = frozenset({BookingStatus.ongoing, BookingStatus.done})


def propagate_delay(
    timeline: List[TimelineEntry],
    delay_minutes: int,
    *,
    reference_minutes: Optional[int],
) -> List[DelayShift]:
    """Push every not-yet-started entry back by ``delay_minutes``.

    ``reference_minutes`` is the clock on the booking day; ``None`` means the
    day has not begun and every placed entry moves. Overflow entries have no
    projected time and are left alone.
    """
    if delay_minutes <= 0:
        raise ValueError("delay_minutes must be positive")

    shifts: List[DelayShift] = []
    for entry in timeline:
        if entry.is_overflow or entry.projected_start is None:
            continue
        if entry.booking.status in FROZEN_STATUSES:
            continue
        start = time_to_minutes(entry.projected_start)
        if reference_minutes is not None and start <= reference_minutes:
            continue
        shifts.append(
            DelayShift(
                booking_id=entry.booking_id,
                old_time=entry.projected_start,
                new_time=minutes_to_time(start + delay_minutes),
                customer_id=entry.booking.customer_id,
            )
        )
    return shifts
