from __future__ import annotations

from datetime import time
from typing import Iterable, List, Optional

from barberq.engine.calendar import time_to_minutes
from barberq.schemas.booking import BookingMode, BookingRecord


def intervals_overlap(start: int, end: int, other_start: int, other_end: int) -> bool:
    """Half-open overlap test; intervals that only touch do not overlap."""
    return start < other_end and end > other_start


def conflicting_bookings(
    bookings: Iterable[BookingRecord],
    start: time,
    duration_minutes: int,
    *,
    exclude_id: Optional[str] = None,
) -> List[BookingRecord]:
    """Active scheduled bookings whose fixed interval overlaps the proposal.

    Queue bookings have no fixed time and never conflict.
    """
    proposed_start = time_to_minutes(start)
    proposed_end = proposed_start + duration_minutes
    conflicts: List[BookingRecord] = []
    for booking in bookings:
        if booking.mode != BookingMode.scheduled or not booking.is_active:
            continue
        if exclude_id is not None and booking.booking_id == exclude_id:
            continue
        other_start = time_to_minutes(booking.fixed_time)
        other_end = other_start + booking.duration_minutes
        if intervals_overlap(proposed_start, proposed_end, other_start, other_end):
            conflicts.append(booking)
    return conflicts


def has_conflict(
    bookings: Iterable[BookingRecord],
    start: time,
    duration_minutes: int,
    *,
    exclude_id: Optional[str] = None,
) -> bool:
    return bool(conflicting_bookings(bookings, start, duration_minutes, exclude_id=exclude_id))
