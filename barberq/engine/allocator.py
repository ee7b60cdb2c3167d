from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Iterable, List, Optional, Tuple

from barberq.engine.builder import build_timeline
from barberq.schemas.booking import (
    BookingMode,
    BookingRecord,
    BookingStatus,
    Priority,
)
from barberq.schemas.calendar import CalendarRules
from barberq.schemas.timeline import Allocation

# Scheduled bookings follow the clock, not the queue.
SCHEDULED_POSITION_SENTINEL = 999
CANDIDATE_BOOKING_ID = "__allocation_candidate__"


def max_queue_position(bookings: Iterable[BookingRecord]) -> int:
    positions = [
        booking.queue_position
        for booking in bookings
        if booking.mode == BookingMode.queue and booking.is_active
    ]
    return max(positions, default=0)


def allocate_position(
    bookings: Iterable[BookingRecord], mode: BookingMode, priority: Priority
) -> Tuple[int, Optional[int]]:
    """Return ``(position, shift_from)`` for a new booking.

    Urgent walk-ins are slotted one place ahead of the current tail and every
    active queue booking at or after that position has to move down by one.
    """
    if mode == BookingMode.scheduled:
        return SCHEDULED_POSITION_SENTINEL, None

    current_max = max_queue_position(bookings)
    if priority == Priority.urgent:
        position = max(1, current_max - 1)
        return position, position if current_max >= position else None
    return current_max + 1, None


def shifted(bookings: Iterable[BookingRecord], shift_from: Optional[int]) -> List[BookingRecord]:
    """Copies of ``bookings`` with the urgent-insertion shift applied."""
    if shift_from is None:
        return list(bookings)
    result = []
    for booking in bookings:
        if (
            booking.mode == BookingMode.queue
            and booking.is_active
            and booking.queue_position >= shift_from
        ):
            booking = booking.model_copy(update={"queue_position": booking.queue_position + 1})
        result.append(booking)
    return result


def estimate_wait(
    bookings: Iterable[BookingRecord],
    candidate: BookingRecord,
    rules: CalendarRules,
    *,
    now: datetime,
) -> int:
    """Minutes of service ahead of ``candidate`` once the day is packed.

    The ongoing booking is already in the chair and does not count. Neither
    do overflow entries, which never get a slot on the day.
    """
    others = [booking for booking in bookings if booking.booking_id != candidate.booking_id]
    timeline = build_timeline([*others, candidate], rules, now=now)
    total = 0
    for entry in timeline:
        if entry.booking_id == candidate.booking_id:
            break
        if entry.is_overflow or entry.booking.status == BookingStatus.ongoing:
            continue
        total += entry.booking.duration_minutes + rules.buffer_minutes
    return total


def allocate(
    bookings: Iterable[BookingRecord],
    *,
    resource_id: int,
    booking_date: date,
    mode: BookingMode,
    priority: Priority,
    duration_minutes: int,
    rules: CalendarRules,
    now: datetime,
    fixed_time: Optional[time] = None,
) -> Allocation:
    existing = [booking for booking in bookings if booking.is_active]
    position, shift_from = allocate_position(existing, mode, priority)

    if mode == BookingMode.scheduled and fixed_time is None:
        return Allocation(queue_position=position, estimated_wait_minutes=0)

    candidate = BookingRecord(
        booking_id=CANDIDATE_BOOKING_ID,
        resource_id=resource_id,
        booking_date=booking_date,
        mode=mode,
        fixed_time=fixed_time if mode == BookingMode.scheduled else None,
        queue_position=position if mode == BookingMode.queue else None,
        priority=priority,
        duration_minutes=duration_minutes,
        status=BookingStatus.pending,
        created_at=now if now.tzinfo else now.replace(tzinfo=timezone.utc),
    )
    wait = estimate_wait(shifted(existing, shift_from), candidate, rules, now=now)
    return Allocation(
        queue_position=position,
        estimated_wait_minutes=wait,
        shift_from=shift_from,
    )
