"""Merge scheduled and queue bookings into one projected timeline.

The default ``queue_first`` policy packs walk-ins from opening time before it
places fixed-time bookings, so a busy queue pushes scheduled customers later
than their promised time. ``fixed_first`` only lets walk-ins use the free time
ahead of each fixed booking.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, time
from typing import Deque, Iterable, List, Optional

from barberq.engine.calendar import (
    DayWindow,
    clock_minutes,
    format_minutes,
    minutes_to_time,
    time_to_minutes,
)
from barberq.schemas.booking import (
    BookingMode,
    BookingRecord,
    BookingStatus,
    priority_weight,
)
from barberq.schemas.calendar import CalendarRules
from barberq.schemas.timeline import TimelineEntry, TimelineSummary

logger = logging.getLogger(__name__)


def scheduled_sort_key(booking: BookingRecord):
    return (time_to_minutes(booking.fixed_time), booking.created_at, booking.booking_id)


def queue_sort_key(booking: BookingRecord):
    return (
        priority_weight(booking.priority),
        booking.queue_position,
        booking.created_at,
        booking.booking_id,
    )


class _TimelineAssembler:
    def __init__(self, window: DayWindow, reference: Optional[int]) -> None:
        self.window = window
        self.reference = reference
        self.cursor = window.opening
        self.entries: List[TimelineEntry] = []

    @property
    def _next_position(self) -> int:
        return len(self.entries) + 1

    def _queue_wait(self, start: int) -> int:
        if self.reference is None:
            return max(0, start - self.window.opening)
        return max(0, start - self.reference)

    def place_queue(self, booking: BookingRecord, start: int) -> None:
        end = start + booking.duration_minutes
        self.entries.append(
            TimelineEntry(
                booking=booking,
                projected_start=minutes_to_time(start),
                projected_end=minutes_to_time(end),
                timeline_position=self._next_position,
                wait_minutes=self._queue_wait(start),
                can_start_now=True,
            )
        )
        self.cursor = end + self.window.buffer

    def place_scheduled(self, booking: BookingRecord) -> None:
        fixed = time_to_minutes(booking.fixed_time)
        start = max(self.cursor, fixed)
        delay = start - fixed
        end = start + booking.duration_minutes
        if delay:
            logger.debug(
                "Scheduled booking %s pushed from %s to %s",
                booking.booking_id,
                format_minutes(fixed),
                format_minutes(start),
            )
        self.entries.append(
            TimelineEntry(
                booking=booking,
                projected_start=minutes_to_time(start),
                projected_end=minutes_to_time(end),
                timeline_position=self._next_position,
                wait_minutes=delay,
                delay_minutes=delay,
                can_start_now=self.cursor >= fixed,
            )
        )
        self.cursor = self.window.skip_blocked(end + self.window.buffer)

    def emit_overflow(self, booking: BookingRecord) -> None:
        logger.debug("Queue booking %s overflows closing time", booking.booking_id)
        self.entries.append(
            TimelineEntry(
                booking=booking,
                timeline_position=self._next_position,
                is_overflow=True,
            )
        )

    def pack_queue(self, pending: Deque[BookingRecord], *, limit: Optional[int] = None) -> None:
        """Place queue bookings at the cursor until one does not fit.

        With ``limit`` a booking must also end by that minute, which is how
        walk-ins are slotted in front of a fixed booking.
        """
        while pending and self.cursor < self.window.closing:
            booking = pending[0]
            start = self.window.skip_blocked(self.cursor)
            end = start + booking.duration_minutes
            if end > self.window.closing or (limit is not None and end > limit):
                break
            self.place_queue(booking, start)
            pending.popleft()

    def drain_queue(self, pending: Deque[BookingRecord]) -> None:
        """Place what still fits and mark everything else as overflow."""
        while pending:
            booking = pending.popleft()
            start = self.window.skip_blocked(self.cursor)
            if start < self.window.closing and self.window.fits(start, booking.duration_minutes):
                self.place_queue(booking, start)
            else:
                self.emit_overflow(booking)


def build_timeline(
    bookings: Iterable[BookingRecord],
    rules: CalendarRules,
    *,
    now: datetime,
) -> List[TimelineEntry]:
    """Project start and end times for every active booking of one barber-day.

    ``bookings`` must all belong to the same barber and date. Inactive records
    are ignored. The result is ordered by ``timeline_position``.
    """
    active = [booking for booking in bookings if booking.is_active]
    if not active:
        return []

    scheduled = sorted(
        (booking for booking in active if booking.mode == BookingMode.scheduled),
        key=scheduled_sort_key,
    )
    pending: Deque[BookingRecord] = deque(
        sorted(
            (booking for booking in active if booking.mode == BookingMode.queue),
            key=queue_sort_key,
        )
    )

    window = DayWindow.from_rules(rules)
    assembler = _TimelineAssembler(window, clock_minutes(active[0].booking_date, now))

    if rules.packing_policy == "fixed_first":
        for booking in scheduled:
            assembler.pack_queue(pending, limit=time_to_minutes(booking.fixed_time))
            assembler.place_scheduled(booking)
    else:
        assembler.pack_queue(pending)
        for booking in scheduled:
            assembler.place_scheduled(booking)
    assembler.drain_queue(pending)

    logger.debug(
        "Built timeline with %s entries (%s scheduled, %s overflow)",
        len(assembler.entries),
        len(scheduled),
        sum(1 for entry in assembler.entries if entry.is_overflow),
    )
    return assembler.entries


def summarize(entries: List[TimelineEntry], rules: CalendarRules) -> TimelineSummary:
    window = DayWindow.from_rules(rules)
    placed = [entry for entry in entries if not entry.is_overflow]
    waits = [entry.wait_minutes for entry in placed if entry.wait_minutes is not None]
    current = next(
        (entry for entry in entries if entry.booking.status == BookingStatus.ongoing),
        None,
    )

    next_free = window.opening
    if placed:
        next_free = max(time_to_minutes(entry.projected_end) for entry in placed) + window.buffer
    next_free = window.skip_blocked(next_free)
    next_available: Optional[time] = (
        minutes_to_time(next_free) if next_free < window.closing else None
    )

    return TimelineSummary(
        total=len(entries),
        scheduled=sum(1 for entry in entries if entry.mode == BookingMode.scheduled),
        queue=sum(1 for entry in entries if entry.mode == BookingMode.queue),
        ongoing=sum(1 for entry in entries if entry.booking.status == BookingStatus.ongoing),
        overflow=len(entries) - len(placed),
        booked_minutes=sum(entry.booking.duration_minutes for entry in placed),
        average_wait_minutes=round(sum(waits) / len(waits), 1) if waits else 0.0,
        current_booking_id=current.booking_id if current else None,
        next_available_time=next_available,
    )
