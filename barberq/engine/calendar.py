"""Clock arithmetic shared by the timeline engine.

All engine math runs on integer minutes since midnight of the booking day.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from barberq.schemas.calendar import CalendarRules

MINUTES_PER_DAY = 24 * 60


def time_to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def minutes_to_time(minutes: int) -> time:
    if minutes < 0 or minutes >= MINUTES_PER_DAY:
        raise ValueError(f"{minutes} minutes falls outside a single day")
    return time(minutes // 60, minutes % 60)


def format_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass(frozen=True)
class DayWindow:
    """Calendar rules resolved to minutes."""

    opening: int
    closing: int
    blocked_start: int
    blocked_end: int
    buffer: int

    @classmethod
    def from_rules(cls, rules: CalendarRules) -> "DayWindow":
        return cls(
            opening=time_to_minutes(rules.opening_time),
            closing=time_to_minutes(rules.closing_time),
            blocked_start=time_to_minutes(rules.blocked_start),
            blocked_end=time_to_minutes(rules.blocked_end),
            buffer=rules.buffer_minutes,
        )

    def in_blocked(self, minutes: int) -> bool:
        return self.blocked_start <= minutes < self.blocked_end

    def skip_blocked(self, minutes: int) -> int:
        return self.blocked_end if self.in_blocked(minutes) else minutes

    def fits(self, start: int, duration: int) -> bool:
        return start + duration <= self.closing

    def split_around_blocked(self, start: int, end: int) -> list[tuple[int, int]]:
        """Return the parts of ``[start, end)`` that avoid the blocked interval."""
        if end <= self.blocked_start or start >= self.blocked_end:
            return [(start, end)] if end > start else []
        pieces = []
        if start < self.blocked_start:
            pieces.append((start, self.blocked_start))
        if end > self.blocked_end:
            pieces.append((self.blocked_end, end))
        return pieces


def clock_minutes(booking_date: date, now: datetime) -> Optional[int]:
    """Minutes of ``now`` on the booking day.

    ``None`` means the day has not started yet, so every projected time on it
    is still ahead. A day that is already over reports the end of the day.
    """
    today = now.date()
    if today < booking_date:
        return None
    if today > booking_date:
        return MINUTES_PER_DAY
    return now.hour * 60 + now.minute
