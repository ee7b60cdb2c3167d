from __future__ import annotations

from datetime import date, time
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from barberq.schemas.booking import BookingMode, BookingRecord, Priority
from barberq.schemas.calendar import CalendarRules


EventKind = Literal[
    "created",
    "status_changed",
    "rescheduled",
    "delay_propagated",
    "day_off",
]


class TimelineEntry(BaseModel):
    """A booking placed on the merged timeline. Rebuilt on every recompute."""

    model_config = ConfigDict(frozen=True)

    booking: BookingRecord
    projected_start: Optional[time] = None
    projected_end: Optional[time] = None
    timeline_position: int = Field(..., ge=1)
    wait_minutes: Optional[int] = None
    delay_minutes: int = Field(default=0, ge=0)
    is_overflow: bool = False
    can_start_now: bool = False

    @property
    def booking_id(self) -> str:
        return self.booking.booking_id

    @property
    def mode(self) -> BookingMode:
        return self.booking.mode


class TimelineSummary(BaseModel):
    total: int
    scheduled: int
    queue: int
    ongoing: int
    overflow: int
    booked_minutes: int
    average_wait_minutes: float
    current_booking_id: Optional[str] = None
    next_available_time: Optional[time] = None


class TimelineRequest(BaseModel):
    resource_id: int = Field(..., description="Barber identifier")
    booking_date: date


class TimelineResponse(BaseModel):
    resource_id: int
    booking_date: date
    generated_at: str
    rules: CalendarRules
    entries: List[TimelineEntry]
    summary: TimelineSummary


class Allocation(BaseModel):
    queue_position: int
    estimated_wait_minutes: int = 0
    shift_from: Optional[int] = Field(
        default=None,
        description="Active queue positions at or above this value must be incremented",
    )


class AllocationRequest(BaseModel):
    resource_id: int
    booking_date: date
    mode: BookingMode
    priority: Priority = Priority.normal
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    fixed_time: Optional[time] = Field(
        default=None, description="Only used to estimate the wait of a scheduled booking"
    )


class GapCandidate(BaseModel):
    kind: Literal["gap", "queue_join"]
    efficiency: float
    start: Optional[time] = None
    end: Optional[time] = None
    gap_start: Optional[time] = None
    gap_end: Optional[time] = None
    gap_minutes: Optional[int] = None
    queue_position: Optional[int] = None
    estimated_wait_minutes: Optional[int] = None
    description: str = ""


class GapSearchRequest(BaseModel):
    resource_id: int
    booking_date: date
    duration_minutes: int = Field(..., gt=0)


class GapSearchResponse(BaseModel):
    resource_id: int
    booking_date: date
    duration_minutes: int
    candidates: List[GapCandidate]


class ConflictCheckRequest(BaseModel):
    resource_id: int
    booking_date: date
    start: time
    duration_minutes: int = Field(..., gt=0)
    exclude_booking_id: Optional[str] = None


class ConflictCheckResponse(BaseModel):
    has_conflict: bool
    conflicting_booking_ids: List[str] = Field(default_factory=list)
    suggestions: List[GapCandidate] = Field(default_factory=list)


class DelayShift(BaseModel):
    booking_id: str
    old_time: time
    new_time: time
    customer_id: Optional[str] = None


class DelayRequest(BaseModel):
    resource_id: int
    booking_date: date
    delay_minutes: int = Field(..., gt=0)


class DelayResponse(BaseModel):
    adjusted_count: int
    shifts: List[DelayShift]


class TimelineEvent(BaseModel):
    """Broadcast to every subscriber of one barber and day."""

    event_kind: EventKind
    changed_booking: Optional[BookingRecord] = None
    timeline: TimelineResponse


class CustomerEvent(BaseModel):
    event_kind: EventKind
    booking: BookingRecord
