from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class BookingMode(str, Enum):
    """How a booking is ordered on the day: by clock time or by queue position."""

    scheduled = "scheduled"
    queue = "queue"


class Priority(str, Enum):
    urgent = "urgent"
    vip = "vip"
    high = "high"
    normal = "normal"
    low = "low"


class BookingStatus(str, Enum):
    pending = "pending"
    scheduled = "scheduled"
    confirmed = "confirmed"
    ongoing = "ongoing"
    done = "done"
    cancelled = "cancelled"


ACTIVE_STATUSES = frozenset(
    {
        BookingStatus.pending,
        BookingStatus.scheduled,
        BookingStatus.confirmed,
        BookingStatus.ongoing,
    }
)

PRIORITY_WEIGHTS = {
    Priority.urgent: 0,
    Priority.vip: 0,
    Priority.high: 1,
    Priority.normal: 2,
    Priority.low: 3,
}


def priority_weight(priority: Priority) -> int:
    """Lower weight is served sooner within the queue."""
    return PRIORITY_WEIGHTS.get(priority, PRIORITY_WEIGHTS[Priority.normal])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BookingRecord(BaseModel):
    """One request for a barber's time on a given day.

    ``mode`` is the only thing that decides whether the booking is placed by
    ``fixed_time`` or by ``queue_position``; the other field must stay empty.
    """

    booking_id: str
    resource_id: int
    booking_date: date
    mode: BookingMode
    fixed_time: Optional[time] = None
    queue_position: Optional[int] = Field(default=None, ge=1)
    priority: Priority = Priority.normal
    duration_minutes: int = Field(..., gt=0)
    status: BookingStatus = BookingStatus.pending
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    service_id: Optional[int] = None
    notes: Optional[str] = None
    projected_start: Optional[time] = Field(
        default=None,
        description="Last projected start persisted by delay propagation",
    )

    @model_validator(mode="after")
    def _validate_mode_fields(self) -> "BookingRecord":
        if self.mode == BookingMode.scheduled:
            if self.fixed_time is None:
                raise ValueError("fixed_time is required for scheduled bookings")
            if self.queue_position is not None:
                raise ValueError("queue_position must be empty for scheduled bookings")
        else:
            if self.queue_position is None:
                raise ValueError("queue_position is required for queue bookings")
            if self.fixed_time is not None:
                raise ValueError("fixed_time must be empty for queue bookings")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class BookingCreateRequest(BaseModel):
    resource_id: int = Field(..., description="Barber identifier")
    booking_date: date
    mode: BookingMode
    fixed_time: Optional[time] = Field(
        default=None, description="Clock time, only for scheduled bookings"
    )
    priority: Priority = Priority.normal
    duration_minutes: Optional[int] = Field(
        default=None,
        description="Defaults to the service duration, then to the calendar default",
    )
    service_id: Optional[int] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _validate_mode_fields(self) -> "BookingCreateRequest":
        if self.mode == BookingMode.scheduled and self.fixed_time is None:
            raise ValueError("fixed_time is required for scheduled bookings")
        if self.mode == BookingMode.queue and self.fixed_time is not None:
            raise ValueError("fixed_time must be empty for queue bookings")
        return self


class BookingCreateResponse(BaseModel):
    status: str
    booking: BookingRecord
    queue_position: Optional[int] = None
    estimated_wait_minutes: int = 0
    message: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    booking_id: str
    status: BookingStatus


class RescheduleRequest(BaseModel):
    booking_id: str
    mode: BookingMode
    fixed_time: Optional[time] = None
    booking_date: Optional[date] = Field(
        default=None, description="New date; keeps the current date when omitted"
    )
    priority: Optional[Priority] = None

    @model_validator(mode="after")
    def _validate_mode_fields(self) -> "RescheduleRequest":
        if self.mode == BookingMode.scheduled and self.fixed_time is None:
            raise ValueError("fixed_time is required for scheduled bookings")
        if self.mode == BookingMode.queue and self.fixed_time is not None:
            raise ValueError("fixed_time must be empty for queue bookings")
        return self


class BookingListRequest(BaseModel):
    resource_id: int
    booking_date: date


class BookingListResponse(BaseModel):
    total: int
    items: List[BookingRecord]


class DayOffKind(str, Enum):
    day_off = "day_off"
    sick_leave = "sick_leave"
    vacation = "vacation"


class DayOffRequest(BaseModel):
    resource_id: int = Field(..., description="Barber identifier")
    start_date: date
    end_date: Optional[date] = Field(
        default=None, description="Last blocked date; a single day when omitted"
    )
    kind: DayOffKind = DayOffKind.day_off
    reason: Optional[str] = None

    @model_validator(mode="after")
    def _validate_range(self) -> "DayOffRequest":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date cannot be before start_date")
        return self


class DayOffResponse(BaseModel):
    resource_id: int
    start_date: date
    end_date: date
    kind: DayOffKind
    reason: Optional[str] = None
    cancelled_booking_ids: List[str] = Field(default_factory=list)
