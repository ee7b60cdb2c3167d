from __future__ import annotations

from datetime import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


PackingPolicy = Literal["queue_first", "fixed_first"]


class CalendarRules(BaseModel):
    """Static business-hour configuration for one barber."""

    model_config = ConfigDict(frozen=True)

    opening_time: time = Field(default=time(8, 0))
    closing_time: time = Field(default=time(17, 0))
    blocked_start: time = Field(default=time(12, 0), description="Start of the lunch break")
    blocked_end: time = Field(default=time(13, 0), description="End of the lunch break")
    buffer_minutes: int = Field(default=0, ge=0, description="Idle time between placed bookings")
    queue_capacity: int = Field(default=15, ge=1, description="Maximum active queue bookings per day")
    default_duration_minutes: int = Field(default=30, gt=0)
    packing_policy: PackingPolicy = Field(default="queue_first")

    @model_validator(mode="after")
    def _validate_hours(self) -> "CalendarRules":
        if self.opening_time >= self.closing_time:
            raise ValueError("opening_time must be earlier than closing_time")
        if self.blocked_start > self.blocked_end:
            raise ValueError("blocked_start must not be later than blocked_end")
        return self


class CalendarOverride(BaseModel):
    """Per-barber deviations from the default calendar rules."""

    opening_time: time | None = None
    closing_time: time | None = None
    blocked_start: time | None = None
    blocked_end: time | None = None
    buffer_minutes: int | None = Field(default=None, ge=0)
    queue_capacity: int | None = Field(default=None, ge=1)

    def apply(self, rules: CalendarRules) -> CalendarRules:
        changes = self.model_dump(exclude_none=True)
        if not changes:
            return rules
        return CalendarRules(**{**rules.model_dump(), **changes})
