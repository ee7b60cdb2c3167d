from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from barberq.clients.notifications import NotificationClient
from barberq.config import Settings
from barberq.engine import (
    allocate,
    build_timeline,
    conflicting_bookings,
    find_gaps,
    propagate_delay,
    summarize,
)
from barberq.engine.calendar import MINUTES_PER_DAY, clock_minutes, time_to_minutes
from barberq.schemas.booking import BookingMode, BookingRecord, Priority
from barberq.schemas.calendar import CalendarRules
from barberq.schemas.timeline import (
    Allocation,
    ConflictCheckRequest,
    ConflictCheckResponse,
    DelayResponse,
    GapSearchResponse,
    TimelineEntry,
    TimelineResponse,
)
from barberq.services.dispatcher import (
    RecomputeDispatcher,
    SubscriptionRegistry,
    get_subscription_registry,
)
from barberq.services.exceptions import BookingValidationError, NotFoundError
from barberq.services.mock_store import (
    BookingRepository,
    MasterDataRepository,
    get_mock_store,
)

logger = logging.getLogger(__name__)


class TimelineService:
    """Runs the timeline engine against the booking store for one barber-day."""

    def __init__(
        self,
        client: NotificationClient,
        settings: Settings,
        *,
        master_data: MasterDataRepository | None = None,
        bookings: BookingRepository | None = None,
        registry: SubscriptionRegistry | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        store = get_mock_store()
        self._client = client
        self._settings = settings
        self.master_data = master_data or store.master_data
        self.bookings = bookings or store.bookings
        self._clock = clock
        self.dispatcher = RecomputeDispatcher(
            registry or get_subscription_registry(), self.build
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    def now(self) -> datetime:
        if self._clock is not None:
            return self._clock()
        return datetime.now(ZoneInfo(self._settings.timezone))

    def rules_for(self, resource_id: int) -> CalendarRules:
        barber = self.master_data.get_barber(resource_id)
        if barber is None:
            raise NotFoundError(f"Barber '{resource_id}' not found")
        return barber.calendar.apply(self._settings.calendar_rules())

    def resolve_duration(
        self,
        duration_minutes: Optional[int],
        service_id: Optional[int],
        rules: CalendarRules,
    ) -> int:
        if duration_minutes is None and service_id is not None:
            service = self.master_data.get_service(service_id)
            if service is None:
                raise NotFoundError(f"Service '{service_id}' not found")
            duration_minutes = service.duration_minutes
        if duration_minutes is None:
            duration_minutes = rules.default_duration_minutes
        if duration_minutes <= 0:
            raise BookingValidationError("duration_minutes must be positive")
        if duration_minutes > self._settings.max_duration_minutes:
            raise BookingValidationError(
                f"duration_minutes cannot exceed {self._settings.max_duration_minutes}"
            )
        return duration_minutes

    def validate_fixed_time(
        self, fixed_time: time, duration_minutes: int, rules: CalendarRules
    ) -> None:
        """Reject a fixed time outside business hours or a service that runs past midnight."""
        if not rules.opening_time <= fixed_time < rules.closing_time:
            raise BookingValidationError(
                f"{fixed_time.isoformat(timespec='minutes')} is outside business hours "
                f"{rules.opening_time.isoformat(timespec='minutes')}-"
                f"{rules.closing_time.isoformat(timespec='minutes')}"
            )
        if time_to_minutes(fixed_time) + duration_minutes >= MINUTES_PER_DAY:
            raise BookingValidationError(
                f"A {duration_minutes}min service at "
                f"{fixed_time.isoformat(timespec='minutes')} would end after midnight"
            )

    async def entries(
        self, resource_id: int, booking_date: date
    ) -> tuple[CalendarRules, List[BookingRecord], List[TimelineEntry]]:
        rules = self.rules_for(resource_id)
        active = await self.bookings.list_active(resource_id, booking_date)
        return rules, active, build_timeline(active, rules, now=self.now())

    async def build(self, resource_id: int, booking_date: date) -> TimelineResponse:
        logger.info("Building timeline for barber %s on %s", resource_id, booking_date.isoformat())
        rules, _, entries = await self.entries(resource_id, booking_date)
        return TimelineResponse(
            resource_id=resource_id,
            booking_date=booking_date,
            generated_at=datetime.now(timezone.utc).isoformat(),
            rules=rules,
            entries=entries,
            summary=summarize(entries, rules),
        )

    async def has_conflict(
        self,
        resource_id: int,
        booking_date: date,
        start: time,
        duration_minutes: int,
        *,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        self.rules_for(resource_id)
        active = await self.bookings.list_active(resource_id, booking_date)
        return bool(
            conflicting_bookings(active, start, duration_minutes, exclude_id=exclude_booking_id)
        )

    async def check_conflict(self, request: ConflictCheckRequest) -> ConflictCheckResponse:
        self.rules_for(request.resource_id)
        active = await self.bookings.list_active(request.resource_id, request.booking_date)
        conflicts = conflicting_bookings(
            active,
            request.start,
            request.duration_minutes,
            exclude_id=request.exclude_booking_id,
        )
        if not conflicts:
            return ConflictCheckResponse(has_conflict=False)
        gaps = await self.find_gaps(
            request.resource_id, request.booking_date, request.duration_minutes
        )
        return ConflictCheckResponse(
            has_conflict=True,
            conflicting_booking_ids=[booking.booking_id for booking in conflicts],
            suggestions=gaps.candidates,
        )

    async def allocate(
        self,
        resource_id: int,
        booking_date: date,
        mode: BookingMode,
        priority: Priority = Priority.normal,
        *,
        duration_minutes: Optional[int] = None,
        fixed_time: Optional[time] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> Allocation:
        rules = self.rules_for(resource_id)
        duration = self.resolve_duration(duration_minutes, None, rules)
        if mode == BookingMode.scheduled and fixed_time is not None:
            self.validate_fixed_time(fixed_time, duration, rules)
        active = await self.bookings.list_active(resource_id, booking_date)
        if exclude_booking_id is not None:
            active = [booking for booking in active if booking.booking_id != exclude_booking_id]
        return allocate(
            active,
            resource_id=resource_id,
            booking_date=booking_date,
            mode=mode,
            priority=priority,
            duration_minutes=duration,
            rules=rules,
            now=self.now(),
            fixed_time=fixed_time,
        )

    async def find_gaps(
        self, resource_id: int, booking_date: date, duration_minutes: int
    ) -> GapSearchResponse:
        logger.info(
            "Searching %smin gaps for barber %s on %s",
            duration_minutes,
            resource_id,
            booking_date.isoformat(),
        )
        rules, active, entries = await self.entries(resource_id, booking_date)
        queue_option = allocate(
            active,
            resource_id=resource_id,
            booking_date=booking_date,
            mode=BookingMode.queue,
            priority=Priority.normal,
            duration_minutes=duration_minutes,
            rules=rules,
            now=self.now(),
        )
        return GapSearchResponse(
            resource_id=resource_id,
            booking_date=booking_date,
            duration_minutes=duration_minutes,
            candidates=find_gaps(entries, rules, duration_minutes, queue_option),
        )

    async def propagate_delay(
        self, resource_id: int, booking_date: date, delay_minutes: int
    ) -> DelayResponse:
        logger.info(
            "Propagating %smin delay for barber %s on %s",
            delay_minutes,
            resource_id,
            booking_date.isoformat(),
        )
        _, _, entries = await self.entries(resource_id, booking_date)
        try:
            shifts = propagate_delay(
                entries,
                delay_minutes,
                reference_minutes=clock_minutes(booking_date, self.now()),
            )
        except ValueError as exc:
            raise BookingValidationError(str(exc), cause=exc) from exc

        updated: List[BookingRecord] = []
        for shift in shifts:
            updated.append(
                await self.bookings.update(shift.booking_id, {"projected_start": shift.new_time})
            )

        if updated:
            await self.dispatcher.dispatch_day(
                "delay_propagated", resource_id, booking_date, changed=updated
            )

        for shift in shifts:
            if not shift.customer_id:
                continue
            await self._client.notify(
                shift.customer_id,
                "delay",
                {
                    "booking_id": shift.booking_id,
                    "old_time": shift.old_time.isoformat(timespec="minutes"),
                    "new_time": shift.new_time.isoformat(timespec="minutes"),
                    "change": shift.new_time.isoformat(timespec="minutes"),
                },
            )
        return DelayResponse(adjusted_count=len(shifts), shifts=shifts)
