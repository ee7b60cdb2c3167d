from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, FrozenSet, List

from pydantic import ValidationError

from barberq.clients.notifications import NotificationClient
from barberq.engine import conflicting_bookings
from barberq.schemas.booking import (
    ACTIVE_STATUSES,
    BookingCreateRequest,
    BookingCreateResponse,
    BookingListRequest,
    BookingListResponse,
    BookingMode,
    BookingRecord,
    BookingStatus,
    DayOffRequest,
    DayOffResponse,
    RescheduleRequest,
    StatusUpdateRequest,
)
from barberq.schemas.calendar import CalendarRules
from barberq.services.exceptions import (
    BookingValidationError,
    CapacityError,
    ConflictError,
    NotFoundError,
)
from barberq.services.mock_store import DayOffRecord
from barberq.services.timeline import TimelineService

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.pending: frozenset(
        {BookingStatus.scheduled, BookingStatus.confirmed, BookingStatus.cancelled}
    ),
    BookingStatus.scheduled: frozenset(
        {
            BookingStatus.confirmed,
            BookingStatus.ongoing,
            BookingStatus.cancelled,
            BookingStatus.pending,
        }
    ),
    BookingStatus.confirmed: frozenset(
        {BookingStatus.ongoing, BookingStatus.cancelled, BookingStatus.pending}
    ),
    BookingStatus.ongoing: frozenset({BookingStatus.done, BookingStatus.cancelled}),
    BookingStatus.done: frozenset(),
    BookingStatus.cancelled: frozenset(),
}

RESCHEDULABLE_STATUSES = frozenset(
    {BookingStatus.pending, BookingStatus.scheduled, BookingStatus.confirmed}
)


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class BookingService:
    """Booking lifecycle for one shop: create, move through statuses, reschedule.

    Every successful write is followed by exactly one timeline recompute of
    the affected barber-day (two when a reschedule changes the day).
    """

    def __init__(
        self,
        client: NotificationClient,
        *,
        timeline: TimelineService,
    ) -> None:
        self._client = client
        self._timeline = timeline
        self._repository = timeline.bookings

    def _validate_date(self, booking_date: date) -> None:
        today = self._timeline.now().date()
        horizon = today + timedelta(days=self._timeline.settings.max_advance_days)
        if booking_date < today:
            raise BookingValidationError(f"Cannot book {booking_date.isoformat()}: date is in the past")
        if booking_date > horizon:
            raise BookingValidationError(
                f"Cannot book {booking_date.isoformat()}: bookings open up to {horizon.isoformat()}"
            )

    def _check_day_off(self, resource_id: int, booking_date: date) -> None:
        day_off = self._timeline.master_data.day_off_for(resource_id, booking_date)
        if day_off is not None:
            raise BookingValidationError(
                f"Barber {resource_id} is on {day_off.kind.value.replace('_', ' ')} "
                f"from {day_off.start_date.isoformat()} to {day_off.end_date.isoformat()}"
            )

    async def _get(self, booking_id: str) -> BookingRecord:
        record = await self._repository.get(booking_id)
        if record is None:
            raise NotFoundError(f"Booking '{booking_id}' not found")
        return record

    async def _suggest(
        self, resource_id: int, booking_date: date, duration_minutes: int
    ) -> List[object]:
        gaps = await self._timeline.find_gaps(resource_id, booking_date, duration_minutes)
        return list(gaps.candidates)

    def _check_capacity(self, active: List[BookingRecord], rules: CalendarRules) -> None:
        waiting = sum(1 for booking in active if booking.mode == BookingMode.queue)
        if waiting >= rules.queue_capacity:
            raise CapacityError(
                f"Queue is full: {waiting} of {rules.queue_capacity} places taken"
            )

    async def _notify_position_changes(
        self, before: List[BookingRecord], resource_id: int, booking_date: date
    ) -> None:
        previous = {booking.booking_id: booking.queue_position for booking in before}
        for booking in await self._repository.list_active(resource_id, booking_date):
            if booking.mode != BookingMode.queue or not booking.customer_id:
                continue
            old_position = previous.get(booking.booking_id)
            if old_position is None or old_position == booking.queue_position:
                continue
            await self._client.notify(
                booking.customer_id,
                "queue_position",
                {
                    "booking_id": booking.booking_id,
                    "old_position": old_position,
                    "new_position": booking.queue_position,
                    "change": f"position:{booking.queue_position}",
                },
            )

    async def create(self, request: BookingCreateRequest) -> BookingCreateResponse:
        logger.info(
            "Creating %s booking for barber %s on %s",
            request.mode.value,
            request.resource_id,
            request.booking_date.isoformat(),
        )
        rules = self._timeline.rules_for(request.resource_id)
        self._validate_date(request.booking_date)
        self._check_day_off(request.resource_id, request.booking_date)
        duration = self._timeline.resolve_duration(
            request.duration_minutes, request.service_id, rules
        )
        active = await self._repository.list_active(request.resource_id, request.booking_date)

        if request.mode == BookingMode.queue:
            self._check_capacity(active, rules)
        else:
            self._timeline.validate_fixed_time(request.fixed_time, duration, rules)
            conflicts = conflicting_bookings(active, request.fixed_time, duration)
            if conflicts:
                raise ConflictError(
                    f"{request.fixed_time.isoformat(timespec='minutes')} overlaps "
                    f"{', '.join(booking.booking_id for booking in conflicts)}",
                    await self._suggest(request.resource_id, request.booking_date, duration),
                )

        allocation = await self._timeline.allocate(
            request.resource_id,
            request.booking_date,
            request.mode,
            request.priority,
            duration_minutes=duration,
            fixed_time=request.fixed_time,
        )
        now = self._timeline.now()
        draft = {
            "resource_id": request.resource_id,
            "booking_date": request.booking_date,
            "mode": request.mode,
            "fixed_time": request.fixed_time,
            "queue_position": (
                allocation.queue_position if request.mode == BookingMode.queue else None
            ),
            "priority": request.priority,
            "duration_minutes": duration,
            "status": BookingStatus.pending,
            "created_at": now,
            "updated_at": now,
            "customer_id": request.customer_id,
            "customer_name": request.customer_name,
            "service_id": request.service_id,
            "notes": request.notes,
        }
        try:
            record = await self._repository.insert(draft, shift_from=allocation.shift_from)
        except ValidationError as exc:
            raise BookingValidationError("Booking failed validation", cause=exc) from exc

        await self._timeline.dispatcher.dispatch("created", record)
        if allocation.shift_from is not None:
            await self._notify_position_changes(active, record.resource_id, record.booking_date)

        if record.mode == BookingMode.queue:
            message = (
                f"Joined the queue at position {record.queue_position}, "
                f"about {allocation.estimated_wait_minutes} minutes of service ahead"
            )
        else:
            message = f"Booked for {record.fixed_time.isoformat(timespec='minutes')}"
        return BookingCreateResponse(
            status="created",
            booking=record,
            queue_position=record.queue_position,
            estimated_wait_minutes=allocation.estimated_wait_minutes,
            message=message,
        )

    async def update_status(self, request: StatusUpdateRequest) -> BookingRecord:
        record = await self._get(request.booking_id)
        if record.status == request.status:
            return record
        if not can_transition(record.status, request.status):
            raise BookingValidationError(
                f"Cannot move booking {record.booking_id} from "
                f"{record.status.value} to {request.status.value}"
            )
        logger.info(
            "Booking %s: %s -> %s",
            record.booking_id,
            record.status.value,
            request.status.value,
        )

        leaves_queue = (
            record.mode == BookingMode.queue and request.status not in ACTIVE_STATUSES
        )
        before = await self._repository.list_active(record.resource_id, record.booking_date)
        updated = await self._repository.update(
            record.booking_id, {"status": request.status}, renumber=leaves_queue
        )

        await self._timeline.dispatcher.dispatch("status_changed", updated)
        if updated.customer_id:
            await self._client.notify(
                updated.customer_id,
                "status_changed",
                {
                    "booking_id": updated.booking_id,
                    "status": updated.status.value,
                    "change": updated.status.value,
                },
            )
        if leaves_queue:
            await self._notify_position_changes(before, record.resource_id, record.booking_date)
        return updated

    async def cancel(self, booking_id: str) -> BookingRecord:
        return await self.update_status(
            StatusUpdateRequest(booking_id=booking_id, status=BookingStatus.cancelled)
        )

    async def reschedule(self, request: RescheduleRequest) -> BookingRecord:
        record = await self._get(request.booking_id)
        if record.status not in RESCHEDULABLE_STATUSES:
            raise BookingValidationError(
                f"Booking {record.booking_id} is {record.status.value} and cannot be rescheduled"
            )

        target_date = request.booking_date or record.booking_date
        self._validate_date(target_date)
        self._check_day_off(record.resource_id, target_date)
        rules = self._timeline.rules_for(record.resource_id)
        priority = request.priority or record.priority
        others = [
            booking
            for booking in await self._repository.list_active(record.resource_id, target_date)
            if booking.booking_id != record.booking_id
        ]

        if request.mode == BookingMode.scheduled:
            self._timeline.validate_fixed_time(request.fixed_time, record.duration_minutes, rules)
            conflicts = conflicting_bookings(
                others, request.fixed_time, record.duration_minutes
            )
            if conflicts:
                raise ConflictError(
                    f"{request.fixed_time.isoformat(timespec='minutes')} overlaps "
                    f"{', '.join(booking.booking_id for booking in conflicts)}",
                    await self._suggest(record.resource_id, target_date, record.duration_minutes),
                )
        else:
            self._check_capacity(others, rules)

        allocation = await self._timeline.allocate(
            record.resource_id,
            target_date,
            request.mode,
            priority,
            duration_minutes=record.duration_minutes,
            fixed_time=request.fixed_time,
            exclude_booking_id=record.booking_id,
        )
        changes: Dict[str, object] = {
            "booking_date": target_date,
            "mode": request.mode,
            "fixed_time": request.fixed_time if request.mode == BookingMode.scheduled else None,
            "queue_position": (
                allocation.queue_position if request.mode == BookingMode.queue else None
            ),
            "priority": priority,
            "status": BookingStatus.pending,
            "projected_start": None,
        }
        before = await self._repository.list_active(record.resource_id, record.booking_date)
        try:
            updated = await self._repository.update(
                record.booking_id,
                changes,
                shift_from=allocation.shift_from,
                renumber=record.mode == BookingMode.queue,
            )
        except ValidationError as exc:
            raise BookingValidationError("Reschedule failed validation", cause=exc) from exc
        logger.info(
            "Rescheduled booking %s to %s on %s",
            updated.booking_id,
            updated.mode.value,
            updated.booking_date.isoformat(),
        )

        await self._timeline.dispatcher.dispatch("rescheduled", updated, previous=record)
        if updated.customer_id:
            target = (
                updated.fixed_time.isoformat(timespec="minutes")
                if updated.mode == BookingMode.scheduled
                else f"queue:{updated.queue_position}"
            )
            await self._client.notify(
                updated.customer_id,
                "rescheduled",
                {
                    "booking_id": updated.booking_id,
                    "booking_date": updated.booking_date.isoformat(),
                    "change": f"{updated.booking_date.isoformat()}@{target}",
                },
            )
        if record.mode == BookingMode.queue or allocation.shift_from is not None:
            await self._notify_position_changes(
                [booking for booking in before if booking.booking_id != record.booking_id],
                record.resource_id,
                record.booking_date,
            )
            if target_date != record.booking_date:
                await self._notify_position_changes(others, record.resource_id, target_date)
        return updated

    async def mark_day_off(self, request: DayOffRequest) -> DayOffResponse:
        """Block a barber's dates and cancel the bookings that are not yet in the chair.

        Each affected day is recomputed once and every cancelled customer is
        told why.
        """
        self._timeline.rules_for(request.resource_id)
        end_date = request.end_date or request.start_date
        master_data = self._timeline.master_data
        existing = master_data.overlapping_day_off(request.resource_id, request.start_date, end_date)
        if existing is not None:
            raise ConflictError(
                f"Barber {request.resource_id} is already off from "
                f"{existing.start_date.isoformat()} to {existing.end_date.isoformat()}"
            )
        master_data.add_day_off(
            DayOffRecord(
                resource_id=request.resource_id,
                start_date=request.start_date,
                end_date=end_date,
                kind=request.kind,
                reason=request.reason,
            )
        )
        logger.info(
            "Barber %s marked %s from %s to %s",
            request.resource_id,
            request.kind.value,
            request.start_date.isoformat(),
            end_date.isoformat(),
        )

        cancelled: List[BookingRecord] = []
        for offset in range((end_date - request.start_date).days + 1):
            booking_date = request.start_date + timedelta(days=offset)
            affected = [
                booking
                for booking in await self._repository.list_active(request.resource_id, booking_date)
                if booking.status in RESCHEDULABLE_STATUSES
            ]
            if not affected:
                continue
            changed = [
                await self._repository.update(booking.booking_id, {"status": BookingStatus.cancelled})
                for booking in affected
            ]
            await self._repository.renumber_queue(request.resource_id, booking_date)
            await self._timeline.dispatcher.dispatch_day(
                "day_off", request.resource_id, booking_date, changed=changed
            )
            cancelled.extend(changed)

        for booking in cancelled:
            if not booking.customer_id:
                continue
            await self._client.notify(
                booking.customer_id,
                "day_off",
                {
                    "booking_id": booking.booking_id,
                    "booking_date": booking.booking_date.isoformat(),
                    "reason": request.reason,
                    "change": BookingStatus.cancelled.value,
                },
            )
        return DayOffResponse(
            resource_id=request.resource_id,
            start_date=request.start_date,
            end_date=end_date,
            kind=request.kind,
            reason=request.reason,
            cancelled_booking_ids=[booking.booking_id for booking in cancelled],
        )

    async def list(self, request: BookingListRequest) -> BookingListResponse:
        logger.info(
            "Listing bookings for barber %s on %s",
            request.resource_id,
            request.booking_date.isoformat(),
        )
        self._timeline.rules_for(request.resource_id)
        items = await self._repository.list_active(request.resource_id, request.booking_date)
        items.sort(key=lambda booking: (booking.created_at, booking.booking_id))
        return BookingListResponse(total=len(items), items=items)
