from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from typing import Dict, List, Optional

from barberq.schemas.booking import ACTIVE_STATUSES, BookingMode, BookingRecord, DayOffKind
from barberq.schemas.calendar import CalendarOverride

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _BaseRepository:
    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def _next_id(self) -> str:
        return f"{self._prefix}-{next(self._counter):05d}"


class ServiceRecord:
    def __init__(
        self,
        *,
        service_id: int,
        name: str,
        duration_minutes: int,
        price: float,
    ) -> None:
        self.service_id = int(service_id)
        self.name = name
        self.duration_minutes = duration_minutes
        self.price = price


class BarberRecord:
    def __init__(
        self,
        *,
        resource_id: int,
        name: str,
        calendar: CalendarOverride | None = None,
    ) -> None:
        self.resource_id = int(resource_id)
        self.name = name
        self.calendar = calendar or CalendarOverride()


class DayOffRecord:
    def __init__(
        self,
        *,
        resource_id: int,
        start_date: date,
        end_date: date,
        kind: DayOffKind = DayOffKind.day_off,
        reason: Optional[str] = None,
    ) -> None:
        self.resource_id = int(resource_id)
        self.start_date = start_date
        self.end_date = end_date
        self.kind = kind
        self.reason = reason

    def covers(self, booking_date: date) -> bool:
        return self.start_date <= booking_date <= self.end_date

    def overlaps(self, start_date: date, end_date: date) -> bool:
        return start_date <= self.end_date and end_date >= self.start_date


class MasterDataRepository:
    def __init__(self) -> None:
        self._barbers: Dict[int, BarberRecord] = {}
        self._services: Dict[int, ServiceRecord] = {}
        self._days_off: Dict[int, List[DayOffRecord]] = {}
        self._seed()

    def _seed(self) -> None:
        for service in [
            ServiceRecord(service_id=101, name="Classic Haircut", duration_minutes=30, price=150.0),
            ServiceRecord(service_id=102, name="Haircut & Beard", duration_minutes=45, price=250.0),
            ServiceRecord(service_id=103, name="Beard Trim", duration_minutes=20, price=100.0),
            ServiceRecord(service_id=104, name="Hair Color", duration_minutes=90, price=600.0),
            ServiceRecord(service_id=105, name="Kids Haircut", duration_minutes=25, price=120.0),
        ]:
            self._services[service.service_id] = service

        self.add_barber(BarberRecord(resource_id=1001, name="Marco Santos"))
        self.add_barber(BarberRecord(resource_id=1002, name="Jun Reyes"))
        self.add_barber(
            BarberRecord(
                resource_id=1003,
                name="Paolo Cruz",
                calendar=CalendarOverride(closing_time=time(15, 0)),
            )
        )

    def add_barber(self, record: BarberRecord) -> None:
        self._barbers[record.resource_id] = record

    def get_barber(self, resource_id: int) -> Optional[BarberRecord]:
        return self._barbers.get(int(resource_id))

    def get_service(self, service_id: int) -> Optional[ServiceRecord]:
        return self._services.get(int(service_id))

    def add_day_off(self, record: DayOffRecord) -> DayOffRecord:
        """Block a date range for one barber. Overlapping ranges are rejected."""
        existing = self.overlapping_day_off(record.resource_id, record.start_date, record.end_date)
        if existing is not None:
            raise ValueError(
                f"Barber {record.resource_id} is already off from "
                f"{existing.start_date.isoformat()} to {existing.end_date.isoformat()}"
            )
        self._days_off.setdefault(record.resource_id, []).append(record)
        return record

    def overlapping_day_off(
        self, resource_id: int, start_date: date, end_date: date
    ) -> Optional[DayOffRecord]:
        for record in self._days_off.get(int(resource_id), []):
            if record.overlaps(start_date, end_date):
                return record
        return None

    def day_off_for(self, resource_id: int, booking_date: date) -> Optional[DayOffRecord]:
        for record in self._days_off.get(int(resource_id), []):
            if record.covers(booking_date):
                return record
        return None


class BookingRepository(_BaseRepository):
    """In-memory booking store.

    Every public write holds one lock, so a queue shift or renumbering is
    applied together with the record change that caused it.
    """

    def __init__(self) -> None:
        super().__init__("BKG")
        self._bookings: Dict[str, BookingRecord] = {}
        self._lock = asyncio.Lock()

    def _queue_members(self, resource_id: int, booking_date: date) -> List[BookingRecord]:
        return [
            booking
            for booking in self._bookings.values()
            if booking.resource_id == resource_id
            and booking.booking_date == booking_date
            and booking.mode == BookingMode.queue
            and booking.status in ACTIVE_STATUSES
        ]

    def _shift(
        self,
        resource_id: int,
        booking_date: date,
        from_position: int,
        *,
        exclude_id: Optional[str] = None,
    ) -> int:
        moved = 0
        for booking in self._queue_members(resource_id, booking_date):
            if booking.booking_id == exclude_id or booking.queue_position < from_position:
                continue
            self._bookings[booking.booking_id] = booking.model_copy(
                update={"queue_position": booking.queue_position + 1, "updated_at": _utc_now()}
            )
            moved += 1
        return moved

    def _renumber(self, resource_id: int, booking_date: date) -> List[BookingRecord]:
        members = sorted(
            self._queue_members(resource_id, booking_date),
            key=lambda booking: (booking.queue_position, booking.created_at, booking.booking_id),
        )
        changed: List[BookingRecord] = []
        for position, booking in enumerate(members, start=1):
            if booking.queue_position == position:
                continue
            updated = booking.model_copy(update={"queue_position": position, "updated_at": _utc_now()})
            self._bookings[booking.booking_id] = updated
            changed.append(updated)
        return changed

    async def insert(
        self, draft: Dict[str, object], *, shift_from: Optional[int] = None
    ) -> BookingRecord:
        """Store a new booking, moving the queue down first when ``shift_from`` is set."""
        async with self._lock:
            record = BookingRecord(booking_id=self._next_id(), **draft)
            if shift_from is not None and record.mode == BookingMode.queue:
                moved = self._shift(record.resource_id, record.booking_date, shift_from)
                logger.info(
                    "Shifted %s queue bookings from position %s for barber %s",
                    moved,
                    shift_from,
                    record.resource_id,
                )
            self._bookings[record.booking_id] = record
            return record

    async def update(
        self,
        booking_id: str,
        changes: Dict[str, object],
        *,
        shift_from: Optional[int] = None,
        renumber: bool = False,
    ) -> BookingRecord:
        """Apply ``changes`` and re-validate the record.

        ``renumber`` compacts the queue the booking belonged to before the
        change.
        """
        async with self._lock:
            current = self._bookings.get(booking_id)
            if current is None:
                raise KeyError(f"Booking {booking_id} not found")
            updated = BookingRecord.model_validate(
                {**current.model_dump(), **changes, "updated_at": _utc_now()}
            )
            if shift_from is not None and updated.mode == BookingMode.queue:
                self._shift(
                    updated.resource_id,
                    updated.booking_date,
                    shift_from,
                    exclude_id=booking_id,
                )
            self._bookings[booking_id] = updated
            if renumber:
                self._renumber(current.resource_id, current.booking_date)
            return self._bookings[booking_id]

    async def shift_queue_positions(
        self, resource_id: int, booking_date: date, from_position: int
    ) -> int:
        async with self._lock:
            return self._shift(resource_id, booking_date, from_position)

    async def renumber_queue(self, resource_id: int, booking_date: date) -> List[BookingRecord]:
        async with self._lock:
            return self._renumber(resource_id, booking_date)

    async def list_active(self, resource_id: int, booking_date: date) -> List[BookingRecord]:
        return [
            booking
            for booking in self._bookings.values()
            if booking.resource_id == resource_id
            and booking.booking_date == booking_date
            and booking.status in ACTIVE_STATUSES
        ]

    async def get(self, booking_id: str) -> Optional[BookingRecord]:
        return self._bookings.get(booking_id)


@dataclass
class MockDataStore:
    master_data: MasterDataRepository
    bookings: BookingRepository


_mock_store: Optional[MockDataStore] = None


def get_mock_store() -> MockDataStore:
    global _mock_store
    if _mock_store is None:
        _mock_store = MockDataStore(
            master_data=MasterDataRepository(),
            bookings=BookingRepository(),
        )
    return _mock_store


def reset_mock_store() -> None:
    global _mock_store
    _mock_store = None
