import asyncio
import os
import sys
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from barberq.clients.notifications import NotificationClient
from barberq.config import Settings
from barberq.schemas.booking import (
    BookingCreateRequest,
    BookingListRequest,
    BookingMode,
    BookingStatus,
    DayOffKind,
    DayOffRequest,
    Priority,
    RescheduleRequest,
    StatusUpdateRequest,
)
from barberq.schemas.timeline import ConflictCheckRequest
from barberq.services.booking import BookingService
from barberq.services.dispatcher import get_subscription_registry, reset_subscription_registry
from barberq.services.exceptions import (
    BookingValidationError,
    CapacityError,
    ConflictError,
    NotFoundError,
)
from barberq.services.mock_store import get_mock_store, reset_mock_store
from barberq.services.timeline import TimelineService


MARCO = 1001
PAOLO = 1003
FIXED_NOW = datetime(2026, 3, 1, 18, 0, tzinfo=ZoneInfo("Asia/Manila"))
TOMORROW = date(2026, 3, 2)


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_mock_store()
    reset_subscription_registry()
    yield
    reset_mock_store()
    reset_subscription_registry()


def make_services(**overrides):
    settings = Settings(**overrides)
    client = NotificationClient(None, use_mock_data=True)
    timeline = TimelineService(client, settings, clock=lambda: FIXED_NOW)
    return client, timeline, BookingService(client, timeline=timeline)


def walk_in(customer_id=None, **kwargs) -> BookingCreateRequest:
    return BookingCreateRequest(
        resource_id=kwargs.pop("resource_id", MARCO),
        booking_date=kwargs.pop("booking_date", TOMORROW),
        mode=BookingMode.queue,
        customer_id=customer_id,
        **kwargs,
    )


def appointment(fixed: time, customer_id=None, **kwargs) -> BookingCreateRequest:
    return BookingCreateRequest(
        resource_id=kwargs.pop("resource_id", MARCO),
        booking_date=kwargs.pop("booking_date", TOMORROW),
        mode=BookingMode.scheduled,
        fixed_time=fixed,
        customer_id=customer_id,
        **kwargs,
    )


def queue_positions(booking_date=TOMORROW):
    bookings = asyncio.run(get_mock_store().bookings.list_active(MARCO, booking_date))
    return {
        booking.booking_id: booking.queue_position
        for booking in bookings
        if booking.mode == BookingMode.queue
    }


def test_create_queue_booking_persists_and_broadcasts() -> None:
    _, _, service = make_services()
    events = []
    get_subscription_registry().subscribe(MARCO, TOMORROW, events.append)

    response = asyncio.run(service.create(walk_in("cust-1", customer_name="Rico")))

    assert response.status == "created"
    assert response.booking.booking_id == "BKG-00001"
    assert response.booking.status == BookingStatus.pending
    assert response.queue_position == 1
    assert response.estimated_wait_minutes == 0
    assert response.booking.duration_minutes == 30
    assert len(events) == 1
    assert events[0].event_kind == "created"
    assert [entry.booking_id for entry in events[0].timeline.entries] == ["BKG-00001"]


def test_urgent_walk_in_jumps_ahead_and_others_are_told() -> None:
    client, _, service = make_services()
    first = asyncio.run(service.create(walk_in("cust-1"))).booking
    second = asyncio.run(service.create(walk_in("cust-2"))).booking

    urgent = asyncio.run(service.create(walk_in("cust-3", priority=Priority.urgent)))

    assert urgent.queue_position == 1
    assert queue_positions() == {
        urgent.booking.booking_id: 1,
        first.booking_id: 2,
        second.booking_id: 3,
    }
    moved = sorted(
        (item["user_id"], item["payload"]["new_position"])
        for item in client.outbox
        if item["template_kind"] == "queue_position"
    )
    assert moved == [("cust-1", 2), ("cust-2", 3)]


def test_service_catalog_sets_default_duration() -> None:
    _, _, service = make_services()

    response = asyncio.run(service.create(walk_in(service_id=104)))

    assert response.booking.duration_minutes == 90


def test_overlapping_appointment_is_rejected_with_suggestions() -> None:
    _, _, service = make_services()
    asyncio.run(service.create(appointment(time(9, 0))))

    with pytest.raises(ConflictError) as excinfo:
        asyncio.run(service.create(appointment(time(9, 15), duration_minutes=40)))

    suggestions = excinfo.value.suggestions
    assert suggestions[-1].kind == "queue_join"
    assert any(candidate.start == time(9, 30) for candidate in suggestions)


def test_touching_appointment_is_accepted() -> None:
    _, _, service = make_services()
    asyncio.run(service.create(appointment(time(9, 0))))

    response = asyncio.run(service.create(appointment(time(9, 30))))

    assert response.booking.fixed_time == time(9, 30)
    assert response.queue_position is None


def test_full_queue_raises_capacity_error() -> None:
    _, _, service = make_services(queue_capacity=2)
    asyncio.run(service.create(walk_in()))
    asyncio.run(service.create(walk_in()))

    with pytest.raises(CapacityError):
        asyncio.run(service.create(walk_in()))


@pytest.mark.parametrize("booking_date", [date(2026, 2, 28), date(2026, 4, 30)])
def test_dates_outside_booking_window_are_rejected(booking_date) -> None:
    _, _, service = make_services()

    with pytest.raises(BookingValidationError):
        asyncio.run(service.create(walk_in(booking_date=booking_date)))


@pytest.mark.parametrize("duration", [0, 300])
def test_duration_must_be_positive_and_bounded(duration) -> None:
    _, _, service = make_services()

    with pytest.raises(BookingValidationError):
        asyncio.run(service.create(walk_in(duration_minutes=duration)))


def test_unknown_barber_and_service_are_not_found() -> None:
    _, _, service = make_services()

    with pytest.raises(NotFoundError):
        asyncio.run(service.create(walk_in(resource_id=4040)))
    with pytest.raises(NotFoundError):
        asyncio.run(service.create(walk_in(service_id=999)))


def test_barber_calendar_override_applies() -> None:
    _, timeline, _ = make_services()

    assert timeline.rules_for(PAOLO).closing_time == time(15, 0)
    assert timeline.rules_for(MARCO).closing_time == time(17, 0)


def test_status_follows_allowed_transitions() -> None:
    client, _, service = make_services()
    booking = asyncio.run(service.create(walk_in("cust-1"))).booking

    with pytest.raises(BookingValidationError):
        asyncio.run(service.update_status(StatusUpdateRequest(booking_id=booking.booking_id, status=BookingStatus.ongoing)))

    for status in (BookingStatus.confirmed, BookingStatus.ongoing, BookingStatus.done):
        updated = asyncio.run(
            service.update_status(StatusUpdateRequest(booking_id=booking.booking_id, status=status))
        )
        assert updated.status == status

    with pytest.raises(BookingValidationError):
        asyncio.run(service.update_status(StatusUpdateRequest(booking_id=booking.booking_id, status=BookingStatus.pending)))

    changes = [item["payload"]["status"] for item in client.outbox if item["template_kind"] == "status_changed"]
    assert changes == ["confirmed", "ongoing", "done"]


def test_unknown_booking_status_update_is_not_found() -> None:
    _, _, service = make_services()

    with pytest.raises(NotFoundError):
        asyncio.run(service.update_status(StatusUpdateRequest(booking_id="BKG-99999", status=BookingStatus.cancelled)))


def test_cancelling_a_walk_in_renumbers_the_queue() -> None:
    _, _, service = make_services()
    ids = [asyncio.run(service.create(walk_in())).booking.booking_id for _ in range(3)]

    cancelled = asyncio.run(service.cancel(ids[0]))

    assert cancelled.status == BookingStatus.cancelled
    assert queue_positions() == {ids[1]: 1, ids[2]: 2}
    listed = asyncio.run(service.list(BookingListRequest(resource_id=MARCO, booking_date=TOMORROW)))
    assert listed.total == 2


def test_finished_walk_in_leaves_dense_queue() -> None:
    _, _, service = make_services()
    ids = [asyncio.run(service.create(walk_in())).booking.booking_id for _ in range(3)]

    for status in (BookingStatus.confirmed, BookingStatus.ongoing):
        asyncio.run(service.update_status(StatusUpdateRequest(booking_id=ids[1], status=status)))
    assert queue_positions() == {ids[0]: 1, ids[1]: 2, ids[2]: 3}

    asyncio.run(service.update_status(StatusUpdateRequest(booking_id=ids[1], status=BookingStatus.done)))
    assert queue_positions() == {ids[0]: 1, ids[2]: 2}


def test_reschedule_walk_in_to_appointment() -> None:
    client, _, service = make_services()
    ids = [asyncio.run(service.create(walk_in("cust-1"))).booking.booking_id for _ in range(2)]

    updated = asyncio.run(
        service.reschedule(
            RescheduleRequest(booking_id=ids[0], mode=BookingMode.scheduled, fixed_time=time(14, 0))
        )
    )

    assert updated.mode == BookingMode.scheduled
    assert updated.fixed_time == time(14, 0)
    assert updated.queue_position is None
    assert updated.status == BookingStatus.pending
    assert queue_positions() == {ids[1]: 1}
    assert any(item["template_kind"] == "rescheduled" for item in client.outbox)


def test_reschedule_ignores_own_slot_when_checking_conflicts() -> None:
    _, _, service = make_services()
    booking = asyncio.run(service.create(appointment(time(9, 0), duration_minutes=60))).booking
    asyncio.run(service.create(appointment(time(11, 0))))

    moved = asyncio.run(
        service.reschedule(
            RescheduleRequest(booking_id=booking.booking_id, mode=BookingMode.scheduled, fixed_time=time(9, 30))
        )
    )
    assert moved.fixed_time == time(9, 30)

    with pytest.raises(ConflictError):
        asyncio.run(
            service.reschedule(
                RescheduleRequest(booking_id=booking.booking_id, mode=BookingMode.scheduled, fixed_time=time(10, 30))
            )
        )


def test_reschedule_to_another_day_broadcasts_both_days() -> None:
    _, _, service = make_services()
    booking = asyncio.run(service.create(walk_in())).booking
    old_day, new_day = [], []
    registry = get_subscription_registry()
    registry.subscribe(MARCO, TOMORROW, old_day.append)
    registry.subscribe(MARCO, date(2026, 3, 3), new_day.append)

    moved = asyncio.run(
        service.reschedule(
            RescheduleRequest(booking_id=booking.booking_id, mode=BookingMode.queue, booking_date=date(2026, 3, 3))
        )
    )

    assert moved.booking_date == date(2026, 3, 3)
    assert moved.queue_position == 1
    assert old_day[0].timeline.entries == []
    assert [entry.booking_id for entry in new_day[0].timeline.entries] == [booking.booking_id]


def test_finished_booking_cannot_be_rescheduled() -> None:
    _, _, service = make_services()
    booking = asyncio.run(service.create(walk_in())).booking
    asyncio.run(service.cancel(booking.booking_id))

    with pytest.raises(BookingValidationError):
        asyncio.run(service.reschedule(RescheduleRequest(booking_id=booking.booking_id, mode=BookingMode.queue)))


def test_timeline_service_reports_conflicts_and_gaps() -> None:
    _, timeline, service = make_services()
    existing = asyncio.run(service.create(appointment(time(9, 0)))).booking

    assert asyncio.run(timeline.has_conflict(MARCO, TOMORROW, time(9, 10), 30)) is True
    assert asyncio.run(
        timeline.has_conflict(MARCO, TOMORROW, time(9, 10), 30, exclude_booking_id=existing.booking_id)
    ) is False

    result = asyncio.run(
        timeline.check_conflict(
            ConflictCheckRequest(resource_id=MARCO, booking_date=TOMORROW, start=time(8, 45), duration_minutes=30)
        )
    )
    assert result.has_conflict is True
    assert result.conflicting_booking_ids == [existing.booking_id]
    assert result.suggestions[-1].kind == "queue_join"

    gaps = asyncio.run(timeline.find_gaps(MARCO, TOMORROW, 40))
    assert [candidate.start for candidate in gaps.candidates[:3]] == [time(8, 0), time(9, 30), time(13, 0)]


def test_propagate_delay_persists_notifies_and_broadcasts_once() -> None:
    client, timeline, service = make_services()
    first = asyncio.run(service.create(appointment(time(9, 0), "cust-1"))).booking
    second = asyncio.run(service.create(appointment(time(10, 0), "cust-2"))).booking
    events = []
    get_subscription_registry().subscribe(MARCO, TOMORROW, events.append)

    result = asyncio.run(timeline.propagate_delay(MARCO, TOMORROW, 20))

    assert result.adjusted_count == 2
    store = get_mock_store().bookings
    assert asyncio.run(store.get(first.booking_id)).projected_start == time(9, 20)
    assert asyncio.run(store.get(second.booking_id)).projected_start == time(10, 20)
    delays = [item for item in client.outbox if item["template_kind"] == "delay"]
    assert [item["user_id"] for item in delays] == ["cust-1", "cust-2"]
    assert [event.event_kind for event in events] == ["delay_propagated"]

    # Repeating the same delay does not notify the same customers twice.
    asyncio.run(timeline.propagate_delay(MARCO, TOMORROW, 20))
    assert len([item for item in client.outbox if item["template_kind"] == "delay"]) == 2


def test_invalid_delay_is_a_validation_error() -> None:
    _, timeline, service = make_services(closing_time=time(23, 59), blocked_start=time(12, 0), blocked_end=time(13, 0))
    asyncio.run(service.create(appointment(time(23, 30), duration_minutes=20)))

    with pytest.raises(BookingValidationError):
        asyncio.run(timeline.propagate_delay(MARCO, TOMORROW, 45))


def test_allocate_previews_without_writing() -> None:
    _, timeline, service = make_services()
    asyncio.run(service.create(walk_in()))
    asyncio.run(service.create(walk_in()))

    allocation = asyncio.run(timeline.allocate(MARCO, TOMORROW, BookingMode.queue, Priority.urgent))

    assert allocation.queue_position == 1
    assert allocation.shift_from == 1
    assert allocation.estimated_wait_minutes == 0
    assert len(queue_positions()) == 2


def test_new_booking_is_stamped_with_the_service_clock() -> None:
    _, _, service = make_services()

    booking = asyncio.run(service.create(walk_in())).booking

    assert booking.created_at == FIXED_NOW
    assert booking.updated_at == FIXED_NOW


@pytest.mark.parametrize(
    "fixed, duration",
    [(time(7, 30), 30), (time(17, 0), 30), (time(23, 30), 60)],
)
def test_appointment_outside_business_hours_is_rejected(fixed, duration) -> None:
    _, _, service = make_services()

    with pytest.raises(BookingValidationError):
        asyncio.run(service.create(appointment(fixed, duration_minutes=duration)))
    assert asyncio.run(get_mock_store().bookings.list_active(MARCO, TOMORROW)) == []


def test_appointment_running_past_midnight_is_rejected() -> None:
    _, timeline, service = make_services(closing_time=time(23, 59))

    with pytest.raises(BookingValidationError):
        asyncio.run(service.create(appointment(time(23, 30), duration_minutes=30)))
    with pytest.raises(BookingValidationError):
        asyncio.run(
            timeline.allocate(
                MARCO,
                TOMORROW,
                BookingMode.scheduled,
                duration_minutes=45,
                fixed_time=time(23, 30),
            )
        )


def test_reschedule_outside_business_hours_is_rejected() -> None:
    _, _, service = make_services()
    booking = asyncio.run(service.create(walk_in())).booking

    with pytest.raises(BookingValidationError):
        asyncio.run(
            service.reschedule(
                RescheduleRequest(booking_id=booking.booking_id, mode=BookingMode.scheduled, fixed_time=time(19, 0))
            )
        )
    assert queue_positions() == {booking.booking_id: 1}


def test_day_off_cancels_open_bookings_and_blocks_new_ones() -> None:
    client, _, service = make_services()
    walk = asyncio.run(service.create(walk_in("cust-1"))).booking
    fixed = asyncio.run(service.create(appointment(time(9, 0), "cust-2"))).booking
    next_day = asyncio.run(service.create(walk_in("cust-3", booking_date=date(2026, 3, 3)))).booking
    events = []
    get_subscription_registry().subscribe(MARCO, TOMORROW, events.append)

    result = asyncio.run(
        service.mark_day_off(
            DayOffRequest(
                resource_id=MARCO,
                start_date=TOMORROW,
                end_date=date(2026, 3, 3),
                kind=DayOffKind.vacation,
                reason="Family trip",
            )
        )
    )

    assert result.cancelled_booking_ids == [walk.booking_id, fixed.booking_id, next_day.booking_id]
    store = get_mock_store().bookings
    for booking_id in result.cancelled_booking_ids:
        assert asyncio.run(store.get(booking_id)).status == BookingStatus.cancelled
    assert [event.event_kind for event in events] == ["day_off"]
    assert events[0].timeline.entries == []
    told = sorted(item["user_id"] for item in client.outbox if item["template_kind"] == "day_off")
    assert told == ["cust-1", "cust-2", "cust-3"]

    with pytest.raises(BookingValidationError):
        asyncio.run(service.create(walk_in(booking_date=date(2026, 3, 3))))
    assert asyncio.run(service.create(walk_in(booking_date=date(2026, 3, 4)))).queue_position == 1


def test_day_off_keeps_the_booking_in_the_chair() -> None:
    _, _, service = make_services()
    ids = [asyncio.run(service.create(walk_in())).booking.booking_id for _ in range(2)]
    for status in (BookingStatus.confirmed, BookingStatus.ongoing):
        asyncio.run(service.update_status(StatusUpdateRequest(booking_id=ids[1], status=status)))

    result = asyncio.run(service.mark_day_off(DayOffRequest(resource_id=MARCO, start_date=TOMORROW)))

    assert result.end_date == TOMORROW
    assert result.cancelled_booking_ids == [ids[0]]
    assert queue_positions() == {ids[1]: 1}


def test_overlapping_day_off_is_a_conflict() -> None:
    _, _, service = make_services()
    asyncio.run(service.mark_day_off(DayOffRequest(resource_id=MARCO, start_date=TOMORROW, end_date=date(2026, 3, 4))))

    with pytest.raises(ConflictError):
        asyncio.run(service.mark_day_off(DayOffRequest(resource_id=MARCO, start_date=date(2026, 3, 4))))
    with pytest.raises(NotFoundError):
        asyncio.run(service.mark_day_off(DayOffRequest(resource_id=4040, start_date=TOMORROW)))


def test_reschedule_onto_a_day_off_is_rejected() -> None:
    _, _, service = make_services()
    booking = asyncio.run(service.create(walk_in())).booking
    asyncio.run(
        service.mark_day_off(DayOffRequest(resource_id=MARCO, start_date=date(2026, 3, 3), kind=DayOffKind.sick_leave))
    )

    with pytest.raises(BookingValidationError):
        asyncio.run(
            service.reschedule(
                RescheduleRequest(booking_id=booking.booking_id, mode=BookingMode.queue, booking_date=date(2026, 3, 3))
            )
        )
    assert asyncio.run(get_mock_store().bookings.get(booking.booking_id)).booking_date == TOMORROW
