import os
import sys
from datetime import date, datetime, time, timezone

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import pytest

from barberq.engine.allocator import allocate
from barberq.engine.builder import build_timeline
from barberq.engine.calendar import time_to_minutes
from barberq.engine.gaps import QUEUE_JOIN_EFFICIENCY, find_gaps, free_intervals, gap_efficiency
from barberq.schemas.booking import BookingMode, BookingRecord, Priority
from barberq.schemas.calendar import CalendarRules


DAY = date(2026, 3, 2)
CREATED = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
EVENING_BEFORE = datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)
RULES = CalendarRules()


def scheduled(booking_id, fixed, duration=30):
    return BookingRecord(
        booking_id=booking_id,
        resource_id=1001,
        booking_date=DAY,
        mode=BookingMode.scheduled,
        fixed_time=fixed,
        duration_minutes=duration,
        created_at=CREATED,
    )


def search(bookings, required, rules=RULES):
    timeline = build_timeline(bookings, rules, now=EVENING_BEFORE)
    queue_option = allocate(
        bookings,
        resource_id=1001,
        booking_date=DAY,
        mode=BookingMode.queue,
        priority=Priority.normal,
        duration_minutes=required,
        rules=rules,
        now=EVENING_BEFORE,
    )
    return find_gaps(timeline, rules, required, queue_option)


def test_gap_efficiency_prefers_snug_fits() -> None:
    assert gap_efficiency(40, 40) == pytest.approx(1.0)
    assert gap_efficiency(60, 40) == pytest.approx(0.5667, abs=1e-4)
    assert gap_efficiency(150, 40) == pytest.approx(0.0467, abs=1e-4)
    assert gap_efficiency(30, 40) == 0.0
    assert gap_efficiency(0, 40) == 0.0


def test_forty_minute_request_around_single_booking() -> None:
    candidates = search([scheduled("S1", time(9, 0))], 40)

    assert [candidate.kind for candidate in candidates] == ["gap", "gap", "gap", "queue_join"]
    first, second, third, queue_join = candidates

    assert (first.start, first.end) == (time(8, 0), time(8, 40))
    assert (second.start, second.end) == (time(9, 30), time(10, 10))
    assert second.gap_end == time(12, 0)
    assert (third.start, third.gap_end) == (time(13, 0), time(17, 0))
    assert third.gap_minutes == 240

    efficiencies = [candidate.efficiency for candidate in candidates]
    assert efficiencies == sorted(efficiencies, reverse=True)
    assert queue_join.efficiency == QUEUE_JOIN_EFFICIENCY
    assert queue_join.queue_position == 1
    assert queue_join.estimated_wait_minutes == 0


def test_gaps_are_long_enough_and_avoid_lunch() -> None:
    bookings = [
        scheduled("S1", time(8, 20)),
        scheduled("S2", time(11, 0), duration=45),
        scheduled("S3", time(14, 0), duration=60),
    ]
    blocked = (time_to_minutes(RULES.blocked_start), time_to_minutes(RULES.blocked_end))

    for required in (15, 30, 50):
        for candidate in search(bookings, required):
            if candidate.kind == "queue_join":
                continue
            start = time_to_minutes(candidate.gap_start)
            end = time_to_minutes(candidate.gap_end)
            assert candidate.gap_minutes >= required
            assert end - start == candidate.gap_minutes
            assert end <= blocked[0] or start >= blocked[1]
            assert time_to_minutes(candidate.end) - time_to_minutes(candidate.start) == required


def test_results_are_capped_with_queue_option_kept_last() -> None:
    bookings = [
        scheduled(f"S{hour}", time(hour, 0))
        for hour in (9, 10, 11, 14, 15, 16)
    ]

    candidates = search(bookings, 20)

    assert len(candidates) == 5
    assert candidates[-1].kind == "queue_join"
    assert all(candidate.kind == "gap" for candidate in candidates[:-1])


def test_no_room_leaves_only_queue_option() -> None:
    rules = CalendarRules(closing_time=time(10, 0), blocked_start=time(12, 0), blocked_end=time(13, 0))
    bookings = [scheduled("S1", time(8, 0), duration=120)]

    candidates = search(bookings, 30, rules)

    assert [candidate.kind for candidate in candidates] == ["queue_join"]


def test_free_intervals_follow_projected_times() -> None:
    timeline = build_timeline([scheduled("S1", time(9, 0), duration=60)], RULES, now=EVENING_BEFORE)

    assert free_intervals(timeline, RULES) == [(480, 540), (600, 720), (780, 1020)]
