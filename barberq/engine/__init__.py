"""Pure timeline engine: every function works on a snapshot of bookings."""

from barberq.engine.allocator import SCHEDULED_POSITION_SENTINEL, allocate
from barberq.engine.builder import build_timeline, summarize
from barberq.engine.conflicts import conflicting_bookings, has_conflict
from barberq.engine.delays import propagate_delay
from barberq.engine.gaps import find_gaps, gap_efficiency

__all__ = [
    "SCHEDULED_POSITION_SENTINEL",
    "allocate",
    "build_timeline",
    "conflicting_bookings",
    "find_gaps",
    "gap_efficiency",
    "has_conflict",
    "propagate_delay",
    "summarize",
]
