"""Service package public API definitions.

The HTTP client imports ``barberq.services.exceptions``, which executes this
module first. The service implementations import that client in turn, so they
are resolved lazily on first access to keep start up free of circular imports.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "BookingService",
    "RecomputeDispatcher",
    "SubscriptionRegistry",
    "TimelineService",
]

_SERVICE_MODULES = {
    "BookingService": "booking",
    "RecomputeDispatcher": "dispatcher",
    "SubscriptionRegistry": "dispatcher",
    "TimelineService": "timeline",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .booking import BookingService as BookingService
    from .dispatcher import RecomputeDispatcher as RecomputeDispatcher
    from .dispatcher import SubscriptionRegistry as SubscriptionRegistry
    from .timeline import TimelineService as TimelineService
