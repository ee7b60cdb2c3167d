"""Subscription registry and recompute-on-mutation broadcasting.

Every mutation of a barber's day triggers one full timeline rebuild which is
pushed to everyone watching that barber and day. Nothing is carried over from
the previous broadcast, so the last one a subscriber receives is the truth.
"""

from __future__ import annotations

import inspect
import itertools
import logging
import time
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

from barberq.schemas.booking import BookingRecord
from barberq.schemas.timeline import (
    CustomerEvent,
    EventKind,
    TimelineEvent,
    TimelineResponse,
)

logger = logging.getLogger(__name__)

TimelineHandler = Callable[[TimelineEvent], Union[Awaitable[None], None]]
CustomerHandler = Callable[[CustomerEvent], Union[Awaitable[None], None]]
TimelineBuilder = Callable[[int, date], Awaitable[TimelineResponse]]
Key = Tuple[int, date]


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    resource_id: int
    booking_date: date
    expires_at: Optional[float] = None

    @property
    def key(self) -> Key:
        return (self.resource_id, self.booking_date)


class SubscriptionRegistry:
    """Who is watching which barber-day, plus one channel per customer."""

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._counter = itertools.count(1)
        self._by_key: Dict[Key, Dict[str, Tuple[Subscription, TimelineHandler]]] = {}
        self._customers: Dict[str, CustomerHandler] = {}

    def subscribe(
        self,
        resource_id: int,
        booking_date: date,
        handler: TimelineHandler,
        *,
        ttl_seconds: Optional[float] = None,
    ) -> Subscription:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        subscription = Subscription(
            subscription_id=f"SUB-{next(self._counter):05d}",
            resource_id=resource_id,
            booking_date=booking_date,
            expires_at=expires_at,
        )
        self._by_key.setdefault(subscription.key, {})[subscription.subscription_id] = (
            subscription,
            handler,
        )
        logger.info(
            "Subscribed %s to barber %s on %s",
            subscription.subscription_id,
            resource_id,
            booking_date.isoformat(),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        handlers = self._by_key.get(subscription.key)
        if not handlers or subscription.subscription_id not in handlers:
            return False
        del handlers[subscription.subscription_id]
        if not handlers:
            del self._by_key[subscription.key]
        logger.info("Unsubscribed %s", subscription.subscription_id)
        return True

    def subscribe_customer(self, customer_id: str, handler: CustomerHandler) -> None:
        """Register the single handler for a customer, replacing any previous one."""
        if customer_id in self._customers:
            logger.info("Replacing existing subscription for customer %s", customer_id)
        self._customers[customer_id] = handler

    def unsubscribe_customer(self, customer_id: str) -> bool:
        return self._customers.pop(customer_id, None) is not None

    def prune_expired(self) -> int:
        now = self._clock()
        expired = [
            subscription
            for handlers in self._by_key.values()
            for subscription, _ in handlers.values()
            if subscription.expires_at is not None and subscription.expires_at <= now
        ]
        for subscription in expired:
            self.unsubscribe(subscription)
        return len(expired)

    def handlers_for(self, resource_id: int, booking_date: date) -> List[TimelineHandler]:
        self.prune_expired()
        handlers = self._by_key.get((resource_id, booking_date), {})
        return [handler for _, handler in handlers.values()]

    def customer_handler(self, customer_id: str) -> Optional[CustomerHandler]:
        return self._customers.get(customer_id)

    def subscriber_count(self, resource_id: int, booking_date: date) -> int:
        return len(self._by_key.get((resource_id, booking_date), {}))

    def clear(self) -> None:
        self._by_key.clear()
        self._customers.clear()


class RecomputeDispatcher:
    def __init__(self, registry: SubscriptionRegistry, builder: TimelineBuilder) -> None:
        self._registry = registry
        self._builder = builder

    async def dispatch(
        self,
        event_kind: EventKind,
        booking: BookingRecord,
        *,
        previous: Optional[BookingRecord] = None,
    ) -> TimelineResponse:
        """Rebuild the booking's day and broadcast it.

        When ``previous`` lived on another barber-day, that day is rebuilt and
        broadcast as well.
        """
        if previous is not None and (previous.resource_id, previous.booking_date) != (
            booking.resource_id,
            booking.booking_date,
        ):
            await self._broadcast(event_kind, booking, previous.resource_id, previous.booking_date)

        timeline = await self._broadcast(
            event_kind, booking, booking.resource_id, booking.booking_date
        )

        await self._notify_customer(event_kind, booking)
        return timeline

    async def dispatch_day(
        self,
        event_kind: EventKind,
        resource_id: int,
        booking_date: date,
        *,
        changed: Iterable[BookingRecord] = (),
    ) -> TimelineResponse:
        """Rebuild once for a mutation that touched several bookings of one day."""
        timeline = await self._broadcast(event_kind, None, resource_id, booking_date)
        for booking in changed:
            await self._notify_customer(event_kind, booking)
        return timeline

    async def _notify_customer(self, event_kind: EventKind, booking: BookingRecord) -> None:
        if not booking.customer_id:
            return
        handler = self._registry.customer_handler(booking.customer_id)
        if handler is not None:
            await self._deliver(handler, CustomerEvent(event_kind=event_kind, booking=booking))

    async def _broadcast(
        self,
        event_kind: EventKind,
        booking: Optional[BookingRecord],
        resource_id: int,
        booking_date: date,
    ) -> TimelineResponse:
        timeline = await self._builder(resource_id, booking_date)
        handlers = self._registry.handlers_for(resource_id, booking_date)
        logger.debug(
            "Broadcasting %s for barber %s on %s to %s subscribers",
            event_kind,
            resource_id,
            booking_date.isoformat(),
            len(handlers),
        )
        event = TimelineEvent(event_kind=event_kind, changed_booking=booking, timeline=timeline)
        for handler in handlers:
            await self._deliver(handler, event)
        return timeline

    @staticmethod
    async def _deliver(handler: Callable, event: Union[TimelineEvent, CustomerEvent]) -> None:
        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Subscriber failed to handle %s event", event.event_kind)


_registry: Optional[SubscriptionRegistry] = None


def get_subscription_registry() -> SubscriptionRegistry:
    global _registry
    if _registry is None:
        _registry = SubscriptionRegistry()
    return _registry


def reset_subscription_registry() -> None:
    global _registry
    if _registry is not None:
        _registry.clear()
    _registry = None
