from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from barberq.clients.notifications import NotificationClient
from barberq.config import Settings, get_settings
from barberq.services import BookingService, TimelineService


@lru_cache(maxsize=1)
def get_notification_client_cached() -> NotificationClient:
    settings = get_settings()
    return NotificationClient(
        str(settings.notification_service_base_url) if settings.notification_service_base_url else None,
        timeout=settings.notification_service_timeout,
        use_mock_data=settings.use_mock_data,
        token=settings.notification_service_token,
        dedupe_window_seconds=settings.notification_dedupe_window_seconds,
        outbox_limit=settings.notification_outbox_limit,
    )


def get_notification_client(settings: Settings = Depends(get_settings)) -> NotificationClient:
    return get_notification_client_cached()


def get_timeline_service(
    client: NotificationClient = Depends(get_notification_client),
    settings: Settings = Depends(get_settings),
) -> TimelineService:
    return TimelineService(client, settings)


def get_booking_service(
    client: NotificationClient = Depends(get_notification_client),
    timeline: TimelineService = Depends(get_timeline_service),
) -> BookingService:
    return BookingService(client, timeline=timeline)
