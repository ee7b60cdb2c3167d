from fastapi import APIRouter, Depends

from barberq.dependencies.services import get_booking_service
from barberq.schemas.booking import (
    BookingCreateRequest,
    BookingCreateResponse,
    BookingListRequest,
    BookingListResponse,
    BookingRecord,
    DayOffRequest,
    DayOffResponse,
    RescheduleRequest,
    StatusUpdateRequest,
)
from barberq.services import BookingService
from barberq.services.exceptions import ServiceError
from barberq.tools.errors import to_http_exception

router = APIRouter()


@router.post("/create", response_model=BookingCreateResponse)
async def create_booking(
    req: BookingCreateRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.create(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/status", response_model=BookingRecord)
async def update_booking_status(
    req: StatusUpdateRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.update_status(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/reschedule", response_model=BookingRecord)
async def reschedule_booking(
    req: RescheduleRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.reschedule(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/list", response_model=BookingListResponse)
async def list_bookings(
    req: BookingListRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.list(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/day-off", response_model=DayOffResponse)
async def mark_day_off(
    req: DayOffRequest,
    service: BookingService = Depends(get_booking_service),
):
    try:
        return await service.mark_day_off(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
