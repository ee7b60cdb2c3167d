from fastapi import APIRouter, Depends

from barberq.dependencies.services import get_timeline_service
from barberq.schemas.timeline import (
    Allocation,
    AllocationRequest,
    ConflictCheckRequest,
    ConflictCheckResponse,
    DelayRequest,
    DelayResponse,
    GapSearchRequest,
    GapSearchResponse,
    TimelineRequest,
    TimelineResponse,
)
from barberq.services import TimelineService
from barberq.services.exceptions import ServiceError
from barberq.tools.errors import to_http_exception

router = APIRouter()


@router.post("/build", response_model=TimelineResponse)
async def build_timeline(
    req: TimelineRequest,
    service: TimelineService = Depends(get_timeline_service),
):
    try:
        return await service.build(req.resource_id, req.booking_date)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/conflict", response_model=ConflictCheckResponse)
async def check_conflict(
    req: ConflictCheckRequest,
    service: TimelineService = Depends(get_timeline_service),
):
    try:
        return await service.check_conflict(req)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/allocate", response_model=Allocation)
async def allocate_slot(
    req: AllocationRequest,
    service: TimelineService = Depends(get_timeline_service),
):
    try:
        return await service.allocate(
            req.resource_id,
            req.booking_date,
            req.mode,
            req.priority,
            duration_minutes=req.duration_minutes,
            fixed_time=req.fixed_time,
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/gaps", response_model=GapSearchResponse)
async def find_gaps(
    req: GapSearchRequest,
    service: TimelineService = Depends(get_timeline_service),
):
    try:
        return await service.find_gaps(req.resource_id, req.booking_date, req.duration_minutes)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc


@router.post("/delay", response_model=DelayResponse)
async def propagate_delay(
    req: DelayRequest,
    service: TimelineService = Depends(get_timeline_service),
):
    try:
        return await service.propagate_delay(req.resource_id, req.booking_date, req.delay_minutes)
    except ServiceError as exc:
        raise to_http_exception(exc) from exc
