from fastapi import HTTPException

from barberq.services.exceptions import (
    BookingValidationError,
    CapacityError,
    ConflictError,
    NotFoundError,
    ServiceError,
)


def to_http_exception(exc: ServiceError) -> HTTPException:
    if isinstance(exc, BookingValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "suggestions": [
                    suggestion.model_dump(mode="json") for suggestion in exc.suggestions
                ],
            },
        )
    if isinstance(exc, CapacityError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))
