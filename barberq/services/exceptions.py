from __future__ import annotations

from typing import List


class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class BookingValidationError(ServiceError):
    """Raised when a booking is malformed or a transition is not allowed."""


class NotFoundError(ServiceError):
    """Raised when a booking or barber does not exist."""


class ConflictError(ServiceError):
    """Raised when a fixed time overlaps another scheduled booking."""

    def __init__(
        self,
        message: str,
        suggestions: List[object] | None = None,
        *,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.suggestions = list(suggestions or [])


class CapacityError(ServiceError):
    """Raised when the barber's queue is already at its ceiling."""


class DownstreamServiceError(ServiceError):
    """Raised when an external service returns an error response."""

    def __init__(self, message: str, status_code: int | None = None, *, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.status_code = status_code
