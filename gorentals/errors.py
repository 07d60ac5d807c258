"""Domain exceptions raised by the booking engine and mapped to HTTP responses in main.py."""
from typing import List, Optional

from fastapi import status


class DomainError(Exception):
    """Base domain exception."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "domain_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationFailed(DomainError):
    code = "validation_failed"


class Unauthorized(DomainError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "unauthorized"


class Forbidden(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"

    def __init__(self, entity: str, entity_id: Optional[str] = None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")


class DatesUnavailable(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "dates_unavailable"

    def __init__(self, message: str = "The selected dates are already booked") -> None:
        super().__init__(message)


class InvalidTransition(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Cannot move booking from {current} to {target}")


class AlreadyExists(DomainError):
    status_code = status.HTTP_409_CONFLICT
    code = "already_exists"


class CouponRejected(DomainError):
    """Coupon is not applicable; `code` carries the precise reason."""


class Busy(DomainError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "busy"

    def __init__(self, message: str = "Resource is busy, retry shortly") -> None:
        super().__init__(message)


class StepFailed(DomainError):
    """A required saga step failed; steps before it remain applied."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "step_failed"

    def __init__(self, operation: str, failed_step: str, completed_steps: List[str], cause: Exception) -> None:
        self.operation = operation
        self.failed_step = failed_step
        self.completed_steps = list(completed_steps)
        self.cause = cause
        super().__init__(f"{operation} stopped at '{failed_step}': {cause}")
