"""Domain Exceptions

Every error raised by the booking core carries a human readable message,
a stable error code and the HTTP status the API layer should answer with.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_REQUIRED_FIELD = "MISSING_REQUIRED_FIELD"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    ROOM_UNAVAILABLE = "ROOM_UNAVAILABLE"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    DATABASE_ERROR = "DATABASE_ERROR"


class BookingError(Exception):
    """Base class for all booking domain errors"""

    status_code = 500
    default_code = ErrorCode.DATABASE_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.error_code.value,
            "details": self.details,
        }


class ValidationError(BookingError, ValueError):
    """Missing or malformed input"""

    status_code = 400
    default_code = ErrorCode.VALIDATION_ERROR


class NotFoundError(BookingError):
    """A referenced property, room, booking or user does not exist"""

    status_code = 404
    default_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, resource: str, resource_id: Optional[Any] = None):
        self.resource = resource
        message = f"{resource.capitalize()} not found"
        super().__init__(
            message,
            details={"resource": resource, "resource_id": str(resource_id) if resource_id else None},
        )


class ConflictError(BookingError):
    """Date overlap or duplicate unique field"""

    status_code = 409
    default_code = ErrorCode.ROOM_UNAVAILABLE


class InvalidTransitionError(ConflictError):
    """Status change not allowed from the booking's current status"""

    default_code = ErrorCode.INVALID_TRANSITION


class AuthorizationError(BookingError):
    """Actor lacks the role or ownership for the mutation"""

    status_code = 403
    default_code = ErrorCode.AUTHORIZATION_FAILED


class PersistenceError(BookingError):
    """Storage operation failed"""

    status_code = 500
    default_code = ErrorCode.DATABASE_ERROR


class DuplicateReferenceError(ConflictError):
    """Booking reference already taken by a concurrent booking"""

    default_code = ErrorCode.DUPLICATE_ENTRY

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Booking reference {reference} already exists", details={"reference": reference})
