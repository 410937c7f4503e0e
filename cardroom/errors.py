"""Error hierarchy shared by the workflows and the HTTP layer."""
from typing import Optional


class CardroomError(Exception):
    """Base class for errors returned to callers.

    Every subclass carries an HTTP status and a stable machine-readable code
    alongside the human-readable message.
    """
    status_code: int = 500
    default_code: str = "INTERNAL"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code

    def to_dict(self) -> dict:
        """Convert to the error response body."""
        return {"status": "error", "code": self.code, "message": self.message}


class ValidationError(CardroomError):
    """Malformed input, rejected before any state change."""
    status_code = 400
    default_code = "INVALID_ARGUMENT"


class AuthorizationError(CardroomError):
    """Caller lacks the role or ownership the operation requires."""
    status_code = 403
    default_code = "PERMISSION_DENIED"


class NotFoundError(CardroomError):
    """Referenced record does not exist."""
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(CardroomError):
    """Current state forbids the operation; refresh and retry."""
    status_code = 409
    default_code = "FAILED_PRECONDITION"


class TransientError(CardroomError):
    """Store temporarily unreachable; safe to retry."""
    status_code = 503
    default_code = "UNAVAILABLE"
