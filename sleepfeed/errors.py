"""
Error taxonomy for sleepfeed.

Domain failures are raised as SleepFeedError subclasses and rendered by the
API layer into a stable envelope:

    {"error": <message>, "error_code": <CODE>, "details": {...}}

Cache-store failures never use these classes; the cache layer logs and
absorbs them.
"""

from typing import Any, Dict, List, Optional


class SleepFeedError(Exception):
    """Base class for errors that carry a machine-readable code."""

    kind = "internal"
    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message, "error_code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(SleepFeedError):
    kind = "not_found"
    status_code = 404
    default_code = "NOT_FOUND"


class ConflictError(SleepFeedError):
    kind = "conflict"
    status_code = 422
    default_code = "CONFLICT"


class RecordValidationError(SleepFeedError):
    """Field-level validation failure; details map field -> messages."""

    kind = "validation"
    status_code = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, errors: Dict[str, List[str]], message: str = "Validation failed"):
        super().__init__(message, details=errors)
        self.errors = errors

    @classmethod
    def single(cls, field: str, message: str) -> "RecordValidationError":
        return cls({field: [message]})


class InvalidParameterError(SleepFeedError):
    kind = "bad_request"
    status_code = 400
    default_code = "INVALID_PARAMETER"


class AuthenticationError(SleepFeedError):
    kind = "bad_request"
    status_code = 400
    default_code = "MISSING_USER_ID"


class ForbiddenError(SleepFeedError):
    kind = "forbidden"
    status_code = 403
    default_code = "FORBIDDEN"


def user_not_found() -> NotFoundError:
    return NotFoundError("User not found", code="USER_NOT_FOUND")


def record_not_found() -> NotFoundError:
    return NotFoundError("Sleep record not found", code="NOT_FOUND")
