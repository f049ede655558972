"""
APTIS Exam Platform - Domain Errors
Exception hierarchy raised by services and translated to API envelopes
"""
from typing import Any

from fastapi import status


class ExamPlatformError(Exception):
    """Base error for every failure the platform reports to clients."""

    kind: str = "error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Unexpected error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(ExamPlatformError):
    """Entity absent, or not visible to the caller."""
    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"


class InvalidStateError(ExamPlatformError):
    """Operation not allowed in the attempt's current status."""
    kind = "invalid_state"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Operation not allowed in the current state"


class AlreadyInProgressError(InvalidStateError):
    """A live attempt already exists for this exam and user."""
    kind = "already_in_progress"
    default_message = "You already have an in-progress attempt for this exam"

    def __init__(self, attempt_id: Any, message: str | None = None):
        self.attempt_id = attempt_id
        super().__init__(message, details={"attempt_id": str(attempt_id)})


class OutOfWindowError(ExamPlatformError):
    kind = "out_of_window"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Exam is not available at this time"


class AttemptLimitReachedError(ExamPlatformError):
    kind = "attempt_limit_reached"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Maximum attempts reached"


class TimeExpiredError(ExamPlatformError):
    kind = "time_expired"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Time is up. Please submit your exam."


class ValidationError(ExamPlatformError):
    kind = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Invalid input"


class ManuallyReviewedError(ExamPlatformError):
    """AI scoring is blocked once a teacher has reviewed the answer."""
    kind = "manually_reviewed"
    status_code = status.HTTP_409_CONFLICT
    default_message = (
        "Cannot AI-score manually reviewed answers. Use the teacher review instead."
    )


class ScoringFailureError(ExamPlatformError):
    """AI call or response handling failed after retries were exhausted."""
    kind = "scoring_failure"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "AI scoring failed"


class ParseError(ScoringFailureError):
    """Model output did not contain a usable structured object."""
    kind = "parse_error"
    default_message = "Failed to parse AI response"


class TransactionFailureError(ExamPlatformError):
    kind = "transaction_failure"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The operation conflicted with a concurrent change"


class UnauthorizedError(ExamPlatformError):
    kind = "unauthorized"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired token"


class ForbiddenError(ExamPlatformError):
    kind = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"
