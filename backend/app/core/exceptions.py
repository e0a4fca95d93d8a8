"""
Codelab Grader - Grading Errors
Exception hierarchy surfaced by the grading core
"""

from typing import Optional


class GradingError(Exception):
    """Base class for errors raised by the grading core."""

    code: str = "GRADING_ERROR"
    status_code: int = 500
    retryable: bool = False
    public_message: str = "Grading failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)

    @property
    def detail(self) -> str:
        """Message that is safe to show to the submitting user."""
        return str(self)


class SubmissionTooLarge(GradingError):
    """A submission channel exceeds its configured byte bound."""

    code = "SUBMISSION_TOO_LARGE"
    status_code = 413
    public_message = "Submission is too large"

    def __init__(self, channel: str, size: int, limit: int):
        self.channel = channel
        self.size = size
        self.limit = limit
        super().__init__(f"{channel} is {size} bytes, limit is {limit} bytes")


class BatteryNotFound(GradingError, LookupError):
    """No test battery exists for the challenge/content version."""

    code = "BATTERY_NOT_FOUND"
    status_code = 404
    public_message = "Challenge not found"


class ExecutionTimeout(GradingError):
    """The trusted run timed out and its verdict could not be confirmed."""

    code = "EXECUTION_TIMEOUT"
    status_code = 408
    retryable = True
    public_message = "Submission exceeded the time budget"


class ValidationMismatch(GradingError):
    """
    The server-side verdict disagrees with the client-reported one.

    The message never carries the diff; callers only see that validation
    failed.
    """

    code = "VALIDATION_FAILED"
    status_code = 422
    public_message = "Submission could not be validated"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(self.public_message)


class PersistenceError(GradingError):
    """
    Storage failure. Backend detail is kept in ``reason`` for the server
    logs; the message is always the public one.
    """

    status_code = 503
    retryable = True

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(self.public_message)


class PersistenceConflict(PersistenceError):
    """A conditional progress update lost a race with a concurrent writer."""

    code = "PERSISTENCE_CONFLICT"
    public_message = "Progress could not be saved, please retry"


class PersistenceUnavailable(PersistenceError):
    """The persistence backend failed; durability cannot be confirmed."""

    code = "PERSISTENCE_UNAVAILABLE"
    public_message = "Progress storage is unavailable"


class ProtocolError(ValueError):
    """A host/sandbox message does not follow the wire contract."""
