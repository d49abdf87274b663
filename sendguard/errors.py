"""Exception types for the sendguard library."""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Caller-facing error classes."""

    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class SendGuardError(Exception):
    """Base exception for all sendguard errors."""

    code = ErrorCode.INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: Optional[ErrorCode] = None):
        if code is not None:
            self.code = code
        self.message = message
        super().__init__(message)


class PolicyViolationError(SendGuardError):
    """Raised when a message breaks a static send policy rule."""

    code = ErrorCode.BAD_REQUEST


class RateExceededError(SendGuardError):
    """Raised when a per-minute limit or daily cap is exhausted."""

    code = ErrorCode.TOO_MANY_REQUESTS


class NotFoundError(SendGuardError):
    """Raised when a required record does not exist."""

    code = ErrorCode.NOT_FOUND


class InvalidRequestError(SendGuardError):
    """Raised when caller input is unusable."""

    code = ErrorCode.BAD_REQUEST


class ForbiddenError(SendGuardError):
    """Raised when an owner is not allowed to perform an operation."""

    code = ErrorCode.FORBIDDEN


class ConflictError(SendGuardError):
    """Raised when a record already exists locally."""

    code = ErrorCode.CONFLICT


class JobNotFoundError(NotFoundError):
    """Raised when a job is not found."""

    def __init__(self, job_id, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class WebhookAuthError(SendGuardError):
    """Raised when an inbound webhook fails authentication."""

    code = ErrorCode.UNAUTHORIZED


class ProviderHttpError(SendGuardError):
    """Raised by connectors when an upstream provider returns a non-2xx status."""

    def __init__(self, provider: str, status: int, path: str, body: str = ""):
        self.provider = provider
        self.status = status
        self.path = path
        self.body = body or ""
        super().__init__(f"Provider {provider} request failed with status {status}")


class ProviderError(SendGuardError):
    """A provider failure mapped onto a caller-facing error class."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_SERVER_ERROR,
        provider: Optional[str] = None,
        status: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.provider = provider
        self.status = status
        self.body = body
        super().__init__(message, code=code)
