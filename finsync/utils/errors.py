"""Error types shared by the remote clients and the sync worker."""

from enum import Enum
from typing import Optional

import httpx
from googleapiclient.errors import HttpError


class ErrorType(str, Enum):
    """Failure categories used to tag failed documents."""

    AUTH_EXPIRED = "AUTH_EXPIRED"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK = "NETWORK"
    API_ERROR = "API_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    CLASSIFICATION_FAILED = "CLASSIFICATION_FAILED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


class ApiError(Exception):
    """Remote API error carrying an HTTP-like status code."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthExpiredError(ApiError):
    """The OAuth session is no longer valid; the user must sign in again."""

    def __init__(self, message: str = "Authentication expired. Please sign in again.") -> None:
        super().__init__(message, status_code=401)


class RetryExhaustedError(Exception):
    """Raised when a call kept failing for its whole attempt budget."""

    def __init__(self, message: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error

    @property
    def status_code(self) -> Optional[int]:
        """Status of the final underlying failure, if it had one."""
        return get_status_code(self.last_error)


def get_status_code(error: BaseException) -> Optional[int]:
    """
    Extract an HTTP status code from an exception.

    Understands our own ApiError family, googleapiclient's HttpError and
    httpx's HTTPStatusError. Returns None for errors without a status
    (connection resets, timeouts, parse failures).
    """
    if isinstance(error, HttpError):
        return int(error.resp.status)
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def classify_error(error: BaseException, context: Optional[str] = None) -> ErrorType:
    """Map an exception onto an ErrorType."""
    if isinstance(error, RetryExhaustedError):
        return classify_error(error.last_error, context)

    status = get_status_code(error)
    if isinstance(error, AuthExpiredError) or status == 401:
        return ErrorType.AUTH_EXPIRED
    if status == 429:
        return ErrorType.RATE_LIMITED
    if isinstance(error, (TimeoutError, httpx.TimeoutException)) or status == 408:
        return ErrorType.TIMEOUT
    if isinstance(error, (ConnectionError, httpx.TransportError)):
        return ErrorType.NETWORK
    if context and "classif" in context.lower():
        return ErrorType.CLASSIFICATION_FAILED
    if status is not None and status >= 500:
        return ErrorType.API_ERROR
    if status is not None and 400 <= status < 500:
        return ErrorType.CLIENT_ERROR
    return ErrorType.UNKNOWN


def is_retryable(error: BaseException) -> bool:
    """Whether a later attempt could plausibly succeed."""
    return classify_error(error) in {
        ErrorType.RATE_LIMITED,
        ErrorType.NETWORK,
        ErrorType.API_ERROR,
        ErrorType.TIMEOUT,
    }
