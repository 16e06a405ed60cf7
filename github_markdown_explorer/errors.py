"""Error taxonomy for API access and discovery.

Callers branch on ``ApiError.kind`` (or the concrete class) rather than on
message text. No error ever carries the bearer token.
"""

import math
import time
from enum import Enum


class ErrorKind(str, Enum):
    RATE_LIMIT = "rate_limit"
    SECONDARY_RATE_LIMIT = "secondary_rate_limit"
    NETWORK = "network"


class ApiError(Exception):
    kind: ErrorKind


class RateLimitError(ApiError):
    """Primary hourly quota exhausted. Recoverable after ``reset_epoch``."""

    kind = ErrorKind.RATE_LIMIT

    def __init__(self, reset_epoch: int, status_code: int = 403):
        self.reset_epoch = reset_epoch
        self.status_code = status_code
        super().__init__(f"Rate limit exceeded. Resets at epoch {reset_epoch}")


class SecondaryRateLimitError(ApiError):
    """Abuse-detection cooldown. Must not be retried before ``retry_after_seconds``."""

    kind = ErrorKind.SECONDARY_RATE_LIMIT

    def __init__(self, retry_after_seconds: float, status_code: int = 403):
        self.retry_after_seconds = retry_after_seconds
        self.status_code = status_code
        super().__init__(f"Secondary rate limit exceeded. Retry after {retry_after_seconds} seconds")


class NetworkError(ApiError):
    """Transport failure (no status code) or a non-2xx response."""

    kind = ErrorKind.NETWORK

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code == 408 or self.status_code >= 500


class DiscoveryError(Exception):
    """No candidate could be found by any discovery strategy."""


class NoMarkdownError(DiscoveryError):
    pass


def is_rate_limit_error(error: BaseException) -> bool:
    return isinstance(error, (RateLimitError, SecondaryRateLimitError))


def rate_limit_reset_time(error: BaseException, now: float | None = None) -> int | None:
    """Epoch second at which the request may be tried again, if known."""
    if isinstance(error, RateLimitError):
        return error.reset_epoch
    if isinstance(error, SecondaryRateLimitError):
        now = time.time() if now is None else now
        return int(now) + math.ceil(error.retry_after_seconds)
    return None


def rate_limit_message(error: BaseException, now: float | None = None) -> str:
    """Human-readable wait instruction for a rate-limit error."""
    if isinstance(error, RateLimitError):
        now = time.time() if now is None else now
        minutes = max(0, math.ceil((error.reset_epoch - int(now)) / 60))
        return f"Rate limit exceeded. Please wait approximately {minutes} minute{'' if minutes == 1 else 's'} before trying again."
    if isinstance(error, SecondaryRateLimitError):
        seconds = error.retry_after_seconds
        if float(seconds).is_integer():
            seconds = int(seconds)
        return f"Rate limit exceeded. Please wait {seconds} second{'' if seconds == 1 else 's'} before trying again."
    return "Rate limit exceeded. Please wait before trying again."
