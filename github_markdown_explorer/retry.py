"""Retry policy for API calls.

Table-driven and independent of the transport: the client asks
``retry_delay(attempt, error)`` after each failure and either sleeps for the
returned delay or re-raises.
"""

from .errors import ErrorKind, NetworkError

MAX_RETRIES = 2  # additional attempts after the first
RETRY_DELAY = 2.0  # seconds, fixed

# kind -> (max retries, fixed delay). Rate-limit kinds are absent: the caller
# decides when to come back, this layer never retries them.
RETRY_POLICY: dict[ErrorKind, tuple[int, float]] = {
    ErrorKind.NETWORK: (MAX_RETRIES, RETRY_DELAY),
}


def is_retryable(error: BaseException) -> bool:
    """Transport failures (no status), 408 and 5xx responses."""
    return isinstance(error, NetworkError) and error.retryable


def retry_delay(attempt: int, error: BaseException) -> float | None:
    """Delay before the next attempt, or None to give up.

    ``attempt`` counts failed attempts so far, starting at 1.
    """
    if not is_retryable(error):
        return None
    max_retries, delay = RETRY_POLICY[error.kind]
    if attempt > max_retries:
        return None
    return delay
