"""
Retry decorator with exponential backoff.

Used by the DevTools discovery helpers (adapters/cdp.py) to ride out
Chrome still starting up. The conversion path itself never retries:
protocol failures surface to the caller as PresseError.
"""

import random
import time
from functools import wraps
from typing import TypeVar, Callable, ParamSpec

import httpx

from logging_config import logger, log_retry
from models import PresseError, ErrorKind

T = TypeVar("T")
P = ParamSpec("P")


# Exceptions that should trigger retry
RETRYABLE_EXCEPTIONS: tuple[type[Exception], ...] = (
    ConnectionError,
    TimeoutError,
    httpx.TransportError,
)

# HTTP status codes that should trigger retry
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({
    500,  # Internal server error
    502,  # Bad gateway
    503,  # Service unavailable
    504,  # Gateway timeout
})


def _get_http_status(exception: Exception) -> int | None:
    """
    Extract HTTP status code from exception if available.

    Works with httpx.HTTPStatusError and requests-style exceptions.
    """
    # httpx.HTTPStatusError carries the response
    response = getattr(exception, "response", None)
    if response is not None:
        status = getattr(response, "status_code", None)
        if isinstance(status, int):
            return status

    # Check for status_code attribute (requests-style)
    if hasattr(exception, "status_code"):
        status = exception.status_code
        if isinstance(status, int):
            return status

    return None


def _should_retry(exception: Exception) -> bool:
    """Determine if an exception is retryable."""
    if isinstance(exception, RETRYABLE_EXCEPTIONS):
        return True

    status = _get_http_status(exception)
    if status is not None and status in RETRYABLE_STATUS_CODES:
        return True

    return False


def _convert_to_presse_error(exception: Exception) -> PresseError:
    """Convert a discovery failure to a CONNECTION_FAILED PresseError."""
    if isinstance(exception, PresseError):
        return exception

    status = _get_http_status(exception)
    if status is not None:
        return PresseError(
            ErrorKind.CONNECTION_FAILED,
            f"DevTools endpoint returned HTTP {status}: {exception}",
            cause=exception,
            details={"status": status},
        )

    return PresseError(
        ErrorKind.CONNECTION_FAILED,
        f"DevTools endpoint unreachable: {exception}",
        cause=exception,
    )


def _calculate_wait_with_jitter(
    delay_ms: int,
    attempt: int,
    backoff_multiplier: float,
    jitter: float,
) -> int:
    """Exponential backoff with +/- jitter fraction, never negative."""
    base = delay_ms * (backoff_multiplier ** attempt)
    spread = base * jitter
    return max(0, int(base + random.uniform(-spread, spread)))


def with_retry(
    max_attempts: int = 3,
    delay_ms: int = 500,
    backoff_multiplier: float = 2.0,
    jitter: float = 0.25,
    convert_errors: bool = True,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """
    Retry decorator with exponential backoff.

    ValueError is never retried or converted: bad arguments surface as-is.

    Args:
        max_attempts: Maximum number of attempts
        delay_ms: Initial delay in milliseconds
        backoff_multiplier: Multiplier for exponential backoff
        jitter: Random spread as a fraction of each delay
        convert_errors: Convert exceptions to PresseError on final failure

    Returns:
        Decorated function with retry logic

    Example:
        @with_retry(max_attempts=3, delay_ms=500)
        def list_targets(host: str, port: int):
            return httpx.get(f"http://{host}:{port}/json/list").json()
    """

    def decorator(func: Callable[P, T]) -> Callable[P, T]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except (ValueError, PresseError):
                    raise
                except Exception as e:
                    if not _should_retry(e) or attempt == max_attempts - 1:
                        logger.error(
                            f"{func.__name__} failed after {attempt + 1} attempts: {e}"
                        )
                        if convert_errors:
                            raise _convert_to_presse_error(e) from e
                        raise

                    wait_ms = _calculate_wait_with_jitter(
                        delay_ms, attempt, backoff_multiplier, jitter
                    )
                    log_retry(attempt + 1, max_attempts, wait_ms, str(e))
                    time.sleep(wait_ms / 1000)

            # max_attempts < 1
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        return wrapper

    return decorator
