"""Retry logic with exponential backoff for storage calls.

Generation requests are never retried here: a model timeout or rate limit is
surfaced to the caller, who decides whether to try again. This decorator is
for idempotent persistence operations that may hit transient network errors.
"""

import asyncio
import functools
import inspect
import logging
import random
import time
from typing import Any, Callable, Optional, Set, Type, TypeVar, cast

from app.services.errors import GenerationError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

# HTTP status codes that should trigger retry
RETRYABLE_STATUS_CODES: Set[int] = {
    429,  # Rate limit
    500,  # Server error
    502,  # Bad gateway
    503,  # Service unavailable
}

# HTTP status codes that should NOT trigger retry
NON_RETRYABLE_STATUS_CODES: Set[int] = {
    400,  # Bad request
    401,  # Unauthorized
    403,  # Forbidden
    404,  # Not found
    409,  # Conflict
    422,  # Unprocessable entity
}

NETWORK_ERROR_HINTS = (
    "timeout",
    "timed out",
    "connection reset",
    "connection refused",
    "connection aborted",
    "network",
)

MAX_RETRIES = 3
BASE_DELAY = 0.5  # seconds
MAX_JITTER = 0.5  # seconds


def extract_status_code(exception: BaseException) -> Optional[int]:
    """Extract an HTTP status code from an exception, if it carries one.

    Looks at ``status_code``, an integer ``code`` and ``response.status_code``,
    the attributes used by httpx, google-genai and postgrest errors.
    """
    status_code = getattr(exception, "status_code", None)
    if isinstance(status_code, int):
        return status_code

    code = getattr(exception, "code", None)
    if isinstance(code, int):
        return code
    if isinstance(code, str) and code.isdigit():
        return int(code)

    response = getattr(exception, "response", None)
    response_status = getattr(response, "status_code", None)
    if isinstance(response_status, int):
        return response_status

    return None


def is_transient(
    exception: BaseException,
    retryable_exceptions: tuple[Type[BaseException], ...] = (),
) -> bool:
    """Decide whether ``exception`` is worth another attempt."""
    if isinstance(exception, GenerationError):
        return False

    status_code = extract_status_code(exception)
    if status_code is not None:
        if status_code in NON_RETRYABLE_STATUS_CODES:
            return False
        if status_code in RETRYABLE_STATUS_CODES:
            return True

    message = str(exception).lower()
    if any(hint in message for hint in NETWORK_ERROR_HINTS):
        return True

    return bool(retryable_exceptions) and isinstance(exception, retryable_exceptions)


def _backoff_delay(attempt: int, base_delay: float, max_jitter: float) -> float:
    return (base_delay * (2 ** attempt)) + (random.random() * max_jitter)


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
    retryable_exceptions: tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError),
) -> Callable[[F], F]:
    """Decorator that retries transient failures with exponential backoff.

    Works on both coroutine functions (sleeping with ``asyncio.sleep``) and
    plain functions.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds for exponential backoff
        max_jitter: Maximum random jitter in seconds
        retryable_exceptions: Exception types always considered transient

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= max_retries or not is_transient(e, retryable_exceptions):
                        if attempt >= max_retries:
                            logger.error(f"{func.__name__} failed after {max_retries} retries: {e}")
                        raise
                    delay = _backoff_delay(attempt, base_delay, max_jitter)
                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{max_retries} failed: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
            raise RuntimeError("Unexpected retry loop exit")

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if attempt >= max_retries or not is_transient(e, retryable_exceptions):
                        if attempt >= max_retries:
                            logger.error(f"{func.__name__} failed after {max_retries} retries: {e}")
                        raise
                    delay = _backoff_delay(attempt, base_delay, max_jitter)
                    logger.warning(
                        f"{func.__name__} attempt {attempt + 1}/{max_retries} failed: {e}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)
            raise RuntimeError("Unexpected retry loop exit")

        if inspect.iscoroutinefunction(func):
            return cast(F, async_wrapper)
        return cast(F, sync_wrapper)

    return decorator
