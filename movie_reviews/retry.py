"""Retry logic for storage connections using tenacity."""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import UnavailableError

F = TypeVar("F", bound=Callable[..., Any])

TRANSIENT_ERRORS = (TimeoutError, ConnectionError, OSError)


def with_connection_retry(
    backend_name: str,
    max_retries: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
) -> Callable[[F], F]:
    """Decorator to retry establishing a storage connection.

    Only start-up connections are retried; domain operations are
    single-attempt and surface failures to the caller.

    Args:
        backend_name: Name of the backend for log and error messages
        max_retries: Maximum number of attempts
        min_wait: Minimum seconds between attempts
        max_wait: Maximum seconds between attempts

    Returns:
        Decorated function with retry logic

    """

    def decorator(func: F) -> F:
        retrying = retry(
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            before_sleep=lambda retry_state: logger.warning(
                f"{backend_name} connect attempt {retry_state.attempt_number}: {retry_state.outcome.exception() if retry_state.outcome else 'Unknown error'}",
            ),
            reraise=True,
        )(func)

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await retrying(*args, **kwargs)
            except TRANSIENT_ERRORS as e:
                logger.error(f"{backend_name} unreachable after {max_retries} attempts: {e}")
                raise UnavailableError(f"{backend_name} connect", str(e)) from e

        return wrapper  # type: ignore[return-value]

    return decorator
