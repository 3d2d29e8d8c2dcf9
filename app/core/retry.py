"""
Retry utilities with exponential backoff for async functions.

The outbox worker wraps every side-effect dispatch (contract documents,
damage-check documents, notifications) in ``async_retry`` so that a flaky
collaborator gets a few chances before the event is marked failed.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class RetryableError(Exception):
    """
    Exception that should be retried with exponential backoff.

    Raised by collaborators for transient failures:
    - document renderer temporarily unavailable
    - notification gateway timeouts
    - database connection hiccups while recording results
    """
    pass


class NonRetryableError(Exception):
    """
    Exception that should NOT be retried.

    Raised for deterministic failures that will not change on retry:
    - the referenced reservation no longer exists
    - the event payload is malformed
    - no handler is registered for the event type
    """
    pass


# Failures that are expected to clear up on their own
TRANSIENT_ERRORS = (RetryableError, SQLAlchemyError, asyncio.TimeoutError)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (0-based): base_delay * 2^attempt, capped."""
    return min(base_delay * (2 ** attempt), max_delay)


def async_retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0
) -> Callable[[F], F]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Initial delay in seconds between retries (default: 1.0)
        max_delay: Maximum delay in seconds between retries (default: 10.0)

    Example:
        @async_retry(max_attempts=3, base_delay=0.5, max_delay=5.0)
        async def render_contract(reservation_id):
            ...

    NonRetryableError is raised immediately. Everything else is retried;
    errors outside TRANSIENT_ERRORS are logged as unexpected. After the last
    attempt the original exception propagates unchanged.
    """
    def decorator(func: Callable) -> Callable:
        name = getattr(func, "__name__", repr(func))

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_attempts):
                try:
                    return await func(*args, **kwargs)
                except NonRetryableError:
                    raise
                except Exception as e:
                    if attempt == max_attempts - 1:
                        logger.error(f"All {max_attempts} attempts failed for {name}. Final error: {e}")
                        raise

                    delay = backoff_delay(attempt, base_delay, max_delay)
                    if isinstance(e, TRANSIENT_ERRORS):
                        logger.warning(
                            f"Retry attempt {attempt + 1}/{max_attempts} for {name}. "
                            f"Error: {e}. Waiting {delay:.2f}s..."
                        )
                    else:
                        logger.warning(
                            f"Unexpected error in {name} (attempt {attempt + 1}/{max_attempts}): {e}. "
                            f"Waiting {delay:.2f}s..."
                        )
                    await asyncio.sleep(delay)

            raise RuntimeError(f"{name} was called with max_attempts={max_attempts}")

        return wrapper
    return decorator
