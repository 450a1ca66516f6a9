"""Resilience utilities for table scans.

Provides an opt-in retry decorator for establishing database sessions.
Scans themselves are never retried here: a failed window read propagates to
the caller, which owns the retry policy and the persisted watermarks.

Implementation: Uses tenacity library internally.
"""

from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import tenacity
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

__all__ = ["with_retry", "is_retryable_db_error"]

F = TypeVar("F", bound=Callable[..., Any])


def is_retryable_db_error(exc: BaseException) -> bool:
    """Determine if a database error is retryable.

    Retries on transient connection errors but not on query/data errors.
    Supports pyodbc, SQLAlchemy, and generic Python connection exceptions.
    """
    exc_type = type(exc).__name__
    exc_module = type(exc).__module__

    if "pyodbc" in exc_module:
        if "OperationalError" in exc_type or "InterfaceError" in exc_type:
            return True

    if "sqlalchemy" in exc_module:
        # Pool checkout timeouts are the caller's capacity problem
        if exc_type == "TimeoutError":
            return False
        if exc_type in ("OperationalError", "InterfaceError", "DisconnectionError"):
            return True
        if getattr(exc, "connection_invalidated", False):
            return True

    if exc_type in ("ConnectionError", "TimeoutError", "BrokenPipeError", "ConnectionResetError"):
        return True

    return False


def with_retry(
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
    exponential: bool = True,
    jitter: bool = True,
    retry_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    retry_if: Optional[Callable[[BaseException], bool]] = None,
) -> Callable[[F], F]:
    """Opt-in retry decorator for flaky operations.

    Args:
        max_attempts: Maximum number of attempts (default 3)
        backoff_seconds: Base delay between attempts (default 1.0)
        exponential: Use exponential backoff (default True)
        jitter: Add random jitter to backoff (default True)
        retry_exceptions: Only retry on these exceptions (default: all)
        retry_if: Predicate deciding whether an exception is retried;
            takes precedence over retry_exceptions

    Example:
        @with_retry(max_attempts=3, retry_if=is_retryable_db_error)
        def connect():
            return engine.connect()
    """
    wait_strategy: wait_base
    if exponential:
        wait_strategy = tenacity.wait_exponential(multiplier=backoff_seconds, min=backoff_seconds)
    else:
        wait_strategy = tenacity.wait_fixed(backoff_seconds)

    if jitter:
        wait_strategy = wait_strategy + tenacity.wait_random(0, backoff_seconds * 0.5)

    if retry_if is not None:
        retry_condition = tenacity.retry_if_exception(retry_if)
    elif retry_exceptions:
        retry_condition = tenacity.retry_if_exception_type(retry_exceptions)
    else:
        retry_condition = tenacity.retry_if_exception_type(Exception)

    def decorator(fn: F) -> F:
        fn_logger = logging.getLogger(fn.__module__)

        def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
            exception = retry_state.outcome.exception() if retry_state.outcome else None
            fn_logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1fs...",
                retry_state.attempt_number,
                max_attempts,
                exception,
                retry_state.next_action.sleep if retry_state.next_action else 0,
            )

        tenacity_decorator = tenacity.retry(
            stop=tenacity.stop_after_attempt(max_attempts),
            wait=wait_strategy,
            retry=retry_condition,
            before_sleep=before_sleep_handler,
            reraise=True,
        )

        @wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            retrying_fn = tenacity_decorator(fn)
            return retrying_fn(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator
