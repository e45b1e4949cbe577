"""
Database retry utilities for handling transient database errors.

Retries with exponential backoff and jitter, for both supported backends:

SQLite errors:
- "database is locked" - concurrent write contention (background jobs and
  request handlers share one database file)
- "SQLITE_BUSY" / "SQLITE_LOCKED"

PostgreSQL errors:
- Deadlocks (40P01)
- Serialization failures (40001)
- Connection resets
"""

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from api.metrics import DB_QUERY_RETRIES_TOTAL

logger = logging.getLogger(__name__)

# Slow query threshold in seconds
SLOW_QUERY_THRESHOLD = 1.0

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY = 0.1  # 100ms
DEFAULT_MAX_DELAY = 2.0  # 2 seconds
DEFAULT_EXPONENTIAL_BASE = 2


class DatabaseRetryableError(Exception):
    """Raised when a database operation fails after all retries exhausted."""

    pass


_SQLITE_PATTERNS = (
    "database is locked",
    "database table is locked",
    "sqlite_busy",
    "sqlite_locked",
)

_POSTGRES_PATTERNS = (
    "deadlock detected",
    "could not serialize access",
    "could not obtain lock",
    "connection refused",
    "connection reset",
    "server closed the connection unexpectedly",
    "lock timeout",
)


def is_retryable_database_error(exc: BaseException) -> bool:
    """
    Check if an exception is a retryable database error.

    Follows ``__cause__`` because the databases library wraps driver errors.
    """
    error_str = str(exc).lower()

    if any(pattern in error_str for pattern in _SQLITE_PATTERNS):
        return True
    if any(pattern in error_str for pattern in _POSTGRES_PATTERNS):
        return True

    # asyncpg exposes the SQLSTATE code
    if getattr(exc, "sqlstate", None) in ("40P01", "40001"):
        return True

    if exc.__cause__ is not None:
        return is_retryable_database_error(exc.__cause__)

    return False


async def execute_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    **kwargs: Any,
) -> T:
    """
    Execute an async function with retry logic for transient database errors.

    Raises:
        DatabaseRetryableError: If all retries are exhausted
        Other exceptions: Non-retryable errors are re-raised immediately
    """
    last_exception: Optional[Exception] = None

    for attempt in range(max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not is_retryable_database_error(e):
                raise

            last_exception = e
            DB_QUERY_RETRIES_TOTAL.inc()

            if attempt < max_retries:
                delay = min(base_delay * (DEFAULT_EXPONENTIAL_BASE**attempt), max_delay)
                # Jitter (+/-25%) to avoid lockstep retries
                jitter = delay * 0.25 * (2 * random.random() - 1)
                delay = max(0.01, delay + jitter)

                logger.warning(
                    f"Database error (attempt {attempt + 1}/{max_retries + 1}), retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"Database error after {max_retries + 1} attempts, giving up: {e}")

    raise DatabaseRetryableError(f"Database operation failed after {max_retries + 1} attempts: {last_exception}")


async def timed_query(operation: Callable[..., Awaitable[T]], query, *args: Any) -> T:
    """Run one database call and log it when it is slow."""
    start_time = time.monotonic()
    result = await operation(query, *args)
    elapsed = time.monotonic() - start_time
    if elapsed >= SLOW_QUERY_THRESHOLD:
        logger.warning(f"Slow query ({elapsed:.2f}s): {str(query)[:500]}")
    return result


async def fetch_one_with_retry(db, query, **retry_kwargs):
    """Execute ``db.fetch_one(query)`` with retry on transient errors."""
    return await execute_with_retry(timed_query, db.fetch_one, query, **retry_kwargs)


async def fetch_all_with_retry(db, query, **retry_kwargs):
    """Execute ``db.fetch_all(query)`` with retry on transient errors."""
    return await execute_with_retry(timed_query, db.fetch_all, query, **retry_kwargs)


async def db_execute_with_retry(db, query, **retry_kwargs):
    """Execute a write query with retry on transient errors.

    Returns the driver result (row count / last row id depending on backend).
    """
    return await execute_with_retry(timed_query, db.execute, query, **retry_kwargs)
