# shiftdesk/infra/db_resilience_async.py
"""
Async database resilience utilities.
Retry logic for transient asyncpg failures.
"""
from __future__ import annotations
import asyncio
from typing import TypeVar, Callable
from functools import wraps

import asyncpg
from shiftdesk.infra.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Transient errors:
    - Connection errors
    - Server closed connection
    - Too many connections
    - Deadlock / serialization failure
    """
    if isinstance(exc, asyncpg.PostgresConnectionError):
        return True

    if isinstance(exc, asyncpg.TooManyConnectionsError):
        return True

    if isinstance(exc, (asyncpg.DeadlockDetectedError, asyncpg.SerializationError)):
        return True

    if isinstance(exc, (ConnectionError, asyncio.TimeoutError)):
        return True

    # Constraint and syntax errors are never worth a retry
    if isinstance(exc, asyncpg.PostgresError):
        return False

    error_message = str(exc).lower()
    transient_patterns = [
        "connection reset",
        "server closed",
        "too many connections",
        "timeout",
    ]
    return any(pattern in error_message for pattern in transient_patterns)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0
):
    """
    Decorator to retry async function on transient database errors.

    Only wrap operations that are safe to repeat (reads and idempotent
    upserts).

    Example:
        @retry_on_transient_error(max_retries=3)
        async def get_profile(worker_id: str):
            async with db_conn() as conn:
                return await conn.fetchrow("SELECT * FROM profiles WHERE id = $1", worker_id)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc):
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded in {func.__name__}",
                            exc_info=True
                        )
                        raise

                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {exc}. "
                        f"Retrying in {delay:.2f}s..."
                    )

                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper
    return decorator
