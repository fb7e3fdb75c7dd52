"""Retry helper for SQLite "database is locked" errors.

Hey future me - SQLite has exactly one writer. A sync page upsert can collide with an
exclusion recompute or a stats rebuild running from an API request, and the loser
sees "database is locked" even with busy_timeout set. Those collisions clear up by
themselves, so page writes are wrapped in with_db_retry().

Wrap only functions that open their OWN session_scope(). The failed transaction is
already rolled back; replaying statements into a caller's session would be wrong.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from sqlalchemy.exc import OperationalError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

_LOCK_MARKERS = ("database is locked", "database is busy", "database table is locked")


def is_lock_error(exception: BaseException) -> bool:
    """True for transient SQLite lock/busy errors, False for everything else."""
    if not isinstance(exception, OperationalError):
        return False
    message = str(exception).lower()
    return any(marker in message for marker in _LOCK_MARKERS)


def with_db_retry(
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 5.0,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Re-run the wrapped coroutine when SQLite reports a lock.

    The delay doubles per attempt up to ``max_delay``. Non-lock errors and the lock
    error of the final attempt propagate unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 1
            delay = initial_delay
            while True:
                try:
                    return await func(*args, **kwargs)
                except OperationalError as e:
                    if not is_lock_error(e) or attempt >= max_attempts:
                        if attempt > 1:
                            logger.error(
                                "%s still failing after %d attempts",
                                func.__qualname__,
                                attempt,
                            )
                        raise
                    logger.warning(
                        "Database locked during %s, retry %d/%d in %.1fs",
                        func.__qualname__,
                        attempt,
                        max_attempts - 1,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * 2, max_delay)
                    attempt += 1

        return wrapper

    return decorator
