"""Retry with exponential backoff and fixed-interval confirmation polling."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from functools import wraps
from typing import Any, TypeVar

from src.core.config import constants


logger = logging.getLogger(__name__)

T = TypeVar("T")


def calculate_delay(base_delay: float, attempt: int) -> float:
    """Return the backoff delay before the attempt after ``attempt`` (0-indexed)."""
    return min(base_delay * (2**attempt), constants.MAX_BACKOFF_SECONDS)


async def retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 0.5,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> T:
    """Invoke ``operation`` up to ``max_attempts`` times with exponential backoff.

    Waits ``base_delay * 2**attempt`` between failed attempts and re-raises the
    last failure once the budget is exhausted. Exceptions outside ``retry_on``
    propagate immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_exception: BaseException | None = None
    for attempt in range(max_attempts):
        try:
            result = await operation()
            if attempt > 0:
                logger.info("retry_success", extra={"attempt": attempt + 1, "max_attempts": max_attempts})
            return result
        except retry_on as e:
            last_exception = e
            if attempt < max_attempts - 1:
                delay = calculate_delay(base_delay, attempt)
                logger.warning(
                    "Remote operation failed (attempt %d/%d): %s. Retrying in %.2fs",
                    attempt + 1,
                    max_attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    "Remote operation failed after %d attempts: %s",
                    max_attempts,
                    e,
                )

    raise last_exception  # type: ignore[misc]


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 0.5,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
) -> Callable[[Callable[..., Coroutine[Any, Any, T]]], Callable[..., Coroutine[Any, Any, T]]]:
    """Decorator form of :func:`retry` for async functions."""

    def decorator(func: Callable[..., Coroutine[Any, Any, T]]) -> Callable[..., Coroutine[Any, Any, T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:  # noqa: ANN401
            return await retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                base_delay=base_delay,
                retry_on=retry_on,
            )

        return wrapper

    return decorator


async def poll_until(
    probe: Callable[[], Awaitable[bool]],
    *,
    attempts: int,
    interval: float,
) -> bool:
    """Poll ``probe`` at a fixed interval until it returns True.

    Probe errors count as misses. Returns False when the budget is exhausted.
    """
    for attempt in range(attempts):
        try:
            if await probe():
                logger.debug("poll_confirmed", extra={"attempt": attempt + 1})
                return True
        except Exception as e:
            logger.info("Confirmation attempt %d failed: %s", attempt + 1, e)

        if attempt < attempts - 1:
            await asyncio.sleep(interval)

    return False
