"""Async retry helpers used by outbound I/O."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")
AsyncFactory = Callable[[], Awaitable[T]]

# Upper bound for a server-requested pause (Telegram flood control).
MAX_SERVER_DELAY = 30.0


def backoff_delay(exc: BaseException, attempt: int, base_delay: float) -> float:
    """Linear backoff, unless the error carries its own ``retry_after`` hint."""

    hinted = getattr(exc, "retry_after", None)
    if isinstance(hinted, (int, float)) and hinted > 0:
        return min(float(hinted), MAX_SERVER_DELAY)
    return base_delay * attempt


async def retry_async(
    operation: AsyncFactory[T],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    logger=None,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    Only exceptions matching ``retry_on`` are retried; anything else is raised
    on the first occurrence, and the last failure is re-raised as is.
    """

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt == max_attempts:
                raise
            delay = backoff_delay(exc, attempt, base_delay)
            if logger is not None:
                logger.warning(
                    "retrying_operation",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay=delay,
                    error=str(exc),
                )
            await asyncio.sleep(delay)

    raise ValueError(f"max_attempts must be positive, got {max_attempts}")


__all__ = ["backoff_delay", "retry_async"]
