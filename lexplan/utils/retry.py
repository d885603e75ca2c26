"""Retry helper for units of work that can lose a race."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")
AsyncFactory = Callable[[], Awaitable[T]]


async def retry_async(
    operation: AsyncFactory[T],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    logger=None,
    operation_name: str = "operation",
) -> T:
    """Run ``operation`` until it succeeds, with linear backoff between attempts.

    ``operation`` is a factory so every attempt starts from scratch. Only
    exceptions in ``retry_on`` are retried; the last one is re-raised once
    ``max_attempts`` is used up.
    """

    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await operation()
        except retry_on as exc:
            if attempt == max_attempts:
                raise
            delay = base_delay * attempt
            if logger is not None:
                logger.warning(
                    "retrying_operation",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    delay=delay,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
            if delay:
                await asyncio.sleep(delay)
    raise AssertionError("unreachable")


__all__ = ["retry_async"]
