"""
Async utility helpers for the ecosystem monitor.

Provides:
- gather_settled: fan-out/fan-in that never lets one failure abort the rest
- async_retry: retry decorator with exponential backoff
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, List, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def gather_settled(
    coros: List[Awaitable[T]],
) -> List[Union[T, BaseException]]:
    """
    Run awaitables concurrently and wait for all of them to settle.

    Results come back in input order; a failed awaitable is represented by
    its exception instead of aborting the others.

    Example:
        results = await gather_settled([probe.run() for probe in probes])
    """
    if not coros:
        return []
    return list(await asyncio.gather(*coros, return_exceptions=True))


def async_retry(
    attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,),
) -> Callable:
    """
    Decorator for async retry with exponential backoff.

    Example:
        @async_retry(attempts=3, delay=0.5)
        async def post_alert():
            ...
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e
                    if attempt < attempts - 1:
                        wait_time = delay * (backoff ** attempt)
                        logger.warning(
                            f"Retry {attempt + 1}/{attempts} for {func.__name__} "
                            f"after {wait_time:.1f}s: {e}"
                        )
                        await asyncio.sleep(wait_time)

            raise last_exception

        return wrapper

    return decorator
