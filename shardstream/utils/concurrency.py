"""
Bounded fan-out over asyncio.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_CONCURRENCY = 10


async def bounded_map(
    items: Iterable[T],
    func: Callable[[T], Awaitable[R]],
    limit: int = DEFAULT_CONCURRENCY,
) -> List[R]:
    """
    Run ``func`` over ``items`` with at most ``limit`` calls in flight.

    Results come back in input order. Every call runs to completion before
    anything is raised; if any call failed, the first failure (in input
    order) is re-raised afterwards.

    Args:
        items: Inputs, one task each
        func: Coroutine function applied to each input
        limit: Maximum concurrent calls

    Returns:
        Results in the same order as ``items``
    """
    if limit <= 0:
        raise ValueError("limit must be positive")

    semaphore = asyncio.Semaphore(limit)

    async def run(item: T) -> R:
        async with semaphore:
            return await func(item)

    results = await asyncio.gather(*(run(item) for item in items), return_exceptions=True)

    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results
