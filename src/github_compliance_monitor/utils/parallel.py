"""
Bounded concurrency helpers for per-repository work inside a stage.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def gather_bounded(
    func: Callable[[T], Awaitable[R]],
    items: list[T],
    max_concurrency: int = 4,
) -> list[R]:
    """
    Apply an async function to items with at most ``max_concurrency`` in flight.

    Args:
        func: Async function to apply
        items: Items to process
        max_concurrency: Maximum concurrent calls

    Returns:
        Results in the order of ``items``

    Raises:
        The first exception raised by ``func``; calls still pending or
        running are cancelled before it propagates
    """
    if not items:
        return []

    semaphore = asyncio.Semaphore(max_concurrency)

    async def process_item(item: T) -> R:
        async with semaphore:
            return await func(item)

    tasks = [asyncio.ensure_future(process_item(item)) for item in items]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
