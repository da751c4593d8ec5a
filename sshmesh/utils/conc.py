"""Concurrent utilities - bounded fan-out over per-node coroutines."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable


async def map_bounded[I, O](
    fn: Callable[[I], Awaitable[O]],
    items: Iterable[I],
    concurrency: int,
) -> list[O | Exception]:
    """Apply an async function to items with at most ``concurrency`` in flight.

    Results keep input order. A failing item yields its exception in place
    of a result and never cancels its siblings; cancellation of the caller
    still propagates.

    Example:
        >>> await map_bounded(ensure_node, topology, concurrency=8)
        [LiveNode(...), NodeCreateFailed(...), ...]
    """
    sem = asyncio.Semaphore(concurrency)

    async def one(item: I) -> O:
        async with sem:
            return await fn(item)

    results = await asyncio.gather(*(one(item) for item in items), return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException) and not isinstance(result, Exception):
            raise result
    return results  # type: ignore[return-value]
