"""asyncio helpers for concurrent repository calls."""

import asyncio
from typing import Any, Awaitable, List


async def gather_or_cancel(*aws: Awaitable) -> List[Any]:
    """Run awaitables concurrently and return their results in order.

    Unlike a bare ``asyncio.gather``, the first failure (or cancellation of
    the caller) cancels the remaining awaitables and waits for them to
    finish before the exception propagates, so no sub-query outlives the
    call.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
