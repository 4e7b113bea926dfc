from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

Sleeper = Callable[[float], Awaitable[None]]


def compute_backoff(attempt: int, initial_delay: float) -> float:
    """Return the delay in milliseconds before re-trying after ``attempt``.

    ``attempt`` is zero-based, so the first retry waits ``initial_delay``.
    """
    return initial_delay * (2 ** attempt)


async def schedule_retry(
    attempt: int, initial_delay: float, sleep: Sleeper = asyncio.sleep
) -> float:
    """Suspend for the computed backoff and return the delay in milliseconds."""
    delay = compute_backoff(attempt, initial_delay)
    await sleep(delay / 1000)
    return delay
