"""Delays for connect retries.

Each value yielded is one attempt; the caller runs its connect inside the loop
and returns once it works. Between yields the generator sleeps, growing the
delay by `multiplier` up to `max_delay`.
"""
import asyncio
from typing import AsyncIterator


def next_delay(current: float, multiplier: float, max_delay: float) -> float:
    return min(current * multiplier, max_delay)


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
) -> AsyncIterator[float]:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    delay = max(0.0, initial_delay)
    for attempt in range(1, max_attempts + 1):
        yield delay
        if attempt < max_attempts:
            delay = next_delay(delay, multiplier, max_delay)
            await asyncio.sleep(delay)
