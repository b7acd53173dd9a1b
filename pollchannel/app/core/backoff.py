"""Backoff utilities.

`exponential_backoff` yields the current delay for the caller to attempt an operation,
then sleeps before the next attempt. Used for broker connects and for restarting a
failed subscribe loop.
"""
import asyncio
from typing import AsyncIterator, Awaitable, Callable


async def exponential_backoff(
    initial_delay: float,
    max_delay: float,
    multiplier: float,
    max_attempts: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> AsyncIterator[float]:
    """Yield once per attempt, at most `max_attempts` times.

    The first attempt happens immediately. Between attempts the delay grows by
    `multiplier`, capped at `max_delay`. The generator only sleeps when the caller asks
    for another attempt, so breaking out after a success never waits.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
    delay = min(initial_delay, max_delay)
    for attempt in range(1, max_attempts + 1):
        yield delay
        if attempt == max_attempts:
            return
        await sleep(delay)
        delay = min(delay * multiplier, max_delay)
