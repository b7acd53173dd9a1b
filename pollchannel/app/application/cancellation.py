"""Cooperative cancellation on top of an asyncio.Event.

`run_cancellable` races an awaitable against the cancel event. When the event wins,
the in-flight work is cancelled and awaited until it has unwound, then
asyncio.CancelledError is raised. Native task cancellation is handled the same way.
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, TypeVar

from loguru import logger

T = TypeVar("T")


def raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise asyncio.CancelledError("cancel event is set")


async def _cancel_and_wait(work: asyncio.Future) -> None:
    work.cancel()
    await asyncio.wait({work})
    if not work.cancelled() and work.exception() is not None:
        logger.debug("work finished with an error while being cancelled: {}", work.exception())


async def run_cancellable(aw: Awaitable[T], cancel_event: asyncio.Event | None) -> T:
    if cancel_event is None:
        return await aw
    if cancel_event.is_set():
        if inspect.iscoroutine(aw):
            aw.close()
        raise asyncio.CancelledError("cancel event is set")

    work = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        await _cancel_and_wait(work)
        raise
    finally:
        waiter.cancel()

    if cancel_event.is_set():
        if work.done():
            if not work.cancelled():
                # consume the outcome; the cancellation wins anyway
                work.exception()
        else:
            await _cancel_and_wait(work)
        raise asyncio.CancelledError("cancel event is set")
    return work.result()


async def wait_cancellable(seconds: float | None, cancel_event: asyncio.Event | None, sleep=asyncio.sleep) -> None:
    """Sleep for `seconds`, or until cancelled when `seconds` is None."""
    if seconds is None:
        forever = asyncio.get_running_loop().create_future()
        await run_cancellable(forever, cancel_event)
        return
    await run_cancellable(sleep(seconds), cancel_event)
