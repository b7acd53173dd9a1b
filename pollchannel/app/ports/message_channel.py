"""Port: message channel contract that surrounding code depends on."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Protocol, Sequence

# Per-message consumer: returns True when the message is safe to delete.
MessageConsumer = Callable[[str, "asyncio.Event | None"], Awaitable[bool]]

# Batch consumer: returns one verdict per body, in the same order.
BatchConsumer = Callable[[Sequence[str], "asyncio.Event | None"], Awaitable[Sequence[bool]]]

# Optional sink for human-readable status lines.
StatusHook = Callable[[str], None]


class InputMessageChannel(Protocol):
    """Posting side of a channel."""

    async def post(self, message: str, cancel_event: asyncio.Event | None = None) -> None:
        """Send one message. Raises TransportError on endpoint failure, CancelledError on cancel."""
        ...


class OutputMessageChannel(Protocol):
    """Receiving side of a channel."""

    def subscribe(
        self,
        consumer: MessageConsumer,
        cancel_event: asyncio.Event | None = None,
    ) -> asyncio.Task[None]:
        """Receive and consume on a separate task until cancelled.

        The returned task ends cancelled, or with TransportError / ConsumerError.
        """
        ...

    def subscribe_batch(
        self,
        consumer: BatchConsumer,
        cancel_event: asyncio.Event | None = None,
    ) -> asyncio.Task[None]: ...


class MessageChannel(InputMessageChannel, OutputMessageChannel, Protocol):
    """Both sides of a channel."""
