"""Channel error taxonomy.

Cancellation is not part of this hierarchy: it is always `asyncio.CancelledError`
and is never wrapped in one of these.
"""
from __future__ import annotations


class MessagingError(Exception):
    """Base for failures while talking to the messaging system through a channel."""


class ChannelArgumentError(MessagingError, ValueError):
    """Invalid construction or call argument. Raised before any side effect."""


class TransportError(MessagingError):
    """The endpoint reported a failing status, or the call to it faulted."""

    def __init__(self, message: str, *, operation: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.operation = operation
        self.status_code = status_code


class ConsumerError(MessagingError):
    """The consumer callback raised an unrecoverable error."""

    def __init__(self, message: str, cause: BaseException) -> None:
        super().__init__(message)
        self.cause = cause
        self.__cause__ = cause
