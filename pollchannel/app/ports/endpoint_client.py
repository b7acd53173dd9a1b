"""Endpoint client port: contract of the queue service behind a channel.

Application code depends on this port; infrastructure (e.g. aio_pika) implements it.
Every operation reports a status code; codes >= 400 are failures whatever the exact
value. Implementations may also raise on transport faults; the channel wraps those.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence, runtime_checkable

from pollchannel.app.domain.models import DeleteEntry, Message


@dataclass(frozen=True)
class SendResponse:
    status_code: int
    message_id: str | None = None


@dataclass(frozen=True)
class ReceiveResponse:
    status_code: int
    messages: list[Message] = field(default_factory=list)


@dataclass(frozen=True)
class DeleteBatchResponse:
    status_code: int
    successful_ids: list[str] = field(default_factory=list)


@runtime_checkable
class EndpointClient(Protocol):
    """Port: send, receive and batch-delete against a queue endpoint."""

    async def send(self, endpoint: str, body: str) -> SendResponse: ...

    async def receive(self, endpoint: str, max_count: int) -> ReceiveResponse:
        """Return up to max_count messages; an empty list when nothing is available."""
        ...

    async def delete_batch(self, endpoint: str, entries: Sequence[DeleteEntry]) -> DeleteBatchResponse:
        """Delete the given deliveries; successful_ids lists the entries actually deleted."""
        ...
