"""In-memory endpoint client for tests and local mode.

Behaves like a visibility-timeout queue without the timeout: a received message stays
invisible until it is deleted or released, and every delivery gets a fresh receipt handle.
"""
from __future__ import annotations

import asyncio
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Sequence

from pollchannel.app.domain.models import DeleteEntry, Message
from pollchannel.app.ports.endpoint_client import DeleteBatchResponse, ReceiveResponse, SendResponse


@dataclass
class _Stored:
    body: str
    receipt_handle: str | None = None


class InMemoryEndpointClient:
    def __init__(self) -> None:
        self._queues: dict[str, OrderedDict[str, _Stored]] = {}
        self._lock = asyncio.Lock()

    def _queue(self, endpoint: str) -> OrderedDict[str, _Stored]:
        return self._queues.setdefault(endpoint, OrderedDict())

    def message_count(self, endpoint: str) -> int:
        return len(self._queue(endpoint))

    def in_flight_count(self, endpoint: str) -> int:
        return sum(1 for stored in self._queue(endpoint).values() if stored.receipt_handle is not None)

    async def connect(self) -> None:
        return

    async def send(self, endpoint: str, body: str) -> SendResponse:
        message_id = uuid.uuid4().hex
        async with self._lock:
            self._queue(endpoint)[message_id] = _Stored(body=body)
        return SendResponse(status_code=200, message_id=message_id)

    async def receive(self, endpoint: str, max_count: int) -> ReceiveResponse:
        messages: list[Message] = []
        async with self._lock:
            for message_id, stored in self._queue(endpoint).items():
                if len(messages) >= max_count:
                    break
                if stored.receipt_handle is not None:
                    continue
                stored.receipt_handle = uuid.uuid4().hex
                messages.append(Message(id=message_id, body=stored.body, receipt_handle=stored.receipt_handle))
        return ReceiveResponse(status_code=200, messages=messages)

    async def delete_batch(self, endpoint: str, entries: Sequence[DeleteEntry]) -> DeleteBatchResponse:
        successful: list[str] = []
        async with self._lock:
            queue = self._queue(endpoint)
            for entry in entries:
                stored = queue.get(entry.id)
                if stored is None or stored.receipt_handle != entry.receipt_handle:
                    continue
                del queue[entry.id]
                successful.append(entry.id)
        return DeleteBatchResponse(status_code=200, successful_ids=successful)

    async def release_in_flight(self, endpoint: str) -> int:
        """Make undeleted deliveries visible again, as a broker would after visibility expiry."""
        released = 0
        async with self._lock:
            for stored in self._queue(endpoint).values():
                if stored.receipt_handle is not None:
                    stored.receipt_handle = None
                    released += 1
        return released

    async def close(self) -> None:
        return
