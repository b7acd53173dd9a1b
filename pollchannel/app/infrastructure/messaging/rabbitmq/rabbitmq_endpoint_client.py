"""
RabbitMQ endpoint client: pull-based send / receive / batch-delete over aio_pika.

Lifecycle:
  DISCONNECTED -> CONNECTING (backoff) -> CONNECTED -> CHANNEL_OPEN -> READY.
  On broker disconnect: READY -> RECONNECTING; the robust connection restores itself and
  its channel, then reconnect_callbacks move the client back to READY.
  On shutdown: READY/RECONNECTING -> CLOSING -> close channel/connection -> CLOSED.

Mapping onto the endpoint contract:
  - receive pulls with basic.get (queue.get(no_ack=False)). The receipt handle is
    "<generation>:<delivery tag>"; the generation changes on every (re)connect, so a
    handle from a lost channel never matches a delivery on the new one.
  - delete_batch acks every entry whose delivery is still pending and whose message id
    matches.
  - A pending delivery older than the visibility timeout is nacked with requeue at the
    start of the next receive, so unconsumed messages come back while the channel lives.
    Deliveries lost with a channel are requeued by the broker.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import aio_pika
from aio_pika import DeliveryMode
from aio_pika.abc import AbstractIncomingMessage
from loguru import logger

from pollchannel.app.config.settings import Settings
from pollchannel.app.core import SERVICE_NAME
from pollchannel.app.core.backoff import exponential_backoff
from pollchannel.app.domain.models import DeleteEntry, Message
from pollchannel.app.infrastructure.messaging.rabbitmq.constants import ClientState
from pollchannel.app.ports.endpoint_client import DeleteBatchResponse, ReceiveResponse, SendResponse

STATUS_OK = 200
RECEIVE_TIMEOUT_SECONDS = 5.0
PUBLISH_TIMEOUT_SECONDS = 10.0


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _message_id(raw: AbstractIncomingMessage) -> str:
    return raw.message_id or f"tag-{raw.delivery_tag}"


@dataclass
class _PendingDelivery:
    raw: AbstractIncomingMessage
    received_at: float


class RabbitMQEndpointClient:
    """EndpointClient implementation"""

    def __init__(self, settings: Settings, clock: Callable[[], float] = time.monotonic) -> None:
        self._settings = settings
        self._clock = clock
        self._state = ClientState.DISCONNECTED
        self._connection: aio_pika.RobustConnection | None = None
        self._channel: aio_pika.abc.AbstractChannel | None = None
        self._queues: dict[str, aio_pika.abc.AbstractQueue] = {}
        self._pending: dict[str, _PendingDelivery] = {}
        self._generation = 0
        self._lock = asyncio.Lock()
        self._closing = False

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state == ClientState.READY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _set_state(self, state: ClientState) -> None:
        self._state = state

    def _build_amqp_url(self) -> str:
        return (
            f"amqp://{self._settings.broker_user}:{self._settings.broker_password}"
            f"@{self._settings.broker_host}:{self._settings.broker_port}/"
        )

    def _register_callbacks(self, connection: aio_pika.RobustConnection) -> None:
        connection.close_callbacks.add(self._on_connection_closed)
        connection.reconnect_callbacks.add(self._on_reconnected)

    def _on_connection_closed(self, *args: Any, **kwargs: Any) -> None:
        if self._closing:
            return
        self._set_state(ClientState.RECONNECTING)
        _log("broker_disconnect_detected", pending=len(self._pending))
        # deliveries of the lost channel can no longer be acked; the broker requeues them
        self._pending.clear()
        self._generation += 1

    def _on_reconnected(self, *args: Any, **kwargs: Any) -> None:
        if self._closing:
            return
        self._set_state(ClientState.READY)
        _log("broker_reconnected", generation=self._generation)

    async def connect(self) -> None:
        self._closing = False
        self._set_state(ClientState.CONNECTING)
        _log("endpoint_connecting", backend="rabbitmq")
        attempt = 0
        async for delay in exponential_backoff(
            self._settings.initial_backoff_seconds,
            self._settings.max_backoff_seconds,
            self._settings.backoff_multiplier,
            self._settings.max_connection_attempts,
        ):
            attempt += 1
            _log("endpoint_connect_attempt", attempt=attempt, delay=delay)
            try:
                self._connection = await aio_pika.connect_robust(self._build_amqp_url())
                self._register_callbacks(self._connection)
                break
            except Exception as e:
                logger.warning("rmq connect failed: {}", e)
                if attempt >= self._settings.max_connection_attempts:
                    self._set_state(ClientState.DISCONNECTED)
                    raise
        self._generation += 1
        self._set_state(ClientState.CONNECTED)
        _log("endpoint_connected", backend="rabbitmq")
        await self._open_channel()

    async def _open_channel(self) -> aio_pika.abc.AbstractChannel:
        if self._connection is None:
            raise RuntimeError("endpoint client not connected")
        self._channel = await self._connection.channel(publisher_confirms=True)
        self._set_state(ClientState.CHANNEL_OPEN)
        self._set_state(ClientState.READY)
        return self._channel

    async def _get_queue(self, endpoint: str) -> aio_pika.abc.AbstractQueue:
        async with self._lock:
            if self._closing:
                raise RuntimeError("endpoint client is closing")
            channel = self._channel or await self._open_channel()
            queue = self._queues.get(endpoint)
            if queue is None:
                queue = await channel.declare_queue(endpoint, durable=True)
                self._queues[endpoint] = queue
            return queue

    async def _release_expired(self) -> int:
        """Nack-with-requeue every pending delivery held longer than the visibility timeout."""
        deadline = self._clock() - self._settings.visibility_timeout_seconds
        expired = [handle for handle, pending in self._pending.items() if pending.received_at <= deadline]
        for handle in expired:
            pending = self._pending.pop(handle)
            try:
                await pending.raw.nack(requeue=True)
            except Exception as e:
                logger.warning("requeue of expired delivery {} failed: {}", handle, e)
        if expired:
            _log("deliveries_requeued", count=len(expired))
        return len(expired)

    async def send(self, endpoint: str, body: str) -> SendResponse:
        await self._get_queue(endpoint)
        if self._channel is None:
            raise RuntimeError("connection_lost")
        message_id = uuid.uuid4().hex
        await self._channel.default_exchange.publish(
            aio_pika.Message(
                body.encode(),
                delivery_mode=DeliveryMode.PERSISTENT,
                message_id=message_id,
            ),
            routing_key=endpoint,
            timeout=PUBLISH_TIMEOUT_SECONDS,
        )
        return SendResponse(status_code=STATUS_OK, message_id=message_id)

    async def receive(self, endpoint: str, max_count: int) -> ReceiveResponse:
        queue = await self._get_queue(endpoint)
        await self._release_expired()
        messages: list[Message] = []
        while len(messages) < max_count:
            raw = await queue.get(no_ack=False, fail=False, timeout=RECEIVE_TIMEOUT_SECONDS)
            if raw is None:
                break
            receipt_handle = f"{self._generation}:{raw.delivery_tag}"
            self._pending[receipt_handle] = _PendingDelivery(raw=raw, received_at=self._clock())
            messages.append(
                Message(id=_message_id(raw), body=raw.body.decode(), receipt_handle=receipt_handle)
            )
        return ReceiveResponse(status_code=STATUS_OK, messages=messages)

    async def delete_batch(self, endpoint: str, entries: Sequence[DeleteEntry]) -> DeleteBatchResponse:
        successful: list[str] = []
        for entry in entries:
            pending = self._pending.get(entry.receipt_handle)
            if pending is None or _message_id(pending.raw) != entry.id:
                continue
            await pending.raw.ack()
            del self._pending[entry.receipt_handle]
            successful.append(entry.id)
        return DeleteBatchResponse(status_code=STATUS_OK, successful_ids=successful)

    async def _close_channel_and_connection(self) -> None:
        self._queues.clear()
        self._pending.clear()
        if self._channel:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None

    async def close(self) -> None:
        self._closing = True
        self._set_state(ClientState.CLOSING)
        async with self._lock:
            await self._close_channel_and_connection()
        self._set_state(ClientState.CLOSED)
        _log("endpoint_closed", backend="rabbitmq")
