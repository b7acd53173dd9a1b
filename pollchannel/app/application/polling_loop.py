"""Polling loop: receive -> fan-out consume -> selective acknowledge, until cancelled.

States:
  CheckCancel -> Receive -> (empty: status "no message" -> idle wait -> CheckCancel)
                          | (non-empty: Invoke -> Acknowledge -> status summary -> CheckCancel)
Cancellation is observed at loop entry and at every suspension point (receive, consumer
join, delete, idle wait). Iterations never overlap. Any TransportError / ConsumerError
ends the loop; restarting it is the caller's decision.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Sequence

from loguru import logger

from pollchannel.app.application.cancellation import raise_if_cancelled, run_cancellable, wait_cancellable
from pollchannel.app.application.consumers import consumed_messages, invoke_consumer
from pollchannel.app.constants import RECEIVE_BATCH_LIMIT, is_failure_status
from pollchannel.app.core import SERVICE_NAME
from pollchannel.app.domain.errors import ChannelArgumentError, TransportError
from pollchannel.app.domain.models import BatchSummary, Message
from pollchannel.app.ports.endpoint_client import EndpointClient
from pollchannel.app.ports.message_channel import BatchConsumer, StatusHook


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def emit_status(status_hook: StatusHook | None, line: str) -> None:
    if status_hook is None:
        return
    try:
        status_hook(line)
    except Exception as e:
        logger.warning("status hook failed: {}", e)


async def bulk_receive(
    client: EndpointClient,
    endpoint: str,
    limit: int,
    cancel_event: asyncio.Event | None,
) -> list[Message]:
    if not 1 <= limit <= RECEIVE_BATCH_LIMIT:
        raise ChannelArgumentError(f"limit must be between 1 and {RECEIVE_BATCH_LIMIT}, got {limit}")

    try:
        response = await run_cancellable(client.receive(endpoint, limit), cancel_event)
    except Exception as exc:
        raise TransportError(
            "The message reception request failed.", operation="receive"
        ) from exc
    if is_failure_status(response.status_code):
        raise TransportError(
            f"The response for receiving messages is {response.status_code}.",
            operation="receive",
            status_code=response.status_code,
        )
    return list(response.messages or [])


async def bulk_acknowledge(
    client: EndpointClient,
    endpoint: str,
    messages: Sequence[Message],
    cancel_event: asyncio.Event | None,
) -> int:
    """Delete `messages` in one request and return how many the endpoint confirmed."""
    entries = [message.to_delete_entry() for message in messages]
    if not entries:
        return 0

    try:
        response = await run_cancellable(client.delete_batch(endpoint, entries), cancel_event)
    except Exception as exc:
        raise TransportError(
            "The message deletion request failed.", operation="delete_batch"
        ) from exc
    if is_failure_status(response.status_code):
        raise TransportError(
            f"The response for deleting messages is {response.status_code}.",
            operation="delete_batch",
            status_code=response.status_code,
        )

    requested_ids = {entry.id for entry in entries}
    deleted = len([i for i in response.successful_ids if i in requested_ids])
    if deleted < len(entries):
        _log("partial_delete", endpoint=endpoint, requested=len(entries), deleted=deleted)
    return deleted


class PollingLoop:
    """Runs the subscribe cycle for one endpoint. Holds no state between iterations."""

    def __init__(
        self,
        client: EndpointClient,
        endpoint: str,
        *,
        idle_seconds: float | None,
        cancel_event: asyncio.Event | None = None,
        status_hook: StatusHook | None = None,
        limit: int = RECEIVE_BATCH_LIMIT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not 1 <= limit <= RECEIVE_BATCH_LIMIT:
            raise ChannelArgumentError(f"limit must be between 1 and {RECEIVE_BATCH_LIMIT}, got {limit}")
        self._client = client
        self._endpoint = endpoint
        self._idle_seconds = idle_seconds
        self._cancel_event = cancel_event
        self._status_hook = status_hook
        self._limit = limit
        self._sleep = sleep

    async def run(self, consumer: BatchConsumer) -> None:
        _log("subscribe_started", endpoint=self._endpoint, limit=self._limit)
        try:
            while True:
                await self.run_once(consumer)
        except asyncio.CancelledError:
            _log("subscribe_cancelled", endpoint=self._endpoint)
            raise
        except Exception as e:
            logger.bind(service_name=SERVICE_NAME, event="subscribe_failed").warning(
                "subscribe loop failed: {}", e
            )
            raise

    async def run_once(self, consumer: BatchConsumer) -> BatchSummary | None:
        """One iteration. Returns None when the receive was empty (after the idle wait)."""
        raise_if_cancelled(self._cancel_event)

        messages = await bulk_receive(self._client, self._endpoint, self._limit, self._cancel_event)
        if not messages:
            emit_status(self._status_hook, "no message")
            _log("receive_empty", endpoint=self._endpoint, idle_seconds=self._idle_seconds)
            await wait_cancellable(self._idle_seconds, self._cancel_event, sleep=self._sleep)
            return None

        verdicts = await invoke_consumer(consumer, messages, self._cancel_event)
        consumed = consumed_messages(messages, verdicts)
        deleted = await bulk_acknowledge(self._client, self._endpoint, consumed, self._cancel_event)

        summary = BatchSummary(
            requested=self._limit,
            received=len(messages),
            consumed=len(consumed),
            deleted=deleted,
        )
        emit_status(self._status_hook, summary.status_line())
        _log(
            "batch_processed",
            endpoint=self._endpoint,
            requested=summary.requested,
            received=summary.received,
            consumed=summary.consumed,
            deleted=summary.deleted,
        )
        return summary
