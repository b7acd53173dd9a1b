"""PollingMessageChannel: MessageChannel backed by a pull-based queue endpoint.

post() sends synchronously relative to its caller; subscribe() hands the polling loop to
a dedicated asyncio task and returns that task. Nothing is retried here: callers own
retry policy and restart subscribe() themselves.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

from loguru import logger

from pollchannel.app.application.cancellation import run_cancellable
from pollchannel.app.application.consumers import as_batch_consumer
from pollchannel.app.application.polling_loop import PollingLoop
from pollchannel.app.constants import MAX_IDLE_MILLISECONDS, WAIT_INDEFINITELY, is_failure_status
from pollchannel.app.core import SERVICE_NAME
from pollchannel.app.domain.errors import ChannelArgumentError, TransportError
from pollchannel.app.ports.endpoint_client import EndpointClient
from pollchannel.app.ports.message_channel import BatchConsumer, MessageConsumer, StatusHook


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _idle_seconds(polling_idle_time: timedelta) -> float | None:
    if not isinstance(polling_idle_time, timedelta):
        raise ChannelArgumentError("polling_idle_time must be a timedelta")
    if polling_idle_time == WAIT_INDEFINITELY:
        return None
    milliseconds = polling_idle_time / timedelta(milliseconds=1)
    if milliseconds < 0 or milliseconds > MAX_IDLE_MILLISECONDS:
        raise ChannelArgumentError(
            f"polling_idle_time must be between 0 and {MAX_IDLE_MILLISECONDS} ms "
            f"(or WAIT_INDEFINITELY), got {milliseconds} ms"
        )
    return polling_idle_time.total_seconds()


class PollingMessageChannel:
    """MessageChannel implementation.

    Args:
        client: Endpoint client used for send/receive/delete.
        endpoint: Queue address held for the channel's lifetime.
        polling_idle_time: Wait after an empty receive. WAIT_INDEFINITELY (-1 ms) waits
            until cancelled.
        status_hook: Optional sink for status lines ("no message", "(10, 2, 2, 2)").
    """

    def __init__(
        self,
        client: EndpointClient,
        endpoint: str,
        polling_idle_time: timedelta = timedelta(seconds=1),
        status_hook: StatusHook | None = None,
    ) -> None:
        if client is None:
            raise ChannelArgumentError("client is required")
        if endpoint is None:
            raise ChannelArgumentError("endpoint is required")
        self._client = client
        self._endpoint = endpoint
        self._idle_seconds = _idle_seconds(polling_idle_time)
        self._status_hook = status_hook

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def post(self, message: str, cancel_event: asyncio.Event | None = None) -> None:
        if message is None:
            raise ChannelArgumentError("message is required")

        try:
            response = await run_cancellable(self._client.send(self._endpoint, message), cancel_event)
        except Exception as exc:
            raise TransportError("The message registration request failed.", operation="send") from exc
        if is_failure_status(response.status_code):
            raise TransportError(
                f"The response for sending a message is {response.status_code}.",
                operation="send",
                status_code=response.status_code,
            )
        _log("message_posted", endpoint=self._endpoint, message_id=response.message_id)

    def subscribe(
        self,
        consumer: MessageConsumer,
        cancel_event: asyncio.Event | None = None,
    ) -> asyncio.Task[None]:
        if consumer is None:
            raise ChannelArgumentError("consumer is required")
        return self.subscribe_batch(as_batch_consumer(consumer), cancel_event)

    def subscribe_batch(
        self,
        consumer: BatchConsumer,
        cancel_event: asyncio.Event | None = None,
    ) -> asyncio.Task[None]:
        if consumer is None:
            raise ChannelArgumentError("consumer is required")

        loop = PollingLoop(
            self._client,
            self._endpoint,
            idle_seconds=self._idle_seconds,
            cancel_event=cancel_event,
            status_hook=self._status_hook,
        )
        return asyncio.get_running_loop().create_task(
            loop.run(consumer),
            name=f"subscribe:{self._endpoint}",
        )
