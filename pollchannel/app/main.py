"""Worker entry point: subscribe a logging consumer to the configured queue until a signal arrives."""
from __future__ import annotations

import asyncio
import json
import signal
from typing import Any

from loguru import logger

from pollchannel.app.application.cancellation import wait_cancellable
from pollchannel.app.composition import create_channel_dependencies
from pollchannel.app.config.settings import Settings
from pollchannel.app.core import SERVICE_NAME
from pollchannel.app.core.backoff import exponential_backoff
from pollchannel.app.domain.errors import TransportError
from pollchannel.app.ports.message_channel import MessageConsumer, OutputMessageChannel


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def log_message_consumer(body: str, cancel_event: asyncio.Event | None) -> bool:
    """Log JSON bodies. Undecodable bodies are not consumed, so they come back later."""
    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.warning("undecodable message left for redelivery: {}", e)
        return False
    _log("message_received", payload=payload)
    return True


async def supervise_subscription(
    channel: OutputMessageChannel,
    consumer: MessageConsumer,
    cancel_event: asyncio.Event,
    settings: Settings,
) -> None:
    """Keep a subscription alive: restart it after a TransportError, with exponential backoff.

    The backoff wait ends early when the cancel event is set. A subscription that ran for
    `subscribe_healthy_seconds` before failing starts a fresh restart budget. Returns once
    the cancel event ends the subscription. ConsumerError is not retried.
    """

    async def _backoff_sleep(seconds: float) -> None:
        await wait_cancellable(seconds, cancel_event)

    loop = asyncio.get_running_loop()
    try:
        while True:
            attempt = 0
            async for _ in exponential_backoff(
                settings.initial_backoff_seconds,
                settings.max_backoff_seconds,
                settings.backoff_multiplier,
                settings.max_subscribe_restarts + 1,
                sleep=_backoff_sleep,
            ):
                attempt += 1
                if attempt > 1:
                    _log("subscribe_restart", attempt=attempt)
                started = loop.time()
                try:
                    await channel.subscribe(consumer, cancel_event)
                except TransportError as e:
                    logger.warning("subscribe failed during {} (status={}): {}", e.operation, e.status_code, e)
                    if loop.time() - started >= settings.subscribe_healthy_seconds:
                        _log("subscribe_restart_budget_reset", attempts=attempt)
                        break
                    if attempt > settings.max_subscribe_restarts:
                        raise
    except asyncio.CancelledError:
        if cancel_event.is_set():
            return
        raise


async def run_worker() -> None:
    settings = Settings()
    deps = create_channel_dependencies(settings)
    await deps.connect()

    shutdown = asyncio.Event()

    def request_shutdown() -> None:
        if not shutdown.is_set():
            _log("shutdown_signal")
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
        except NotImplementedError:
            pass

    _log("worker_started", endpoint=settings.queue_name)
    try:
        await supervise_subscription(deps.channel, log_message_consumer, shutdown, settings)
    finally:
        await deps.close()
        _log("worker_stopped")


def main() -> None:
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        _log("worker_interrupted")
    except Exception as e:
        logger.exception("worker failed: {}", e)
        raise


if __name__ == "__main__":
    main()
