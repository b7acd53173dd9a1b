"""Composition root for the worker.

Picks the endpoint client through the factory, connects it, and wraps it in a
PollingMessageChannel bound to the configured queue. Everything downstream sees only
the channel and client ports.
"""
from __future__ import annotations

from typing import Any

from loguru import logger

from pollchannel.app.application.message_channel import PollingMessageChannel
from pollchannel.app.config.settings import Settings
from pollchannel.app.core import SERVICE_NAME
from pollchannel.app.infrastructure.messaging.factory import create_endpoint_client
from pollchannel.app.ports.endpoint_client import EndpointClient


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


def _status_line(line: str) -> None:
    logger.bind(service_name=SERVICE_NAME, event="channel_status").debug(line)


class ChannelDependencies:
    """Holds the wired endpoint client and channel and their lifecycle."""

    def __init__(self, *, settings: Settings) -> None:
        self._settings = settings
        self._client: Any | None = None
        self._channel: PollingMessageChannel | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def client(self) -> EndpointClient:
        if self._client is None:
            raise RuntimeError("endpoint client is not initialized")
        return self._client

    @property
    def channel(self) -> PollingMessageChannel:
        if self._channel is None:
            raise RuntimeError("channel is not initialized")
        return self._channel

    async def connect(self) -> None:
        self._client = create_endpoint_client(self._settings)
        await self._client.connect()
        self._channel = PollingMessageChannel(
            self._client,
            self._settings.queue_name,
            self._settings.polling_idle_time,
            status_hook=_status_line,
        )
        _log("channel_ready", endpoint=self._settings.queue_name, backend=self._settings.endpoint_backend)

    async def close(self) -> None:
        if self._client is not None:
            try:
                await self._client.close()
            except Exception as exc:
                logger.warning("endpoint client close failed: {}", exc)
            self._client = None
        self._channel = None


def create_channel_dependencies(settings: Settings | None = None) -> ChannelDependencies:
    return ChannelDependencies(settings=settings or Settings())
