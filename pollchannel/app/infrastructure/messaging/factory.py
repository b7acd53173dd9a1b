"""Endpoint client factory: selects implementation from config. Only place that imports concrete clients."""
from __future__ import annotations

from pollchannel.app.config.settings import Settings
from pollchannel.app.infrastructure.messaging.inmemory.in_memory_endpoint_client import InMemoryEndpointClient
from pollchannel.app.infrastructure.messaging.rabbitmq.rabbitmq_endpoint_client import RabbitMQEndpointClient


def create_endpoint_client(settings: Settings) -> InMemoryEndpointClient | RabbitMQEndpointClient:
    backend = settings.endpoint_backend.strip().lower()

    if backend == "rabbitmq":
        return RabbitMQEndpointClient(settings)
    if backend == "inmemory":
        return InMemoryEndpointClient()

    raise ValueError(f"Unsupported endpoint backend: {backend}")
