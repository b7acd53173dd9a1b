from __future__ import annotations

from datetime import timedelta

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    endpoint_backend: str = Field("rabbitmq", validation_alias="ENDPOINT_BACKEND")
    queue_name: str = Field(..., validation_alias="QUEUE_NAME")

    broker_host: str = Field("localhost", validation_alias="BROKER_HOST")
    broker_port: int = Field(5672, validation_alias="BROKER_PORT")
    broker_user: str = Field("guest", validation_alias="BROKER_USER")
    broker_password: str = Field("guest", validation_alias="BROKER_PASSWORD")

    # -1 waits until cancelled; see PollingMessageChannel for the accepted range.
    polling_idle_ms: int = Field(1000, validation_alias="POLLING_IDLE_MS")
    # unconsumed RabbitMQ deliveries are requeued once held this long
    visibility_timeout_seconds: float = Field(30.0, validation_alias="VISIBILITY_TIMEOUT_SECONDS")

    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")
    max_connection_attempts: int = Field(10, validation_alias="MAX_CONNECTION_ATTEMPTS")
    max_subscribe_restarts: int = Field(5, validation_alias="MAX_SUBSCRIBE_RESTARTS")
    # a subscription that ran at least this long before failing resets the restart count
    subscribe_healthy_seconds: float = Field(60.0, validation_alias="SUBSCRIBE_HEALTHY_SECONDS")

    @property
    def polling_idle_time(self) -> timedelta:
        return timedelta(milliseconds=self.polling_idle_ms)
