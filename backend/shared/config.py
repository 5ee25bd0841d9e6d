"""
Process configuration for the scheduler and the channel consumers.

Everything is read from the environment (a local .env file is loaded first)
once at startup into an immutable Settings object that entry points pass to
each component. Broker names must match between every producer and consumer
of a deployment; there is no discovery.
"""

import os
from collections.abc import Mapping
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from models.types import Channel, Frequency
from shared.errors import ConfigurationError

DEFAULT_CRONS = {
    Frequency.HOURLY: "0 * * * *",
    Frequency.DAILY: "0 8 * * *",
}


class QueueConfig(BaseModel):
    """Static broker binding for one channel."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    exchange_name: str = Field(..., min_length=1)
    queue_name: str = Field(..., min_length=1)
    routing_key: str = Field(..., min_length=1)
    prefetch: int | None = Field(None, ge=1)


class TierSchedule(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    frequency: Frequency
    cron: str

    @field_validator("cron")
    @classmethod
    def _five_fields(cls, value: str) -> str:
        if len(value.split()) != 5:
            raise ValueError(f"cron expression needs 5 fields: {value!r}")
        return value


class RetryPolicy(BaseModel):
    """What a consumer does when a send fails.

    "none" makes exactly one attempt per delivered message. "backoff" retries
    in-process up to max_attempts with exponential delays; the message is
    only acked or nacked once all attempts are done.
    """

    model_config = ConfigDict(frozen=True)

    mode: Literal["none", "backoff"] = "none"
    max_attempts: int = Field(3, ge=1)
    base_seconds: float = Field(2.0, ge=0)

    @property
    def attempts(self) -> int:
        return 1 if self.mode == "none" else self.max_attempts

    def delay_before(self, attempt: int) -> float:
        """Backoff before the given (2-based) retry attempt."""
        return self.base_seconds * 2 ** (attempt - 2)


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    rabbitmq_url: str
    queues: dict[Channel, QueueConfig]
    tiers: dict[Frequency, TierSchedule]

    weather_fetcher_url: str
    weather_request_timeout: float = Field(5.0, gt=0)
    weather_health_timeout: float = Field(3.0, gt=0)
    weather_cache_ttl_seconds: int = Field(0, ge=0)
    scheduler_max_concurrent_cities: int = Field(1, ge=1)

    rate_limits_ms: dict[Channel, int]
    retry_policy: RetryPolicy = RetryPolicy()

    resend_api_key: str | None = None
    notification_from_email: str = "weather-notifications@example.com"
    notification_sender_name: str = "Weather Notification"
    frontend_base_url: str | None = None
    unsubscribe_secret_key: str | None = None
    telegram_bot_token: str | None = None
    telegram_api_base: str = "https://api.telegram.org"

    supabase_url: str | None = None
    supabase_service_key: str | None = None

    publish_timeout_seconds: float = Field(5.0, gt=0)
    reconnect_delay_seconds: float = Field(5.0, ge=0)
    shutdown_timeout_seconds: float = Field(10.0, ge=0)
    log_level: str = "INFO"

    def queue_for(self, channel: Channel) -> QueueConfig:
        try:
            return self.queues[channel]
        except KeyError:
            raise ConfigurationError(f"No queue configured for channel {channel.value}")

    def rate_limit_seconds(self, channel: Channel) -> float:
        return self.rate_limits_ms.get(channel, 0) / 1000


def _get(env: Mapping[str, str], name: str, default: str | None = None) -> str | None:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _get_number(env: Mapping[str, str], name: str, default: float, cast=int):
    raw = _get(env, name)
    if raw is None:
        return cast(default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


def _queue_configs(env: Mapping[str, str]) -> dict[Channel, QueueConfig]:
    exchange = _get(env, "RABBITMQ_EXCHANGE", "weather_notifications")
    queues = {}
    for channel in Channel:
        prefix = f"RABBITMQ_{channel.name}"
        queues[channel] = QueueConfig(
            exchange_name=exchange,
            queue_name=_get(env, f"{prefix}_QUEUE", f"{channel.value}_notifications"),
            routing_key=_get(env, f"{prefix}_ROUTING_KEY", f"weather.{channel.value}"),
            prefetch=_get_number(env, f"{prefix}_PREFETCH", 1),
        )
    return queues


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        env: Mapping to read instead of os.environ (tests). When omitted,
            a .env file is loaded into the process environment first.

    Returns:
        Immutable Settings

    Raises:
        ConfigurationError: If any value is malformed
    """
    if env is None:
        load_dotenv()
        env = os.environ

    try:
        return Settings(
            rabbitmq_url=_get(env, "RABBITMQ_URL", "amqp://localhost:5672"),
            queues=_queue_configs(env),
            tiers={
                frequency: TierSchedule(
                    frequency=frequency,
                    cron=_get(env, f"{frequency.name}_CRON", DEFAULT_CRONS[frequency]),
                )
                for frequency in Frequency
            },
            weather_fetcher_url=_get(env, "WEATHER_FETCHER_URL", "http://localhost:3000"),
            weather_request_timeout=_get_number(env, "WEATHER_REQUEST_TIMEOUT", 5, float),
            weather_health_timeout=_get_number(env, "WEATHER_HEALTH_TIMEOUT", 3, float),
            weather_cache_ttl_seconds=_get_number(env, "WEATHER_CACHE_TTL_SECONDS", 0),
            scheduler_max_concurrent_cities=_get_number(
                env, "SCHEDULER_MAX_CONCURRENT_CITIES", 1
            ),
            rate_limits_ms={
                channel: _get_number(env, f"{channel.name}_RATE_LIMIT_MS", 500)
                for channel in Channel
            },
            retry_policy=RetryPolicy(
                mode=_get(env, "SEND_RETRY_POLICY", "none").lower(),
                max_attempts=_get_number(env, "SEND_MAX_ATTEMPTS", 3),
                base_seconds=_get_number(env, "SEND_RETRY_BASE_SECONDS", 2, float),
            ),
            resend_api_key=_get(env, "RESEND_API_KEY"),
            notification_from_email=_get(
                env, "NOTIFICATION_FROM_EMAIL", "weather-notifications@example.com"
            ),
            notification_sender_name=_get(
                env, "NOTIFICATION_SENDER_NAME", "Weather Notification"
            ),
            frontend_base_url=_get(env, "FRONTEND_BASE_URL"),
            unsubscribe_secret_key=_get(env, "UNSUBSCRIBE_SECRET_KEY"),
            telegram_bot_token=_get(env, "TELEGRAM_BOT_TOKEN"),
            telegram_api_base=_get(env, "TELEGRAM_API_BASE", "https://api.telegram.org"),
            supabase_url=_get(env, "SUPABASE_URL"),
            supabase_service_key=_get(env, "SUPABASE_SERVICE_KEY"),
            publish_timeout_seconds=_get_number(env, "PUBLISH_TIMEOUT_SECONDS", 5, float),
            reconnect_delay_seconds=_get_number(env, "RECONNECT_DELAY_SECONDS", 5, float),
            shutdown_timeout_seconds=_get_number(env, "SHUTDOWN_TIMEOUT_SECONDS", 10, float),
            log_level=_get(env, "LOG_LEVEL", "INFO"),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
