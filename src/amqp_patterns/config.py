"""
Configuration constants for the amqp-patterns runtime.

This module contains centralized defaults for broker connections, well-known
exchange types and the environment variables read by the sample CLI.
"""

from dataclasses import dataclass
from enum import Enum

from amqp_patterns.exceptions import ConfigurationError

# Global service name for logging
SERVICE_NAME = "amqp-patterns"


class ExchangeType(str, Enum):
    DIRECT = "direct"
    FANOUT = "fanout"
    TOPIC = "topic"

    @classmethod
    def validate(cls, value) -> "ExchangeType":
        """Validate and return the exchange type, raising ConfigurationError otherwise."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(
                f"Unknown exchange type: {value!r}. Valid options are: {', '.join(t.value for t in cls)}"
            ) from None


@dataclass(frozen=True)
class PatternDefaults:
    """Exchange settings applied by the pattern factory."""

    exchange_type: ExchangeType
    durable: bool
    with_ack: bool


class PatternConfig:
    """Centralized configuration for the supported messaging patterns."""

    FANOUT = "fanout"
    TASK = "task"
    TOPIC = "topic"

    PATTERNS = {
        FANOUT: PatternDefaults(
            exchange_type=ExchangeType.FANOUT, durable=False, with_ack=False
        ),
        TASK: PatternDefaults(
            exchange_type=ExchangeType.DIRECT, durable=True, with_ack=True
        ),
        TOPIC: PatternDefaults(
            exchange_type=ExchangeType.TOPIC, durable=True, with_ack=True
        ),
    }

    @classmethod
    def get_pattern(cls, pattern: str) -> PatternDefaults:
        """Get pattern defaults by name."""
        if pattern not in cls.PATTERNS:
            raise ConfigurationError(
                f"Unknown pattern: {pattern}. Valid options are: {', '.join(cls.PATTERNS)}"
            )
        return cls.PATTERNS[pattern]


# Connection defaults, merged into every normalized host
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5672
DEFAULT_USER = "guest"
DEFAULT_PASSWORD = "guest"
DEFAULT_VHOST = "/"
DEFAULT_OPTIONS = {
    "lazy": False,
    "timeout": 5,
}

# Route used by DefaultRouteMap.set_default_exchange()
DEFAULT_ROUTING_KEY = "internal_messages"
DEFAULT_CONTENT_TYPE = "application/json"

# Sample CLI environment
ENV_HOST = "AMQP_PATTERNS_HOST"
ENV_HOST_LIST = "AMQP_PATTERNS_HOST_LIST"
ENV_SHUFFLE_HOSTS = "AMQP_PATTERNS_SHUFFLE_HOSTS"
ENV_EXCHANGE_PUBSUB = "AMQP_PATTERNS_EXCHANGE_PUBSUB"
ENV_EXCHANGE_WORKER = "AMQP_PATTERNS_EXCHANGE_WORKER"
ENV_EXCHANGE_TOPIC = "AMQP_PATTERNS_EXCHANGE_TOPIC"
