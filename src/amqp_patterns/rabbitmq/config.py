import dataclasses
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from amqp_patterns.config import ExchangeType
from amqp_patterns.exceptions import ConfigurationError


@dataclass(frozen=True)
class ExchangeConfig:
    name: str
    type: ExchangeType = ExchangeType.DIRECT
    durable: bool = True
    auto_declare: bool = True

    def __post_init__(self):
        object.__setattr__(self, "type", ExchangeType.validate(self.type))


@dataclass(frozen=True)
class QueueConfig:
    # NOTE: an empty name means the broker picks one for us
    name: Optional[str]

    durable: bool
    exclusive: bool
    auto_delete: bool

    binding_keys: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_anonymous(self) -> bool:
        return not self.name

    @classmethod
    def for_name(
        cls, name: Optional[str], binding_keys: Iterable[str] = ()
    ) -> "QueueConfig":
        """
        Build the queue settings used by every pattern.

        Named queues outlive their consumers so that several workers can share
        them. Anonymous queues belong to the declaring channel and go away with it.
        """
        if name:
            return cls(
                name=name,
                durable=True,
                exclusive=False,
                auto_delete=False,
                binding_keys=tuple(binding_keys),
            )
        return cls(
            name=None,
            durable=False,
            exclusive=True,
            auto_delete=True,
            binding_keys=tuple(binding_keys),
        )


@dataclass(frozen=True)
class SessionConfig:
    """Immutable delivery session settings, see SessionConfigBuilder."""

    exchange: Optional[str] = None
    exchange_type: ExchangeType = ExchangeType.DIRECT
    durable: bool = True
    declare_exchange: bool = True
    with_ack: bool = False
    queue_name: Optional[str] = None
    binding_keys: tuple[str, ...] = ()
    default_routing_key: Optional[str] = None
    prefetch_count: int = 1

    def __post_init__(self):
        object.__setattr__(
            self, "exchange_type", ExchangeType.validate(self.exchange_type)
        )
        object.__setattr__(self, "binding_keys", tuple(self.binding_keys or ()))

    @property
    def exchange_config(self) -> Optional[ExchangeConfig]:
        if not self.exchange:
            return None
        return ExchangeConfig(
            name=self.exchange,
            type=self.exchange_type,
            durable=self.durable,
            auto_declare=self.declare_exchange,
        )

    @property
    def queue_config(self) -> QueueConfig:
        return QueueConfig.for_name(self.queue_name, self.binding_keys)

    def replace(self, **changes) -> "SessionConfig":
        try:
            return dataclasses.replace(self, **changes)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e


class SessionConfigBuilder:
    """
    Collects session settings and produces an immutable SessionConfig.

    Every setter returns the builder, ``build()`` validates and freezes.
    """

    def __init__(self, exchange: Optional[str] = None) -> None:
        self._values: dict = {"exchange": exchange}

    def exchange(self, name: Optional[str]) -> "SessionConfigBuilder":
        self._values["exchange"] = name
        return self

    def exchange_type(
        self, exchange_type: Union[str, ExchangeType]
    ) -> "SessionConfigBuilder":
        self._values["exchange_type"] = ExchangeType.validate(exchange_type)
        return self

    def durable(self, toggle: bool = True) -> "SessionConfigBuilder":
        self._values["durable"] = toggle
        return self

    def declare_exchange(self, toggle: bool = True) -> "SessionConfigBuilder":
        self._values["declare_exchange"] = toggle
        return self

    def with_ack(self, toggle: bool = True) -> "SessionConfigBuilder":
        self._values["with_ack"] = toggle
        return self

    def queue(self, name: Optional[str]) -> "SessionConfigBuilder":
        self._values["queue_name"] = name or None
        return self

    def binding_keys(self, keys: Optional[Iterable[str]]) -> "SessionConfigBuilder":
        if isinstance(keys, str):
            keys = [keys]
        self._values["binding_keys"] = tuple(keys or ())
        return self

    def default_routing_key(self, key: Optional[str]) -> "SessionConfigBuilder":
        self._values["default_routing_key"] = key
        return self

    def prefetch_count(self, count: int) -> "SessionConfigBuilder":
        if count < 0:
            raise ConfigurationError(f"prefetch_count cannot be negative, got {count}")
        self._values["prefetch_count"] = count
        return self

    def build(self) -> SessionConfig:
        return SessionConfig(**self._values)
