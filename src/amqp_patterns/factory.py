"""
Pattern factory.

Builds publishers and delivery sessions configured for the three supported
patterns:

    fanout    non durable fanout exchange, no ack, anonymous queue
    task      durable direct exchange, ack, optional shared queue
    topic     durable topic exchange, ack, explicit binding keys

Each client gets its own channel. Every session shares the factory's
lifecycle controller, which is the one signal handlers should drive.
"""

import logging
from typing import Any, Iterable, Mapping, Optional, Union

from amqpstorm import Channel, Connection

from amqp_patterns.config import ExchangeType, PatternConfig
from amqp_patterns.exceptions import ConfigurationError
from amqp_patterns.lifecycle import LifecycleController
from amqp_patterns.rabbitmq.config import (
    ExchangeConfig,
    SessionConfig,
    SessionConfigBuilder,
)
from amqp_patterns.rabbitmq.connection import BrokerConnection
from amqp_patterns.rabbitmq.normalize import HostConfig, normalize_hosts
from amqp_patterns.rabbitmq.publisher import Publisher, RoutedPublisher
from amqp_patterns.rabbitmq.session import DeliverySession
from amqp_patterns.routing import RouteMap

logger = logging.getLogger(__name__)

HostLike = Union[str, Mapping[str, Any], HostConfig]


class PatternFactory:
    def __init__(
        self,
        hosts: Optional[Union[HostLike, Iterable[HostLike]]] = None,
        shuffle_hosts: bool = False,
        lifecycle: Optional[LifecycleController] = None,
        connection: Optional[Union[BrokerConnection, Connection]] = None,
    ) -> None:
        """
        :param hosts: Host DSNs or mappings, defaults to a local broker.
        :param shuffle_hosts: Randomize the host list before connecting.
        :param lifecycle: Lifecycle controller shared by every session.
        :param connection: Already established connection to use instead of hosts.
        """
        self._hosts = normalize_hosts(hosts, shuffle=shuffle_hosts)
        self._lifecycle = lifecycle or LifecycleController()

        if connection is None:
            connection = BrokerConnection(self._hosts)
        self._connection = connection

    @property
    def hosts(self) -> list[HostConfig]:
        return list(self._hosts)

    @property
    def lifecycle(self) -> LifecycleController:
        return self._lifecycle

    def connection(self) -> Connection:
        """Fetch the raw connection, opening it on first use."""
        if isinstance(self._connection, BrokerConnection):
            return self._connection.get_connection()
        return self._connection

    def channel(self) -> Channel:
        """Open a new channel, each client owns its own."""
        return self.connection().channel()

    def create_publisher(
        self,
        exchange_type: Union[str, ExchangeType],
        exchange: Optional[str] = None,
        default_routing_key: Optional[str] = None,
        durable: bool = True,
        declare_exchange: bool = True,
    ) -> Publisher:
        exchange_type = ExchangeType.validate(exchange_type)
        exchange_config = None
        if exchange:
            exchange_config = ExchangeConfig(
                name=exchange,
                type=exchange_type,
                durable=durable,
                auto_declare=declare_exchange,
            )
        return Publisher(
            self.channel(),
            exchange=exchange_config,
            default_routing_key=default_routing_key,
        )

    def create_session(self, config: SessionConfig) -> DeliverySession:
        return DeliverySession(self.channel(), config, lifecycle=self._lifecycle)

    def _pattern_builder(
        self, pattern: str, exchange: Optional[str]
    ) -> SessionConfigBuilder:
        defaults = PatternConfig.get_pattern(pattern)
        return (
            SessionConfigBuilder(exchange)
            .exchange_type(defaults.exchange_type)
            .durable(defaults.durable)
            .with_ack(defaults.with_ack)
        )

    def create_fanout_publisher(self, exchange: str) -> Publisher:
        """Create a publish/subscribe publisher."""
        defaults = PatternConfig.get_pattern(PatternConfig.FANOUT)
        return self.create_publisher(
            defaults.exchange_type, exchange, durable=defaults.durable
        )

    def create_fanout_subscriber(self, exchange: str) -> DeliverySession:
        """Create a publish/subscribe subscriber on its own anonymous queue."""
        config = self._pattern_builder(PatternConfig.FANOUT, exchange).build()
        return self.create_session(config)

    def create_task_publisher(
        self, routing_key: str, exchange: Optional[str] = None
    ) -> Publisher:
        """
        Create a task publisher.

        Without exchange tasks go through the default exchange, so the routing
        key must be the queue name.
        """
        defaults = PatternConfig.get_pattern(PatternConfig.TASK)
        return self.create_publisher(
            defaults.exchange_type,
            exchange,
            default_routing_key=routing_key,
            durable=defaults.durable,
        )

    def create_task_worker(
        self,
        queue: Optional[str] = None,
        exchange: Optional[str] = None,
        binding_keys: Optional[Iterable[str]] = None,
    ) -> DeliverySession:
        """
        Create a task worker.

        Workers given the same queue name compete for its messages. Without
        binding keys the queue name is the binding key.
        """
        config = (
            self._pattern_builder(PatternConfig.TASK, exchange)
            .queue(queue)
            .binding_keys(binding_keys)
            .build()
        )
        return self.create_session(config)

    def create_topic_publisher(
        self, exchange: str, default_routing_key: Optional[str] = None
    ) -> Publisher:
        defaults = PatternConfig.get_pattern(PatternConfig.TOPIC)
        return self.create_publisher(
            defaults.exchange_type,
            exchange,
            default_routing_key=default_routing_key,
            durable=defaults.durable,
        )

    def create_topic_subscriber(
        self,
        exchange: str,
        binding_keys: Iterable[str],
        queue: Optional[str] = None,
    ) -> DeliverySession:
        if isinstance(binding_keys, str):
            binding_keys = [binding_keys]
        binding_keys = [key for key in binding_keys or [] if key]
        if not binding_keys:
            raise ConfigurationError("Topic subscribers require binding keys")

        config = (
            self._pattern_builder(PatternConfig.TOPIC, exchange)
            .queue(queue)
            .binding_keys(binding_keys)
            .build()
        )
        return self.create_session(config)

    def create_routed_publisher(self, route_map: RouteMap) -> RoutedPublisher:
        return RoutedPublisher(self.channel(), route_map)

    def close(self) -> None:
        if isinstance(self._connection, BrokerConnection):
            self._connection.close()
        elif self._connection.is_open:
            self._connection.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
