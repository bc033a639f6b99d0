"""
RabbitMQ messaging implementation.

This module provides the broker facing half of the runtime: host
normalization, the connection opener, topology declaration, publishers and
delivery sessions.

Public API:
    - MessagePublisherInterface, MessageConsumerInterface: Abstract base classes
    - Publisher: Publishes to a single exchange
    - RoutedPublisher: Publishes according to a RouteMap
    - DeliverySession: Consumes deliveries with or without acknowledgement
    - DeliveryHandle, InboundMessage: Per delivery state handed to callbacks
    - SessionConfig, SessionConfigBuilder, ExchangeConfig, QueueConfig: Settings
"""

from .base import ChannelClient, MessageConsumerInterface, MessagePublisherInterface
from .config import ExchangeConfig, QueueConfig, SessionConfig, SessionConfigBuilder
from .connection import BrokerConnection
from .delivery import (
    DeliveryHandle,
    DeliveryOutcome,
    DeliveryResult,
    InboundMessage,
    NoAckDeliveryHandle,
)
from .normalize import HostConfig, normalize_host, normalize_hosts
from .publisher import Publisher, RoutedPublisher
from .session import DeliverySession
from .topology import bind_queue, declare_exchange, declare_queue, prepare_queue

__all__ = [
    # Abstract base classes
    "ChannelClient",
    "MessageConsumerInterface",
    "MessagePublisherInterface",
    # Settings
    "ExchangeConfig",
    "QueueConfig",
    "SessionConfig",
    "SessionConfigBuilder",
    "HostConfig",
    "normalize_host",
    "normalize_hosts",
    # Connection and topology
    "BrokerConnection",
    "bind_queue",
    "declare_exchange",
    "declare_queue",
    "prepare_queue",
    # Concrete implementations
    "Publisher",
    "RoutedPublisher",
    "DeliverySession",
    "DeliveryHandle",
    "NoAckDeliveryHandle",
    "DeliveryOutcome",
    "DeliveryResult",
    "InboundMessage",
]
