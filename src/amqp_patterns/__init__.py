"""
Messaging patterns on top of RabbitMQ.

Publish/subscribe, competing task workers and topic routing, built from a
single PatternFactory sharing one connection and one lifecycle controller.
"""

from amqp_patterns.exceptions import (
    AmqpPatternsError,
    CapabilityError,
    ConfigurationError,
    DeliveryError,
    ProtocolMisuseError,
)
from amqp_patterns.factory import PatternFactory
from amqp_patterns.lifecycle import LifecycleController, LifecycleState, PausePolicy
from amqp_patterns.routing import DefaultRouteMap, Route, RouteMap, RouteProvider

__all__ = [
    "AmqpPatternsError",
    "CapabilityError",
    "ConfigurationError",
    "DeliveryError",
    "ProtocolMisuseError",
    "PatternFactory",
    "LifecycleController",
    "LifecycleState",
    "PausePolicy",
    "DefaultRouteMap",
    "Route",
    "RouteMap",
    "RouteProvider",
]
