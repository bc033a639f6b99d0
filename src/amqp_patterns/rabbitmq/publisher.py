"""
RabbitMQ publisher implementations.

This module contains the pattern publisher, which sends to one configured
exchange, and the routed publisher, which picks exchange and routing key from
a RouteMap based on the message type.
"""

import logging
from typing import Any, Mapping, Optional

from amqpstorm import Channel

from amqp_patterns.rabbitmq.base import Body, ChannelClient, MessagePublisherInterface
from amqp_patterns.rabbitmq.config import ExchangeConfig
from amqp_patterns.rabbitmq.topology import declare_exchange
from amqp_patterns.routing import Route, RouteMap

logger = logging.getLogger(__name__)

PERSISTENT_DELIVERY_MODE = 2


def build_properties(properties: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """
    Copy message properties into the form AMQPStorm expects.

    The AMQP ``type`` property is called ``message_type`` by the client.

    :param properties: User supplied properties, may be None.
    :return: A new properties dictionary.
    """
    result = dict(properties or {})
    if "type" in result:
        message_type = result.pop("type")
        result.setdefault("message_type", message_type)
    return result


class Publisher(ChannelClient, MessagePublisherInterface):
    """
    Publishes messages to a single exchange.

    The routing key is the one given to ``publish``, else the default routing
    key, else an empty string. The exchange is declared on the first publish
    when auto declaration is enabled.
    """

    def __init__(
        self,
        channel: Channel,
        exchange: Optional[ExchangeConfig] = None,
        default_routing_key: Optional[str] = None,
    ) -> None:
        super().__init__(channel)
        self._exchange = exchange
        self._default_routing_key = default_routing_key
        self._exchange_declared = False

        logger.info(
            "Publisher initialized for exchange '%s' with channel %s",
            self.exchange_name,
            self._channel,
        )

    @property
    def exchange_name(self) -> str:
        return self._exchange.name if self._exchange else ""

    @property
    def default_routing_key(self) -> Optional[str]:
        return self._default_routing_key

    def resolve_routing_key(self, routing_key: Optional[str] = None) -> str:
        if routing_key is not None:
            return routing_key
        if self._default_routing_key is not None:
            return self._default_routing_key
        return ""

    def _ensure_exchange(self) -> None:
        if self._exchange_declared or self._exchange is None:
            return
        declare_exchange(self._channel, self._exchange)
        self._exchange_declared = True

    def publish(
        self,
        body: Body,
        properties: Optional[Mapping[str, Any]] = None,
        routing_key: Optional[str] = None,
    ) -> None:
        """
        Publish a message.

        :param body: Message body, already encoded.
        :param properties: AMQP properties (app_id, content_type, message_id, timestamp, type...).
        :param routing_key: Overrides the default routing key.
        """
        self._ensure_exchange()

        final_routing_key = self.resolve_routing_key(routing_key)
        self._channel.basic.publish(
            body=body,
            routing_key=final_routing_key,
            exchange=self.exchange_name,
            properties=build_properties(properties),
        )
        logger.debug(
            "Message published to exchange '%s' with routing key '%s'",
            self.exchange_name,
            final_routing_key,
        )


class RoutedPublisher(ChannelClient):
    """
    Publishes messages according to the route registered for their type.

    Route exchanges are declared once per route, keyed on the route hash.
    """

    def __init__(self, channel: Channel, route_map: RouteMap) -> None:
        super().__init__(channel)
        self._route_map = route_map
        self._declared: set[str] = set()

    @property
    def route_map(self) -> RouteMap:
        return self._route_map

    def _ensure_exchange(self, route: Route) -> None:
        if not route.exchange or route.exchange_type is None:
            return
        if route.hash in self._declared:
            return
        declare_exchange(
            self._channel,
            ExchangeConfig(
                name=route.exchange,
                type=route.exchange_type,
                durable=route.durable,
            ),
        )
        self._declared.add(route.hash)

    def publish(
        self,
        message_type: str,
        body: Body,
        properties: Optional[Mapping[str, Any]] = None,
    ) -> Route:
        """
        Publish a message using the route of its type.

        :param message_type: Codified message name used to look the route up.
        :param body: Message body, already encoded.
        :param properties: Extra AMQP properties, they win over route values.
        :return: The route that was used.
        """
        route = self._route_map.get_route_for(message_type)
        self._ensure_exchange(route)

        final_properties = {
            "content_type": route.content_type,
            "message_type": message_type,
        }
        if route.persistent:
            final_properties["delivery_mode"] = PERSISTENT_DELIVERY_MODE
        final_properties.update(build_properties(properties))

        self._channel.basic.publish(
            body=body,
            routing_key=route.routing_key or "",
            exchange=route.exchange or "",
            properties=final_properties,
        )
        logger.debug(
            "Message of type %s published to exchange '%s' with routing key '%s'",
            message_type,
            route.exchange or "",
            route.routing_key or "",
        )
        return route
