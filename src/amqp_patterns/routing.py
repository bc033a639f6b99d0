"""
Message routing information.

Routes tell a publisher which exchange and routing key to use for a given
message type. They usually come from static route tables shared between
applications; loading those tables is left to the application, this module
only consumes the resulting mappings.
"""

import abc
import hashlib
import logging
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationError, field_validator

from amqp_patterns.config import (
    DEFAULT_CONTENT_TYPE,
    DEFAULT_ROUTING_KEY,
    ExchangeType,
)
from amqp_patterns.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class Route(BaseModel):
    """Routing information for a single message type."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    content_type: str = DEFAULT_CONTENT_TYPE
    exchange: Optional[str] = None
    exchange_type: Optional[ExchangeType] = None
    durable: bool = True
    persistent: bool = False
    routing_key: Optional[str] = None

    _hash: str = PrivateAttr(default="")

    def model_post_init(self, __context: Any) -> None:
        self._hash = hashlib.sha1((self.exchange or "").encode("utf-8")).hexdigest()

    @field_validator("exchange_type", mode="before")
    @classmethod
    def _validate_exchange_type(cls, value):
        if value is None or value == "":
            return None
        return ExchangeType.validate(value)

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> "Route":
        """
        Create a route from a route table entry.

        :raises ConfigurationError: If the entry is malformed.
        """
        try:
            return cls.model_validate(dict(values))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid route: {e}") from e

    @classmethod
    def empty(cls) -> "Route":
        """
        Route without any information.

        Messages are sent to the default exchange as-is and the broker
        configuration decides what happens to them.
        """
        return cls(durable=False)

    @property
    def is_empty(self) -> bool:
        return not self.exchange and not self.routing_key

    @property
    def hash(self) -> str:
        """Hash used to cache per-exchange runtime state."""
        return self._hash


def validate_route_table(routes: Mapping[str, Any], source: str = "routes") -> dict:
    """
    Check a raw route table before it is used.

    :param routes: Mapping of message type to route entry.
    :param source: Name of the table for error messages (e.g. a file name).
    :return: A copy of the table.
    :raises ConfigurationError: If an entry is not a flat mapping of scalars.
    """
    table = {}
    for message_type, data in routes.items():
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f'Malformed route table "{source}": "{message_type}" route must be a mapping.'
            )
        for value in data.values():
            if value is not None and not isinstance(value, (str, bool, int, float)):
                raise ConfigurationError(
                    f'Malformed route table "{source}": "{message_type}" route cannot contain nested values.'
                )
        table[message_type] = dict(data)
    return table


class RouteProvider(abc.ABC):
    """Implement to ship routes along with message definitions."""

    @classmethod
    @abc.abstractmethod
    def define_routes(cls) -> Mapping[str, Mapping[str, Any]]:
        """
        Keys are message type names, values are route entries.
        """
        pass


class RouteMap(abc.ABC):
    @abc.abstractmethod
    def get_route_for(self, message_type: str) -> Route:
        """
        Get the route for a message type, a codified name or a class name.
        """
        pass


class DefaultRouteMap(RouteMap):
    """
    Mapping based route map.

    Types without an entry get the default route when one is configured, the
    empty route otherwise.
    """

    def __init__(self, data: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._data = validate_route_table(data or {})
        self._routes: dict[str, Route] = {}
        self._default_route: Optional[Route] = None

    @classmethod
    def from_providers(
        cls, providers: Iterable[type[RouteProvider]], *tables: Mapping[str, Any]
    ) -> "DefaultRouteMap":
        """
        Aggregate routes from providers and raw tables.

        The first definition of a type wins.
        """
        data: dict[str, Mapping[str, Any]] = {}
        for provider in providers:
            for message_type, route in validate_route_table(
                provider.define_routes(), provider.__name__
            ).items():
                data.setdefault(message_type, route)
        for table in tables:
            for message_type, route in validate_route_table(table).items():
                data.setdefault(message_type, route)
        return cls(data)

    def set_default_exchange(self, exchange: str) -> None:
        self._default_route = Route(
            durable=True,
            exchange=exchange,
            exchange_type=ExchangeType.DIRECT,
            routing_key=DEFAULT_ROUTING_KEY,
        )
        logger.info("Default route set to exchange %s", exchange)

    def get_route_for(self, message_type: str) -> Route:
        route = self._routes.get(message_type)
        if route is not None:
            return route

        data = self._data.get(message_type)
        if data is not None:
            route = Route.from_dict(data)
            self._routes[message_type] = route
            return route

        if self._default_route is not None:
            return self._default_route

        logger.debug("No route for message type %s, using empty route", message_type)
        return Route.empty()
