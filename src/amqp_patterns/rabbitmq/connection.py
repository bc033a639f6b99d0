"""
RabbitMQ connection opener.

This module opens a single AMQPStorm connection from a list of broker hosts.
Hosts are tried in order and the first one that accepts the connection wins.
Heartbeats and socket level timeouts belong to AMQPStorm and are configured
through the host options.
"""

import logging
import threading
from typing import Optional

from amqpstorm import AMQPConnectionError, Channel, Connection

from amqp_patterns.rabbitmq.normalize import HostConfig

logger = logging.getLogger(__name__)


class BrokerConnection:
    """
    Lazily opened connection to the first reachable broker of a host list.

    No reconnection is attempted once the connection is established, a lost
    connection surfaces as an AMQPConnectionError from the client.
    """

    def __init__(self, hosts: list[HostConfig]):
        """
        :param hosts: Normalized hosts, tried in the given order.
        """
        if not hosts:
            raise ValueError("At least one host is required")
        self._hosts = list(hosts)
        self._connection: Optional[Connection] = None
        self._lock = threading.RLock()

    @property
    def hosts(self) -> list[HostConfig]:
        return list(self._hosts)

    def _connect(self) -> Connection:
        """
        Open a connection to the first host that accepts it.

        :return: Open AMQPStorm connection
        :raises AMQPConnectionError: If no host could be reached
        """
        last_error: Optional[AMQPConnectionError] = None
        for host in self._hosts:
            try:
                logger.info("Establishing RabbitMQ connection to %s", host)
                connection = Connection(**host.connection_params())
                if not connection.is_open:
                    # lazy hosts are built closed and opened on first use
                    connection.open()
                logger.info("RabbitMQ connection established to %s", host)
                return connection
            except AMQPConnectionError as e:
                logger.warning("Failed to connect to %s: %s", host, e)
                last_error = e

        raise last_error

    def get_connection(self) -> Connection:
        """
        Get the current connection, opening it on first use.

        :return: Active connection
        :raises AMQPConnectionError: If connection is not available
        """
        with self._lock:
            if self._connection is None:
                self._connection = self._connect()
            return self._connection

    def channel(self) -> Channel:
        """Open a new channel on the connection."""
        return self.get_connection().channel()

    def is_connected(self) -> bool:
        """
        Check if the connection is currently healthy.

        :return: True if connection is healthy, False otherwise
        """
        with self._lock:
            if not self._connection or not self._connection.is_open:
                return False
            try:
                self._connection.check_for_errors()
            except AMQPConnectionError:
                return False
            return True

    def close(self):
        """Close the connection if it was opened."""
        with self._lock:
            if self._connection is None:
                return
            logger.info("Closing RabbitMQ connection")
            try:
                if self._connection.is_open:
                    self._connection.close()
            except AMQPConnectionError as e:
                logger.exception("Error closing connection: %s", e)
            finally:
                self._connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
