"""
Abstract base classes and the channel owning client base.

Publishers and delivery sessions each own exactly one channel. The channel is
opened by whoever builds the client and closed exactly once by the client.
"""

import abc
import logging
from typing import Any, Mapping, Optional, Union

from amqpstorm import AMQPError, Channel

logger = logging.getLogger(__name__)

Body = Union[bytes, str]


class MessagePublisherInterface(abc.ABC):
    @abc.abstractmethod
    def publish(
        self,
        body: Body,
        properties: Optional[Mapping[str, Any]] = None,
        routing_key: Optional[str] = None,
    ) -> None:
        """
        Publish a message. The body must already be encoded.

        Fire and forget, there is no delivery confirmation.
        """
        pass


class MessageConsumerInterface(abc.ABC):
    @abc.abstractmethod
    def run(self) -> None:
        """
        Consume messages until interrupted.

        Blocking
        """
        pass


class ChannelClient:
    """
    Base class for clients owning a RabbitMQ channel.

    Use clients as context managers to release the channel deterministically,
    even when the consuming loop exits with an error.
    """

    def __init__(self, channel: Channel) -> None:
        self._channel: Channel = channel
        self._closed = False

    @property
    def channel(self) -> Channel:
        return self._channel

    @property
    def is_closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """
        Close the owned channel. Calling it again does nothing.
        """
        if self._closed:
            return
        self._closed = True

        logger.info("Shutting down %s...", self.__class__.__name__)
        try:
            if self._channel.is_open:
                self._channel.close()
                logger.info("Channel closed.")
        except AMQPError as e:
            logger.exception("Error closing channel: %s", e)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self) -> None:
        """
        Destructor to ensure the channel is closed when the object is deleted.
        """
        try:
            self.close()
        except Exception:
            # Suppress exceptions during cleanup to avoid issues during interpreter shutdown
            pass
