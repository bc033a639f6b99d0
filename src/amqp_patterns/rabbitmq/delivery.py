"""
Per delivery state.

A DeliveryHandle wraps a delivery tag and guarantees that at most one
acknowledgement or rejection is ever sent for it. The first call wins, any
further call raises ProtocolMisuseError before anything reaches the broker.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from amqpstorm import Channel, Message

from amqp_patterns.exceptions import ProtocolMisuseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InboundMessage:
    """A message as handed to user callbacks."""

    body: bytes
    properties: dict[str, Any] = field(default_factory=dict)
    delivery_tag: Optional[int] = None
    redelivered: bool = False
    routing_key: str = ""
    exchange: str = ""

    @classmethod
    def from_message(cls, message: Message) -> "InboundMessage":
        method = message.method or {}
        return cls(
            body=message.body,
            properties=dict(message.properties or {}),
            delivery_tag=message.delivery_tag,
            redelivered=bool(message.redelivered),
            routing_key=method.get("routing_key", ""),
            exchange=method.get("exchange", ""),
        )


class DeliveryOutcome(enum.Enum):
    ACKED = "acked"
    REJECTED = "rejected"
    # callback failed, the error handler dealt with it
    HANDLED = "handled"
    # callback failed, nothing dealt with it
    FATAL = "fatal"
    # no acknowledgement cycle
    CONSUMED = "consumed"


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of a single delivery, decided once by the session."""

    outcome: DeliveryOutcome
    error: Optional[BaseException] = None

    @property
    def is_fatal(self) -> bool:
        return self.outcome is DeliveryOutcome.FATAL


class DeliveryHandle:
    """
    Single use ack/reject pair for one delivery tag.
    """

    def __init__(self, channel: Channel, delivery_tag: int) -> None:
        self._channel = channel
        self._delivery_tag = delivery_tag
        self._responded = False
        self._requeued: Optional[bool] = None

    @property
    def delivery_tag(self) -> int:
        return self._delivery_tag

    @property
    def responded(self) -> bool:
        return self._responded

    @property
    def acked(self) -> bool:
        return self._responded and self._requeued is None

    def _consume(self) -> None:
        if self._responded:
            raise ProtocolMisuseError(self._delivery_tag)
        # flag first, a failing broker call must not lead to a second response
        self._responded = True

    def ack(self) -> None:
        self._consume()
        self._channel.basic.ack(delivery_tag=self._delivery_tag, multiple=False)
        logger.debug("Delivery %s acknowledged", self._delivery_tag)

    def reject(self, requeue: bool = True) -> None:
        self._consume()
        self._requeued = requeue
        self._channel.basic.reject(delivery_tag=self._delivery_tag, requeue=requeue)
        logger.debug("Delivery %s rejected (requeue=%s)", self._delivery_tag, requeue)


class NoAckDeliveryHandle:
    """
    Handle given to callbacks of sessions consuming without acknowledgement.

    The broker considers those messages delivered as soon as they are sent,
    so there is nothing to acknowledge or reject.
    """

    def __init__(self, delivery_tag: Optional[int]) -> None:
        self._delivery_tag = delivery_tag

    @property
    def delivery_tag(self) -> Optional[int]:
        return self._delivery_tag

    @property
    def responded(self) -> bool:
        return False

    def ack(self) -> None:
        raise ProtocolMisuseError(
            self._delivery_tag,
            "Cannot acknowledge a message consumed without acknowledgement",
        )

    def reject(self, requeue: bool = True) -> None:
        raise ProtocolMisuseError(
            self._delivery_tag,
            "Cannot reject a message consumed without acknowledgement",
        )
