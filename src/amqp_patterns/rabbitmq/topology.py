"""
Exchange, queue and binding declaration.

Every declaration here is idempotent at the broker: declaring the same
entity twice with identical parameters is a no-op.
"""

import logging
from typing import Optional

from amqpstorm import Channel

from amqp_patterns.rabbitmq.config import ExchangeConfig, QueueConfig, SessionConfig

logger = logging.getLogger(__name__)


def declare_exchange(channel: Channel, exchange: ExchangeConfig) -> None:
    """
    Declare an exchange if auto declaration is enabled for it.

    :param channel: The AMQP channel to use for declaration.
    :param exchange: Exchange name, type, durability and auto declare toggle.
    """
    if not exchange.name or not exchange.auto_declare:
        return

    channel.exchange.declare(
        exchange=exchange.name,
        exchange_type=exchange.type.value,
        passive=False,
        durable=exchange.durable,
        auto_delete=False,
    )
    logger.info(
        "Exchange declared: %s (type=%s durable=%s)",
        exchange.name,
        exchange.type.value,
        exchange.durable,
    )


def declare_queue(channel: Channel, queue: QueueConfig) -> str:
    """
    Declare a named or anonymous queue.

    :param channel: The AMQP channel to use for declaration.
    :param queue: Queue settings, see QueueConfig.for_name.
    :return: The name of the declared queue, generated by the broker for anonymous queues.
    """
    result = channel.queue.declare(
        queue=queue.name or "",
        durable=queue.durable,
        exclusive=queue.exclusive,
        auto_delete=queue.auto_delete,
    )
    if not result:
        logger.error("Unable to declare queue with name %s", queue.name)
        raise RuntimeError("Failed to create queue")

    declared_queue_name = result.get("queue") or queue.name
    logger.info(
        "Queue declared: %s (durable=%s exclusive=%s auto_delete=%s)",
        declared_queue_name,
        queue.durable,
        queue.exclusive,
        queue.auto_delete,
    )
    return declared_queue_name


def bind_queue(
    channel: Channel,
    queue_name: str,
    exchange_name: Optional[str],
    binding_keys: tuple[str, ...] = (),
) -> list[str]:
    """
    Bind a queue to an exchange.

    Without explicit binding keys the queue name is used as the binding key,
    which is what direct exchanges expect for task queues. Fanout exchanges
    ignore the key entirely.

    :param channel: The AMQP channel to use for binding.
    :param queue_name: Name of the queue to bind.
    :param exchange_name: Exchange to bind to, nothing is bound for the default exchange.
    :param binding_keys: Explicit binding keys.
    :return: The binding keys actually used.
    """
    if not exchange_name:
        # the default exchange already routes on queue name and refuses bindings
        logger.debug("No exchange configured, queue %s left unbound", queue_name)
        return []

    keys = list(binding_keys) if binding_keys else [queue_name]
    for binding_key in keys:
        channel.queue.bind(
            queue=queue_name,
            exchange=exchange_name,
            routing_key=binding_key,
        )
        logger.info(
            "Queue %s bound to exchange %s with binding key '%s'",
            queue_name,
            exchange_name,
            binding_key,
        )
    return keys


def prepare_queue(channel: Channel, config: SessionConfig) -> str:
    """
    Declare the queue, the exchange and the bindings of a session.

    :param channel: The AMQP channel owned by the session.
    :param config: Session settings.
    :return: The declared queue name.
    """
    queue = config.queue_config
    queue_name = declare_queue(channel, queue)

    exchange = config.exchange_config
    if exchange is not None:
        declare_exchange(channel, exchange)

    bind_queue(channel, queue_name, config.exchange, queue.binding_keys)
    return queue_name
