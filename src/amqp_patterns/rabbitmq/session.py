"""
Delivery sessions: consumers and workers.

A session owns one channel, declares its topology once, registers a single
consumer and then loops over deliveries, one at a time, until its lifecycle
controller says otherwise.

With acknowledgement enabled every delivery ends with exactly one ack or
reject:
    - the callback may ack or reject itself, once;
    - a callback returning without responding is acked on its behalf;
    - a failing callback is forwarded to the error handler, then rejected
      without requeue unless the handler responded;
    - without error handler the delivery is rejected without requeue and
      ``run()`` raises DeliveryError.
"""

import logging
import time
from typing import Any, Callable, Optional

from amqpstorm import AMQPError, Channel, Message

from amqp_patterns.exceptions import ConfigurationError, DeliveryError
from amqp_patterns.lifecycle import LifecycleController, LifecycleState
from amqp_patterns.rabbitmq.base import ChannelClient, MessageConsumerInterface
from amqp_patterns.rabbitmq.config import SessionConfig
from amqp_patterns.rabbitmq.delivery import (
    DeliveryHandle,
    DeliveryOutcome,
    DeliveryResult,
    InboundMessage,
    NoAckDeliveryHandle,
)
from amqp_patterns.rabbitmq.topology import prepare_queue

logger = logging.getLogger(__name__)

# seconds slept between polls while paused
IDLE_WAIT = 0.01

MessageCallback = Callable[[InboundMessage, Callable[[], None], Callable[..., None]], Any]
ErrorHandler = Callable[[Exception, InboundMessage], Any]


class DeliverySession(ChannelClient, MessageConsumerInterface):
    """
    Consumer for the publish/subscribe, worker and topic patterns.

    Callbacks receive ``(message, ack, reject)`` where ``reject`` takes an
    optional ``requeue`` flag (defaults to True). Error handlers receive
    ``(error, message)``.
    """

    def __init__(
        self,
        channel: Channel,
        config: SessionConfig,
        lifecycle: Optional[LifecycleController] = None,
    ) -> None:
        super().__init__(channel)
        self._config = config
        self._lifecycle = lifecycle or LifecycleController()

        self._callback: Optional[MessageCallback] = None
        self._error_handler: Optional[ErrorHandler] = None

        self._queue_name: Optional[str] = None
        self._consumer_tag: Optional[str] = None
        self._running = False

        logger.info(
            "%s created for exchange '%s' (ack=%s)",
            self.__class__.__name__,
            config.exchange or "",
            config.with_ack,
        )

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def lifecycle(self) -> LifecycleController:
        return self._lifecycle

    @property
    def queue_name(self) -> Optional[str]:
        return self._queue_name

    @property
    def is_running(self) -> bool:
        return self._running

    def _raise_if_running(self) -> None:
        if self._running:
            raise ConfigurationError("You cannot change session state once running")

    def set_callback(self, callback: MessageCallback) -> "DeliverySession":
        self._raise_if_running()
        if self._callback is not None:
            raise ConfigurationError("You cannot set the callback twice")
        self._callback = callback
        return self

    def set_error_handler(self, handler: Optional[ErrorHandler]) -> "DeliverySession":
        self._raise_if_running()
        self._error_handler = handler
        return self

    def reconfigure(self, **changes) -> SessionConfig:
        """
        Replace some settings of an idle session.

        Topology is declared again on the next run when it was already prepared.
        """
        self._raise_if_running()
        self._config = self._config.replace(**changes)
        self._queue_name = None
        return self._config

    def prepare(self) -> str:
        """
        Declare queue, exchange and bindings, once per session.

        :return: The queue name, generated by the broker for anonymous queues.
        """
        if self._queue_name is None:
            self._queue_name = prepare_queue(self._channel, self._config)
        return self._queue_name

    def stop(self) -> None:
        """Ask the loop to exit after the current delivery."""
        self._lifecycle.interrupt()

    def run(self) -> None:
        """
        Consume until interrupted, or until the consumer is cancelled.

        :raises ConfigurationError: If no callback was set or already running.
        :raises DeliveryError: If a callback failed without error handler.
            The callback error is kept as ``error`` and chained as
            ``__cause__``.
        """
        if self._callback is None:
            raise ConfigurationError(
                "You must set the callback prior to running the session"
            )
        self._raise_if_running()
        if self.is_closed:
            raise ConfigurationError("Session channel is already closed")

        self._running = True
        self._lifecycle.start()
        try:
            self._start_consuming()
            self._run_loop()
        finally:
            self._stop_consuming()
            self._lifecycle.finish()
            self._running = False

    def _start_consuming(self) -> None:
        queue_name = self.prepare()

        if self._config.with_ack:
            # one unacknowledged message at a time for fair dispatching
            self._channel.basic.qos(prefetch_count=self._config.prefetch_count)

        self._consumer_tag = self._channel.basic.consume(
            queue=queue_name,
            no_ack=not self._config.with_ack,
            exclusive=False,
            no_local=False,
        )
        logger.info(
            "Consuming from queue %s with consumer %s", queue_name, self._consumer_tag
        )

    def _stop_consuming(self) -> None:
        if self._consumer_tag is None:
            return
        consumer_tag, self._consumer_tag = self._consumer_tag, None
        try:
            if self._channel.is_open:
                self._channel.basic.cancel(consumer_tag)
                logger.debug("Consumer %s cancelled", consumer_tag)
        except AMQPError as e:
            logger.warning("Error cancelling consumer %s: %s", consumer_tag, e)

    def _run_loop(self) -> None:
        while self._channel.is_open and self._channel.consumer_tags:
            state = self._lifecycle.state
            if state is LifecycleState.RUNNING:
                self._process_inbound()
            elif state is LifecycleState.PAUSED:
                time.sleep(IDLE_WAIT)
            else:
                break
        logger.info("Stopped consuming from queue %s", self._queue_name)

    def _process_inbound(self) -> None:
        # the running flag is only looked at between two deliveries
        for message in self._channel.build_inbound_messages(
            break_on_empty=True, auto_decode=False
        ):
            self._handle_delivery(message)
            if not self._lifecycle.is_running:
                break

    def _handle_delivery(self, message: Message) -> DeliveryResult:
        inbound = InboundMessage.from_message(message)
        if self._config.with_ack:
            result = self._deliver_with_ack(inbound)
        else:
            result = self._deliver_without_ack(inbound)

        logger.debug(
            "Delivery %s: %s", inbound.delivery_tag, result.outcome.value
        )
        if result.is_fatal:
            raise DeliveryError(inbound, result.error) from result.error
        return result

    def _deliver_with_ack(self, inbound: InboundMessage) -> DeliveryResult:
        handle = DeliveryHandle(self._channel, inbound.delivery_tag)
        try:
            self._callback(inbound, handle.ack, handle.reject)
        except Exception as e:
            return self._on_callback_error(e, inbound, handle)
        except BaseException:
            # interpreter exit: give the message back to the broker
            if not handle.responded:
                handle.reject(requeue=True)
            raise

        if not handle.responded:
            handle.ack()
        if handle.acked:
            return DeliveryResult(DeliveryOutcome.ACKED)
        return DeliveryResult(DeliveryOutcome.REJECTED)

    def _on_callback_error(
        self, error: Exception, inbound: InboundMessage, handle: DeliveryHandle
    ) -> DeliveryResult:
        if self._error_handler is None:
            logger.error(
                "Unhandled error processing delivery %s: %s",
                inbound.delivery_tag,
                error,
            )
            if not handle.responded:
                handle.reject(requeue=False)
            return DeliveryResult(DeliveryOutcome.FATAL, error)

        try:
            self._error_handler(error, inbound)
        except Exception as handler_error:
            logger.exception(
                "Error handler failed for delivery %s", inbound.delivery_tag
            )
            if not handle.responded:
                handle.reject(requeue=False)
            return DeliveryResult(DeliveryOutcome.FATAL, handler_error)

        if not handle.responded:
            # do not loop on a message that cannot be processed
            handle.reject(requeue=False)
        return DeliveryResult(DeliveryOutcome.HANDLED, error)

    def _deliver_without_ack(self, inbound: InboundMessage) -> DeliveryResult:
        handle = NoAckDeliveryHandle(inbound.delivery_tag)
        try:
            self._callback(inbound, handle.ack, handle.reject)
        except Exception as e:
            if self._error_handler is None:
                logger.exception(
                    "Error processing delivery %s, message dropped",
                    inbound.delivery_tag,
                )
                return DeliveryResult(DeliveryOutcome.HANDLED, e)
            try:
                self._error_handler(e, inbound)
            except Exception as handler_error:
                logger.exception(
                    "Error handler failed for delivery %s", inbound.delivery_tag
                )
                return DeliveryResult(DeliveryOutcome.FATAL, handler_error)
            return DeliveryResult(DeliveryOutcome.HANDLED, e)
        return DeliveryResult(DeliveryOutcome.CONSUMED)
