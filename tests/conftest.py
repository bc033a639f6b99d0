"""
Shared pytest fixtures and utilities for testing.

## In-memory broker

`FakeBroker` implements the part of the AMQPStorm channel surface used by the
runtime, so publishers and delivery sessions can be tested end to end without
a RabbitMQ server:

- `FakeConnection`: hands out `FakeChannel` objects bound to one broker
- `FakeChannel`: `exchange`, `queue` and `basic` namespaces plus
  `build_inbound_messages()`, `consumer_tags` and `is_open`
- direct, fanout and topic routing; the default exchange routes on queue name
- anonymous queues get generated `amq.gen-N` names
- redeclaring an entity with different settings raises AMQPChannelError
- ack and reject are recorded; a requeued message comes back redelivered

By default a channel cancels its consumers once every queue it consumes from
is drained, which ends `DeliverySession.run()` without a signal.

### Available Fixtures

- `broker`: Fresh FakeBroker
- `fake_connection`: FakeConnection on that broker
- `factory`: PatternFactory using the fake connection
"""

import collections
import itertools
from typing import Any, Optional

import pytest
from amqpstorm import AMQPChannelError

from amqp_patterns.factory import PatternFactory


def topic_matches(binding_key: str, routing_key: str) -> bool:
    """AMQP topic matching, ``*`` is exactly one word, ``#`` zero or more."""

    def match(pattern: list[str], words: list[str]) -> bool:
        if not pattern:
            return not words
        if pattern[0] == "#":
            return match(pattern[1:], words) or (bool(words) and match(pattern, words[1:]))
        if not words:
            return False
        if pattern[0] in ("*", words[0]):
            return match(pattern[1:], words[1:])
        return False

    return match(binding_key.split("."), routing_key.split("."))


class FakeMessage:
    """Stand-in for ``amqpstorm.Message`` as built by the channel."""

    def __init__(
        self,
        body: bytes,
        properties: dict,
        exchange: str,
        routing_key: str,
        redelivered: bool = False,
        delivery_tag: Optional[int] = None,
    ):
        self.body = body
        self.properties = properties
        self.exchange = exchange
        self.routing_key = routing_key
        self.redelivered = redelivered
        self.delivery_tag = delivery_tag

    @property
    def method(self) -> dict:
        return {
            "consumer_tag": None,
            "delivery_tag": self.delivery_tag,
            "redelivered": self.redelivered,
            "exchange": self.exchange,
            "routing_key": self.routing_key,
        }


class FakeBroker:
    def __init__(self):
        self.exchanges: dict[str, dict] = {}
        self.queues: dict[str, dict] = {}
        self.bindings: list[tuple[str, str, str]] = []
        self.published: list[dict] = []
        self.acked: list[int] = []
        self.rejected: list[tuple[int, bool]] = []
        self.unacked: dict[int, tuple[str, FakeMessage]] = {}
        self._delivery_tags = itertools.count(1)
        self._queue_names = itertools.count(1)
        self._consumer_tags = itertools.count(1)

    def declare_exchange(self, name: str, settings: dict) -> None:
        existing = self.exchanges.get(name)
        if existing is not None and existing != settings:
            raise AMQPChannelError(
                f"PRECONDITION_FAILED - inequivalent arg for exchange '{name}'",
                reply_code=406,
            )
        self.exchanges[name] = settings

    def declare_queue(self, name: str, settings: dict, owner) -> str:
        if not name:
            name = f"amq.gen-{next(self._queue_names)}"
        existing = self.queues.get(name)
        if existing is not None:
            if existing["settings"] != settings:
                raise AMQPChannelError(
                    f"PRECONDITION_FAILED - inequivalent arg for queue '{name}'",
                    reply_code=406,
                )
            return name
        self.queues[name] = {
            "settings": settings,
            "messages": collections.deque(),
            "owner": owner if settings["exclusive"] else None,
        }
        return name

    def delete_queue(self, name: str) -> None:
        self.queues.pop(name, None)
        self.bindings = [b for b in self.bindings if b[0] != name]

    def bind(self, queue: str, exchange: str, routing_key: str) -> None:
        if queue not in self.queues:
            raise AMQPChannelError(f"NOT_FOUND - no queue '{queue}'", reply_code=404)
        if exchange not in self.exchanges:
            raise AMQPChannelError(
                f"NOT_FOUND - no exchange '{exchange}'", reply_code=404
            )
        binding = (queue, exchange, routing_key)
        if binding not in self.bindings:
            self.bindings.append(binding)

    def _route(self, exchange: str, routing_key: str) -> list[str]:
        if exchange == "":
            return [routing_key] if routing_key in self.queues else []

        exchange_type = self.exchanges[exchange]["type"]
        targets = []
        for queue, bound_exchange, binding_key in self.bindings:
            if bound_exchange != exchange or queue in targets:
                continue
            if exchange_type == "fanout":
                targets.append(queue)
            elif exchange_type == "direct" and binding_key == routing_key:
                targets.append(queue)
            elif exchange_type == "topic" and topic_matches(binding_key, routing_key):
                targets.append(queue)
        return targets

    def publish(
        self, body: Any, routing_key: str, exchange: str, properties: dict
    ) -> list[str]:
        if exchange and exchange not in self.exchanges:
            raise AMQPChannelError(
                f"NOT_FOUND - no exchange '{exchange}'", reply_code=404
            )
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.published.append(
            {
                "body": body,
                "routing_key": routing_key,
                "exchange": exchange,
                "properties": dict(properties or {}),
            }
        )
        targets = self._route(exchange, routing_key)
        for queue in targets:
            self.queues[queue]["messages"].append(
                FakeMessage(body, dict(properties or {}), exchange, routing_key)
            )
        return targets

    def pop(self, queue: str, no_ack: bool) -> Optional[FakeMessage]:
        entry = self.queues.get(queue)
        if entry is None or not entry["messages"]:
            return None
        message = entry["messages"].popleft()
        message.delivery_tag = next(self._delivery_tags)
        if not no_ack:
            self.unacked[message.delivery_tag] = (queue, message)
        return message

    def ack(self, delivery_tag: int) -> None:
        if self.unacked.pop(delivery_tag, None) is None:
            raise AMQPChannelError(
                f"PRECONDITION_FAILED - unknown delivery tag {delivery_tag}",
                reply_code=406,
            )
        self.acked.append(delivery_tag)

    def reject(self, delivery_tag: int, requeue: bool) -> None:
        entry = self.unacked.pop(delivery_tag, None)
        if entry is None:
            raise AMQPChannelError(
                f"PRECONDITION_FAILED - unknown delivery tag {delivery_tag}",
                reply_code=406,
            )
        self.rejected.append((delivery_tag, requeue))
        if requeue:
            queue, message = entry
            message.redelivered = True
            self.queues[queue]["messages"].appendleft(message)

    def messages_in(self, queue: str) -> list[bytes]:
        return [message.body for message in self.queues[queue]["messages"]]

    def next_consumer_tag(self) -> str:
        return f"ctag-{next(self._consumer_tags)}"


class _FakeExchange:
    def __init__(self, channel: "FakeChannel"):
        self._channel = channel

    def declare(
        self,
        exchange="",
        exchange_type="direct",
        passive=False,
        durable=False,
        auto_delete=False,
        arguments=None,
    ):
        self._channel.calls.append(("exchange.declare", exchange))
        self._channel.broker.declare_exchange(
            exchange,
            {"type": exchange_type, "durable": durable, "auto_delete": auto_delete},
        )
        return {}


class _FakeQueue:
    def __init__(self, channel: "FakeChannel"):
        self._channel = channel

    def declare(
        self,
        queue="",
        passive=False,
        durable=False,
        exclusive=False,
        auto_delete=False,
        arguments=None,
    ):
        self._channel.calls.append(("queue.declare", queue))
        name = self._channel.broker.declare_queue(
            queue,
            {"durable": durable, "exclusive": exclusive, "auto_delete": auto_delete},
            self._channel,
        )
        return {
            "queue": name,
            "message_count": len(self._channel.broker.queues[name]["messages"]),
            "consumer_count": 0,
        }

    def bind(self, queue="", exchange="", routing_key="", arguments=None):
        self._channel.calls.append(("queue.bind", queue, exchange, routing_key))
        self._channel.broker.bind(queue, exchange, routing_key)
        return {}


class _FakeBasic:
    def __init__(self, channel: "FakeChannel"):
        self._channel = channel

    def qos(self, prefetch_count=0, prefetch_size=0, global_=False):
        self._channel.calls.append(("basic.qos", prefetch_count))
        self._channel.prefetch_count = prefetch_count
        return {}

    def consume(
        self,
        callback=None,
        queue="",
        consumer_tag="",
        exclusive=False,
        no_ack=False,
        no_local=False,
        arguments=None,
    ):
        if queue not in self._channel.broker.queues:
            raise AMQPChannelError(f"NOT_FOUND - no queue '{queue}'", reply_code=404)
        tag = consumer_tag or self._channel.broker.next_consumer_tag()
        self._channel.calls.append(("basic.consume", queue, no_ack))
        self._channel.consumers[tag] = (queue, no_ack)
        return tag

    def cancel(self, consumer_tag=""):
        self._channel.calls.append(("basic.cancel", consumer_tag))
        self._channel.consumers.pop(consumer_tag, None)
        return {}

    def publish(
        self, body, routing_key, exchange="", properties=None, mandatory=False,
        immediate=False,
    ):
        self._channel.calls.append(("basic.publish", exchange, routing_key))
        self._channel.broker.publish(body, routing_key, exchange, properties)
        return None

    def ack(self, delivery_tag=0, multiple=False):
        self._channel.calls.append(("basic.ack", delivery_tag, multiple))
        self._channel.broker.ack(delivery_tag)

    def reject(self, delivery_tag=0, requeue=True):
        self._channel.calls.append(("basic.reject", delivery_tag, requeue))
        self._channel.broker.reject(delivery_tag, requeue)


class FakeChannel:
    def __init__(self, broker: FakeBroker, cancel_when_drained: bool = True):
        self.broker = broker
        self.cancel_when_drained = cancel_when_drained
        self.calls: list[tuple] = []
        self.consumers: dict[str, tuple[str, bool]] = {}
        self.prefetch_count: Optional[int] = None
        self.exchange = _FakeExchange(self)
        self.queue = _FakeQueue(self)
        self.basic = _FakeBasic(self)
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def consumer_tags(self) -> list[str]:
        return list(self.consumers)

    def calls_named(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def build_inbound_messages(self, break_on_empty=False, auto_decode=True, **kwargs):
        while self._open and self.consumers:
            delivered = False
            for queue, no_ack in list(self.consumers.values()):
                message = self.broker.pop(queue, no_ack)
                if message is None:
                    continue
                delivered = True
                yield message
                if not self._open or not self.consumers:
                    return
            if not delivered:
                if self.cancel_when_drained:
                    self.consumers.clear()
                if break_on_empty:
                    return

    def close(self):
        if not self._open:
            return
        self._open = False
        self.consumers.clear()
        for name, entry in list(self.broker.queues.items()):
            if entry["owner"] is self and entry["settings"]["auto_delete"]:
                self.broker.delete_queue(name)


class FakeConnection:
    def __init__(self, broker: FakeBroker, cancel_when_drained: bool = True):
        self.broker = broker
        self.cancel_when_drained = cancel_when_drained
        self.channels: list[FakeChannel] = []
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def channel(self) -> FakeChannel:
        channel = FakeChannel(self.broker, self.cancel_when_drained)
        self.channels.append(channel)
        return channel

    def check_for_errors(self):
        pass

    def close(self):
        for channel in self.channels:
            channel.close()
        self._open = False


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def fake_connection(broker) -> FakeConnection:
    return FakeConnection(broker)


@pytest.fixture
def channel(fake_connection) -> FakeChannel:
    return fake_connection.channel()


@pytest.fixture
def factory(fake_connection):
    pattern_factory = PatternFactory(connection=fake_connection)
    yield pattern_factory
    pattern_factory.close()
