"""
Pattern level scenarios: publishers and sessions from one factory talking
through the in-memory broker.
"""

from amqp_patterns.main import build_task_worker_callback, report_error
from amqp_patterns.routing import DefaultRouteMap


def collect(session):
    received = []
    session.set_callback(lambda message, ack, reject: received.append(message.body))
    session.run()
    return received


def test_task_queue_through_default_exchange(factory, broker):
    worker = factory.create_task_worker(queue="jobs")
    worker.prepare()

    publisher = factory.create_task_publisher("jobs")
    publisher.publish("hello")
    publisher.publish("world")

    assert collect(worker) == [b"hello", b"world"]
    assert broker.acked == [1, 2]


def test_task_queue_through_direct_exchange(factory):
    worker = factory.create_task_worker(
        queue="images", exchange="tasks", binding_keys=["resize"]
    )
    worker.prepare()

    publisher = factory.create_task_publisher("resize", exchange="tasks")
    publisher.publish("a.png")
    publisher.publish("b.png", routing_key="crop")

    assert collect(worker) == [b"a.png"]


def test_competing_workers_share_the_queue(factory):
    first = factory.create_task_worker(queue="jobs")
    second = factory.create_task_worker(queue="jobs")
    first.prepare()
    second.prepare()

    publisher = factory.create_task_publisher("jobs")
    for i in range(4):
        publisher.publish(f"task {i}")

    first_received = []

    def stop_after_two(message, ack, reject):
        first_received.append(message.body)
        if len(first_received) == 2:
            first.stop()

    first.set_callback(stop_after_two)
    first.run()
    second_received = collect(second)

    assert first_received == [b"task 0", b"task 1"]
    assert second_received == [b"task 2", b"task 3"]


def test_fanout_reaches_every_subscriber(factory, broker):
    first = factory.create_fanout_subscriber("news")
    second = factory.create_fanout_subscriber("news")
    first_queue = first.prepare()
    second_queue = second.prepare()
    assert first_queue != second_queue

    factory.create_fanout_publisher("news").publish("extra extra")

    assert collect(first) == [b"extra extra"]
    assert collect(second) == [b"extra extra"]
    assert broker.acked == []


def test_fanout_subscriber_queue_goes_away_with_its_channel(factory, broker):
    subscriber = factory.create_fanout_subscriber("news")
    queue_name = subscriber.prepare()

    subscriber.close()

    assert queue_name not in broker.queues


def test_topic_routing(factory):
    kernel = factory.create_topic_subscriber("logs", ["kern.*"])
    critical = factory.create_topic_subscriber("logs", ["*.critical"])
    everything = factory.create_topic_subscriber("logs", ["#"])
    for session in (kernel, critical, everything):
        session.prepare()

    publisher = factory.create_topic_publisher("logs")
    publisher.publish("disk full", routing_key="kern.critical")
    publisher.publish("login", routing_key="auth.info")
    publisher.publish("oops", routing_key="kern.warning")

    assert collect(kernel) == [b"disk full", b"oops"]
    assert collect(critical) == [b"disk full"]
    assert collect(everything) == [b"disk full", b"login", b"oops"]


def test_named_topic_queue_with_several_binding_keys(factory, broker):
    subscriber = factory.create_topic_subscriber(
        "logs", ["kern.*", "auth.#"], queue="audit"
    )
    subscriber.prepare()

    publisher = factory.create_topic_publisher("logs")
    publisher.publish("one", routing_key="kern.info")
    publisher.publish("two", routing_key="auth.login.failed")
    publisher.publish("three", routing_key="app.info")

    assert collect(subscriber) == [b"one", b"two"]
    assert broker.queues["audit"]["settings"]["durable"] is True


def test_routed_publisher_reaches_topic_subscriber(factory):
    subscriber = factory.create_topic_subscriber("orders", ["order.*"])
    subscriber.prepare()
    route_map = DefaultRouteMap(
        {
            "order.created": {
                "exchange": "orders",
                "exchange_type": "topic",
                "routing_key": "order.created",
            }
        }
    )

    factory.create_routed_publisher(route_map).publish("order.created", b'{"id": 1}')

    assert collect(subscriber) == [b'{"id": 1}']


def test_sample_task_worker_behaviours(factory, broker, capsys):
    worker = factory.create_task_worker(queue="jobs")
    worker.prepare()
    publisher = factory.create_task_publisher("jobs")
    for body in ("invalid", "reject", "hello", "error"):
        publisher.publish(body)

    worker.set_callback(build_task_worker_callback(do_sleep=False))
    worker.set_error_handler(report_error)
    worker.run()

    # invalid: 1, reject: 2 then redelivered as 3, hello: 4, error: 5
    assert broker.rejected == [(1, False), (2, True), (3, False), (5, False)]
    assert broker.acked == [4]
    assert broker.messages_in("jobs") == []

    captured = capsys.readouterr()
    assert "OK, rejecting with requeue." in captured.out
    assert "OK, message is a redelivery, rejecting without requeue." in captured.out
    assert "An exception was raised: Bouh" in captured.err
