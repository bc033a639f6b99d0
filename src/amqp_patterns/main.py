import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, List

import typer
from typing_extensions import Annotated, Optional

from amqp_patterns.config import (
    ENV_EXCHANGE_PUBSUB,
    ENV_EXCHANGE_TOPIC,
    ENV_EXCHANGE_WORKER,
    ENV_HOST,
    ENV_HOST_LIST,
    ENV_SHUFFLE_HOSTS,
    SERVICE_NAME,
)
from amqp_patterns.lifecycle import PausePolicy
from amqp_patterns.logging_config import parse_log_level, setup_logging
from amqp_patterns.rabbitmq.delivery import InboundMessage
from amqp_patterns.rabbitmq.session import DeliverySession
from amqp_patterns.util import (
    get_pattern_factory,
    init_pattern_factory,
    shutdown_pattern_factory,
    split_host_list,
)

app = typer.Typer()
logger = logging.getLogger(__name__)

TASK_SLEEP_SECONDS = 3


def _now() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def _decode(message: InboundMessage) -> str:
    return message.body.decode("utf-8", errors="replace")


def _sample_properties(content_type: str, message_type: str) -> dict:
    return {
        "app_id": SERVICE_NAME,
        "content_type": content_type,
        "message_id": str(uuid.uuid4()),
        "timestamp": datetime.now(tz=timezone.utc),
        "type": message_type,
    }


def print_message(message: InboundMessage, ack, reject):
    typer.echo(f"[{_now()}] {_decode(message)}")


def build_task_worker_callback(do_sleep: bool = True) -> Callable:
    """
    Sample worker behaviour driven by the message body:

        invalid  rejected without requeue
        reject   requeued once, dropped when redelivered
        error    raises
        other    acknowledged
    """

    def on_message(message: InboundMessage, ack, reject):
        typer.echo("")
        if do_sleep:
            typer.echo(f"Waiting for {TASK_SLEEP_SECONDS} seconds before processing...")
            typer.echo(
                "Hit CTRL+C now will wait for the processing to end before exiting."
            )
            time.sleep(TASK_SLEEP_SECONDS)

        body = _decode(message)
        typer.echo(f"[{_now()}] {body}")

        if body == "error":
            raise RuntimeError("Bouh")
        if body == "invalid":
            typer.echo("OK, rejecting without requeue.")
            reject(False)
            return
        if body == "reject":
            if message.redelivered:
                typer.echo("OK, message is a redelivery, rejecting without requeue.")
                reject(False)
            else:
                typer.echo("OK, rejecting with requeue.")
                reject(True)
            return
        typer.echo("OK, I'm done.")
        ack()

    return on_message


def report_error(error: Exception, message: InboundMessage):
    typer.echo(f"An exception was raised: {error}", err=True)


def _run_session(session: DeliverySession) -> None:
    factory = get_pattern_factory()
    factory.lifecycle.register_signals(
        on_interrupt=lambda: typer.echo("... process killed")
    )
    typer.echo("Hit CTRL+C to quit.")
    try:
        with session:
            session.run()
    finally:
        shutdown_pattern_factory()


@app.command()
def fanout_publish(
    message: str,
    exchange: Annotated[
        str, typer.Option(envvar=ENV_EXCHANGE_PUBSUB)
    ] = "my_fanout_exchange",
    content_type: str = "text/plain",
    message_type: Annotated[str, typer.Option("--type")] = "sample_text",
):
    typer.echo(f"Using '{exchange}' exchange.")
    try:
        with get_pattern_factory().create_fanout_publisher(exchange) as publisher:
            publisher.publish(
                message, properties=_sample_properties(content_type, message_type)
            )
    finally:
        shutdown_pattern_factory()


@app.command()
def fanout_subscribe(
    exchange: Annotated[
        str, typer.Option(envvar=ENV_EXCHANGE_PUBSUB)
    ] = "my_fanout_exchange",
):
    typer.echo(f"Using '{exchange}' exchange.")
    session = get_pattern_factory().create_fanout_subscriber(exchange)
    session.set_callback(print_message)
    _run_session(session)


@app.command()
def task_publish(
    message: str,
    routing_key: str = "my_task_queue",
    exchange: Annotated[str, typer.Option(envvar=ENV_EXCHANGE_WORKER)] = "",
    content_type: str = "text/plain",
    message_type: Annotated[str, typer.Option("--type")] = "sample_text",
):
    typer.echo(f"Using '{exchange}' exchange with routing key '{routing_key}'.")
    try:
        with get_pattern_factory().create_task_publisher(
            routing_key, exchange or None
        ) as publisher:
            publisher.publish(
                message, properties=_sample_properties(content_type, message_type)
            )
    finally:
        shutdown_pattern_factory()


@app.command()
def task_worker(
    queue: str = "my_task_real_queue",
    exchange: Annotated[str, typer.Option(envvar=ENV_EXCHANGE_WORKER)] = "",
    binding_key: Annotated[
        Optional[List[str]], typer.Option(help="Binding key to listen for")
    ] = None,
    no_sleep: Annotated[
        bool, typer.Option(help="Disable sleep when processing message")
    ] = False,
):
    binding_keys = binding_key or ["my_task_queue"]
    typer.echo(f"Using '{exchange}' exchange.")
    typer.echo(f"I am working on the '{queue}' queue.")
    typer.echo(f"I am binding to '{', '.join(binding_keys)}' binding keys.")
    typer.echo("Send a message containing:")
    typer.echo(" - 'invalid' to trigger a reject without requeing")
    typer.echo(" - 'reject' to trigger a reject with requeing")
    typer.echo(" - 'error' to trigger an exception to be raised")
    typer.echo(" - Any other value will trigger an ack")

    session = get_pattern_factory().create_task_worker(
        queue=queue, exchange=exchange or None, binding_keys=binding_keys
    )
    session.set_callback(build_task_worker_callback(do_sleep=not no_sleep))
    session.set_error_handler(report_error)
    _run_session(session)


@app.command()
def topic_publish(
    message: str,
    routing_key: str,
    exchange: Annotated[
        str, typer.Option(envvar=ENV_EXCHANGE_TOPIC)
    ] = "my_topic_exchange",
    content_type: str = "text/plain",
    message_type: Annotated[str, typer.Option("--type")] = "sample_text",
):
    typer.echo(f"Using '{exchange}' exchange with routing key '{routing_key}'.")
    try:
        with get_pattern_factory().create_topic_publisher(exchange) as publisher:
            publisher.publish(
                message,
                properties=_sample_properties(content_type, message_type),
                routing_key=routing_key,
            )
    finally:
        shutdown_pattern_factory()


@app.command()
def topic_subscribe(
    binding_key: Annotated[List[str], typer.Option(help="Binding key to listen for")],
    exchange: Annotated[
        str, typer.Option(envvar=ENV_EXCHANGE_TOPIC)
    ] = "my_topic_exchange",
    queue: Annotated[Optional[str], typer.Option()] = None,
):
    typer.echo(f"Using '{exchange}' exchange.")
    typer.echo(f"I am binding to '{', '.join(binding_key)}' binding keys.")
    session = get_pattern_factory().create_topic_subscriber(
        exchange, binding_key, queue=queue
    )
    session.set_callback(print_message)
    _run_session(session)


@app.callback()
def callback(
    host: Annotated[Optional[str], typer.Option(envvar=ENV_HOST)] = None,
    host_list: Annotated[
        Optional[str],
        typer.Option(envvar=ENV_HOST_LIST, help="Comma separated host DSNs"),
    ] = None,
    shuffle_hosts: Annotated[bool, typer.Option(envvar=ENV_SHUFFLE_HOSTS)] = False,
    pause_policy: PausePolicy = PausePolicy.STOP,
    log_level: str = "INFO",
):
    try:
        level = parse_log_level(log_level)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--log-level") from e

    # Setup logging first
    setup_logging(
        level=level,
        microservice_name=SERVICE_NAME,
    )

    hosts = split_host_list(host_list)
    if host:
        hosts.insert(0, host)

    init_pattern_factory(
        hosts=hosts, shuffle_hosts=shuffle_hosts, pause_policy=pause_policy
    )
