"""
Durable Queue Client — RabbitMQ through kombu.

Topology:
  Every pipeline queue is a durable, non-exclusive, non-auto-delete queue
  bound to the default exchange; the routing key is the queue name. Names
  come from Settings (queue_*), never from literals at call sites.

Delivery:
  - publish() sends raw bytes unchanged with delivery_mode=2 (persistent).
  - StageConsumer consumes with prefetch 1 and manual ack. A message is
    acked only after its handler returned; the HandlerOutcome decides
    between ack, reject-with-requeue and ack-and-drop (messaging.outcomes).
  - Semantics are at-least-once: a crash between handler completion and
    ack redelivers the message, so every handler must tolerate duplicates.

Lifecycle:
  BrokerContext is built once at stage startup by connect_with_retry() and
  passed to whatever needs to publish or consume. Nothing here is global.
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from typing import Callable, Mapping

from kombu import Connection, Consumer, Producer, Queue
from kombu.exceptions import KombuError, OperationalError
from kombu.mixins import ConsumerMixin

from paperflow.core.config import FailurePolicy, Settings
from paperflow.core.exceptions import TransientInfrastructureError
from paperflow.messaging.outcomes import (
    Disposition,
    Failed,
    FailureKind,
    Handler,
    HandlerOutcome,
    Skipped,
    decide,
)

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
PERSISTENT = 2


# ---------------------------------------------------------------------------
# Connect with bounded retry
# ---------------------------------------------------------------------------

def connect_with_retry(
    settings: Settings,
    sleep: Callable[[float], None] = time.sleep,
) -> "BrokerContext":
    """
    Try ``rabbitmq_connection_retries`` times with a fixed delay between
    attempts. Raises TransientInfrastructureError once attempts run out.
    """
    attempts = max(1, settings.rabbitmq_connection_retries)
    delay    = settings.rabbitmq_connection_retry_delay_seconds
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        connection = Connection(settings.amqp_url, connect_timeout=10)
        try:
            connection.connect()
        except (OperationalError, OSError, *connection.connection_errors) as exc:
            last_error = exc
            connection.release()
            logger.warning(
                "Broker connect failed | attempt=%d/%d error=%s",
                attempt, attempts, exc,
            )
            if attempt < attempts:
                sleep(delay)
            continue

        logger.info("Broker connected | url=%s attempt=%d", connection.as_uri(), attempt)
        return BrokerContext(connection)

    raise TransientInfrastructureError(
        f"Could not connect to the broker after {attempts} attempts"
    ) from last_error


# ---------------------------------------------------------------------------
# Connection context
# ---------------------------------------------------------------------------

class BrokerContext:
    """Explicit broker connection plus the queues declared on it."""

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._queues: dict[str, Queue] = {}
        self._producer: Producer | None = None

    @property
    def connection(self) -> Connection:
        return self._connection

    def queue(self, name: str) -> Queue:
        if name not in self._queues:
            self._queues[name] = Queue(
                name,
                routing_key=name,
                durable=True,
                exclusive=False,
                auto_delete=False,
            )
        return self._queues[name]

    def declare(self, *names: str) -> None:
        """Declare queues; redeclaring an existing queue is a no-op on the broker."""
        channel = self._connection.default_channel
        for name in names:
            self.queue(name)(channel).declare()
            logger.debug("Queue declared | queue=%s", name)

    def publish(self, queue_name: str, body: bytes) -> None:
        queue = self.queue(queue_name)
        try:
            if self._producer is None:
                self._producer = Producer(self._connection.default_channel)
            self._producer.publish(
                body,
                exchange="",
                routing_key=queue_name,
                declare=[queue],
                delivery_mode=PERSISTENT,
                content_type=JSON_CONTENT_TYPE,
                content_encoding="utf-8",
                retry=True,
                retry_policy={"max_retries": 3, "interval_start": 0.5},
            )
        except (KombuError, OSError, *self._connection.connection_errors) as exc:
            self._producer = None
            raise TransientInfrastructureError(
                f"Publish to {queue_name} failed: {exc}"
            ) from exc
        logger.debug("Published | queue=%s bytes=%d", queue_name, len(body))

    def close(self) -> None:
        self._producer = None
        self._connection.release()
        logger.info("Broker connection closed")

    def __enter__(self) -> "BrokerContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Stage consumer
# ---------------------------------------------------------------------------

class StageConsumer(ConsumerMixin):
    """
    Consume one or more queues, each with its own async handler.

    Handlers run to completion on an event loop owned by this consumer, one
    message at a time. Setting ``should_stop`` (the signal handlers in
    paperflow.workers do) ends the loop after the current message.
    """

    def __init__(
        self,
        broker: BrokerContext,
        stage: str,
        handlers: Mapping[str, Handler],
        policy: FailurePolicy,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.connection = broker.connection
        self._broker    = broker
        self._stage     = stage
        self._handlers  = dict(handlers)
        self._policy    = policy
        self._loop      = loop or asyncio.new_event_loop()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    def get_consumers(self, Consumer: type[Consumer], channel) -> list[Consumer]:
        return [
            Consumer(
                queues=[self._broker.queue(name)],
                on_message=partial(self.on_message, name),
                prefetch_count=1,
                no_ack=False,
            )
            for name in self._handlers
        ]

    def on_consume_ready(self, connection, channel, consumers, **kwargs) -> None:
        logger.info(
            "Stage consuming | stage=%s queues=%s policy=%s",
            self._stage, list(self._handlers), self._policy,
        )

    def on_message(self, queue_name: str, message) -> None:
        outcome = self.dispatch(queue_name, message.body)
        self.settle(queue_name, message, outcome)

    def dispatch(self, queue_name: str, body: bytes) -> HandlerOutcome:
        handler = self._handlers[queue_name]
        try:
            return self._loop.run_until_complete(handler(body))
        except Exception as exc:
            logger.exception(
                "Handler raised | stage=%s queue=%s error=%s",
                self._stage, queue_name, exc,
            )
            return Failed(FailureKind.UNEXPECTED, repr(exc))

    def settle(self, queue_name: str, message, outcome: HandlerOutcome) -> Disposition:
        disposition = decide(outcome, self._policy)

        if disposition is Disposition.REQUEUE:
            logger.warning(
                "Message requeued | stage=%s queue=%s kind=%s detail=%s",
                self._stage, queue_name, outcome.kind.value, outcome.detail,
            )
            message.requeue()
            return disposition

        if disposition is Disposition.DROP:
            logger.error(
                "Message dropped | stage=%s queue=%s kind=%s detail=%s",
                self._stage, queue_name, outcome.kind.value, outcome.detail,
            )
        elif isinstance(outcome, Skipped):
            logger.info(
                "Message skipped | stage=%s queue=%s reason=%s",
                self._stage, queue_name, outcome.reason,
            )
        message.ack()
        return disposition

    def close(self) -> None:
        if not self._loop.is_closed():
            self._loop.run_until_complete(self._loop.shutdown_asyncgens())
            self._loop.close()
