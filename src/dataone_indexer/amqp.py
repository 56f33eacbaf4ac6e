"""AMQP subscription to the data store's notification exchange."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

import pika
from pika.exceptions import AMQPError

from .config import AmqpConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivery:
    """A single message received from the bus."""

    routing_key: str
    body: bytes
    delivery_tag: Optional[int] = None


class AmqpSubscription:
    """Declares the indexer queue, binds it and yields incoming deliveries."""

    def __init__(self, config: AmqpConfig):
        self._config = config
        self._connection = None
        self._channel = None
        self._lost = False

    @property
    def auto_ack(self) -> bool:
        return self._config.delivery_policy.auto_ack

    def open(self) -> "AmqpSubscription":
        """Connect to the broker and bind the queue to the subscription key."""

        params = pika.URLParameters(self._config.uri)
        self._connection = pika.BlockingConnection(params)
        self._channel = self._connection.channel()
        self._channel.queue_declare(
            queue=self._config.queue,
            durable=False,
            auto_delete=False,
            exclusive=False,
        )
        self._channel.queue_bind(
            queue=self._config.queue,
            exchange=self._config.exchange,
            routing_key=self._config.subscription_key,
        )
        if not self.auto_ack:
            self._channel.basic_qos(prefetch_count=self._config.prefetch_count)
        logger.info(
            "Bound queue %s to %s on exchange %s",
            self._config.queue,
            self._config.subscription_key,
            self._config.exchange,
        )
        return self

    def deliveries(self) -> Iterator[Optional[Delivery]]:
        """Yield deliveries until the connection is lost.

        ``None`` is yielded whenever no message arrives within the poll
        interval so that callers can check for a stop request. A failed
        acknowledgement also ends the stream.
        """

        if self._channel is None:
            raise RuntimeError("subscription has not been opened")

        try:
            for method, _properties, body in self._channel.consume(
                self._config.queue,
                auto_ack=self.auto_ack,
                inactivity_timeout=self._config.poll_interval,
            ):
                if self._lost:
                    return
                if method is None:
                    yield None
                    continue
                yield Delivery(
                    routing_key=method.routing_key,
                    body=body,
                    delivery_tag=method.delivery_tag,
                )
                if self._lost:
                    return
        except AMQPError as exc:
            logger.warning("AMQP delivery stream closed: %r", exc)

    def ack(self, delivery: Delivery) -> None:
        if self.auto_ack or self._channel is None or self._lost:
            return
        try:
            self._channel.basic_ack(delivery_tag=delivery.delivery_tag)
        except AMQPError as exc:
            self._mark_lost("acknowledge", delivery, exc)

    def reject(self, delivery: Delivery, *, requeue: bool = True) -> None:
        """Return a delivery to the broker.

        Requeued deliveries are held back for ``requeue-delay`` seconds first;
        the connection keeps servicing heartbeats while waiting.
        """

        if self.auto_ack or self._channel is None or self._lost:
            return
        try:
            if requeue and self._config.requeue_delay > 0:
                self._connection.sleep(self._config.requeue_delay)
            self._channel.basic_reject(delivery_tag=delivery.delivery_tag, requeue=requeue)
        except AMQPError as exc:
            self._mark_lost("reject", delivery, exc)

    def _mark_lost(self, action: str, delivery: Delivery, exc: AMQPError) -> None:
        logger.warning(
            "Unable to %s delivery %s (%s); AMQP delivery stream closed: %r",
            action,
            delivery.delivery_tag,
            delivery.routing_key,
            exc,
        )
        self._lost = True

    def close(self) -> None:
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None
        try:
            if channel is not None and channel.is_open:
                channel.cancel()
            if connection is not None and connection.is_open:
                connection.close()
        except AMQPError as exc:
            logger.warning("Error while closing AMQP connection: %r", exc)
