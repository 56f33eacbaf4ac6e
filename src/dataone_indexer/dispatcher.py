"""Message dispatch loop: decode, scope, classify and record deliveries."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from .amqp import AmqpSubscription, Delivery
from .config import DeliveryPolicy, IndexerConfig
from .events import DecodeError, decode
from .recorder import RecordError, Recorder
from .scope import in_scope

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    """What happened to a single delivery."""

    RECORDED = "recorded"
    OUT_OF_SCOPE = "out-of-scope"
    DECODE_FAILED = "decode-failed"
    RECORD_FAILED = "record-failed"


@dataclass
class DispatchStats:
    """Counters emitted by the dispatcher for observability."""

    deliveries: int = 0
    recorded: int = 0
    out_of_scope: int = 0
    decode_failures: int = 0
    record_failures: int = 0

    def count(self, outcome: Outcome) -> None:
        self.deliveries += 1
        if outcome is Outcome.RECORDED:
            self.recorded += 1
        elif outcome is Outcome.OUT_OF_SCOPE:
            self.out_of_scope += 1
        elif outcome is Outcome.DECODE_FAILED:
            self.decode_failures += 1
        elif outcome is Outcome.RECORD_FAILED:
            self.record_failures += 1


class Dispatcher:
    """Consumes deliveries one at a time and records in-scope events.

    Per-message failures are logged and never stop the loop. The loop ends
    when the subscription's delivery stream closes or :meth:`stop` is called.
    """

    def __init__(self, config: IndexerConfig, recorder: Recorder, subscription: AmqpSubscription):
        self._root_path = config.dataone.repository_root
        self._policy = config.amqp.delivery_policy
        self._recorder = recorder
        self._subscription = subscription
        self._stop_event = threading.Event()
        self._stats = DispatchStats()

    @property
    def stats(self) -> DispatchStats:
        return self._stats

    def run(self) -> None:
        """Run the dispatch loop until stopped or the stream closes."""

        logger.info("waiting for incoming AMQP messages")
        try:
            for delivery in self._subscription.deliveries():
                if self._stop_event.is_set():
                    break
                if delivery is None:
                    continue
                outcome = self.process(delivery)
                self._settle(delivery, outcome)
                self._stats.count(outcome)
                if self._stop_event.is_set():
                    break
        except KeyboardInterrupt:
            logger.info("Dispatcher interrupted by user")
        finally:
            logger.info(
                "Dispatcher stopped after %s deliveries: %s recorded, %s out of scope, "
                "%s decode failures, %s record failures",
                self._stats.deliveries,
                self._stats.recorded,
                self._stats.out_of_scope,
                self._stats.decode_failures,
                self._stats.record_failures,
            )

    def stop(self) -> None:
        """Signal the dispatcher to stop at the next iteration boundary."""

        self._stop_event.set()

    def process(self, delivery: Delivery) -> Outcome:
        try:
            event = decode(delivery.body)
        except DecodeError as exc:
            logger.error(
                "Unable to parse message (%r) with routing key %s: %s",
                delivery.body,
                delivery.routing_key,
                exc,
            )
            return Outcome.DECODE_FAILED

        if not in_scope(self._root_path, event):
            return Outcome.OUT_OF_SCOPE

        try:
            self._recorder.record_event(delivery.routing_key, event)
        except RecordError as exc:
            logger.error(
                "Unable to record message (%r) with routing key %s: %s",
                delivery.body,
                delivery.routing_key,
                exc,
            )
            return Outcome.RECORD_FAILED

        return Outcome.RECORDED

    def _settle(self, delivery: Delivery, outcome: Outcome) -> None:
        if self._policy is DeliveryPolicy.BEST_EFFORT:
            return
        if outcome is Outcome.RECORD_FAILED:
            self._subscription.reject(delivery, requeue=True)
        else:
            self._subscription.ack(delivery)
