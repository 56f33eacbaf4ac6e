"""Command-line entry point for the DataONE indexer."""
from __future__ import annotations

import argparse
import logging
import signal
from pathlib import Path

from pika.exceptions import AMQPError

from .amqp import AmqpSubscription
from .config import ConfigError, load_config
from .dispatcher import Dispatcher
from .recorder import Recorder, StoreConnectionError, connect_store


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Record DataONE events from the data store's AMQP notifications"
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    try:
        config = load_config(Path(args.config))
        connection = connect_store(
            config.db.uri,
            connect_timeout=config.db.connect_timeout,
            busy_timeout=config.db.record_timeout,
        )
    except ConfigError as exc:
        logging.error("%s", exc)
        raise SystemExit(2) from exc
    except StoreConnectionError as exc:
        logging.error("Unable to establish the database connection: %s", exc)
        raise SystemExit(1) from exc

    recorder = Recorder(
        connection,
        config.amqp.routing_keys,
        config.dataone.node_id,
        record_timeout=config.db.record_timeout,
    )

    subscription = AmqpSubscription(config.amqp)
    try:
        subscription.open()
    except AMQPError as exc:
        logging.error("Unable to subscribe to AMQP messages: %r", exc)
        recorder.close()
        raise SystemExit(1) from exc

    dispatcher = Dispatcher(config, recorder, subscription)

    def _request_stop(signum, _frame) -> None:
        logging.info("Received signal %s; stopping", signum)
        dispatcher.stop()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    try:
        dispatcher.run()
    finally:
        subscription.close()
        recorder.close()


if __name__ == "__main__":
    main()
