"""Shared fixtures: an in-memory event store and a scripted subscription."""

import json
import sqlite3
from typing import Any, Iterable, List, Optional

import pytest

from dataone_indexer.amqp import Delivery
from dataone_indexer.config import IndexerConfig, parse_config
from dataone_indexer.recorder import Recorder

ROOT = "/iplant/home/shared/commons_repo/curated"


class ScriptedSubscription:
    """Stands in for AmqpSubscription, replaying a fixed list of deliveries."""

    def __init__(self, deliveries: Iterable[Optional[Delivery]]):
        self._deliveries = list(deliveries)
        self.acked: List[Delivery] = []
        self.rejected: List[Delivery] = []

    def deliveries(self):
        yield from self._deliveries

    def ack(self, delivery: Delivery) -> None:
        self.acked.append(delivery)

    def reject(self, delivery: Delivery, *, requeue: bool = True) -> None:
        self.rejected.append(delivery)


def make_delivery(routing_key: str, payload: Any) -> Delivery:
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return Delivery(routing_key=routing_key, body=body)


@pytest.fixture
def config() -> IndexerConfig:
    return parse_config(
        {
            "db": {"uri": "sqlite:///:memory:"},
            "dataone": {"repository-root": ROOT, "node-id": "urn:node:TEST"},
        }
    )


@pytest.fixture
def connection() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def recorder(config: IndexerConfig, connection: sqlite3.Connection) -> Recorder:
    return Recorder(
        connection,
        config.amqp.routing_keys,
        config.dataone.node_id,
        record_timeout=config.db.record_timeout,
    )


@pytest.fixture
def rows(connection: sqlite3.Connection):
    def _rows():
        cursor = connection.execute(
            "SELECT event, path, entity, subject, zone, node_id, routing_key, payload FROM event_log ORDER BY id"
        )
        return cursor.fetchall()

    return _rows


@pytest.fixture
def delivery():
    return make_delivery


@pytest.fixture
def scripted():
    return ScriptedSubscription
