"""Persistence of data object events in the DataONE event log.

The event log is kept in sqlite. ``db.uri`` accepts ``sqlite://`` URIs or a
bare filesystem path; PostgreSQL URIs (``postgresql://...``) are not
supported and are rejected with a :class:`~dataone_indexer.config.ConfigError`.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import time
from datetime import datetime, timezone
from pathlib import Path

from .config import ConfigError
from .events import DataObjectEvent
from .routing import RoutingKeyMap

logger = logging.getLogger(__name__)

# sqlite invokes the progress handler every N virtual machine instructions
_PROGRESS_INTERVAL = 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS event_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event TEXT NOT NULL,
    path TEXT NOT NULL,
    entity TEXT,
    subject TEXT,
    zone TEXT,
    node_id TEXT NOT NULL,
    routing_key TEXT NOT NULL,
    payload TEXT NOT NULL,
    date_logged TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS event_log_path_idx ON event_log (path);
CREATE INDEX IF NOT EXISTS event_log_date_logged_idx ON event_log (date_logged);
"""

_INSERT_EVENT = """
INSERT INTO event_log (event, path, entity, subject, zone, node_id, routing_key, payload, date_logged)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


class RecordError(RuntimeError):
    """Raised when an event could not be written to the event log."""


class StoreConnectionError(RuntimeError):
    """Raised when the event store cannot be reached within the connect timeout."""


class Recorder:
    """Writes classified events to the event log with the configured node identity.

    Each call to :meth:`record_event` is a single attempt: there is no retry
    and no deduplication, so recording the same event twice yields two rows.
    The caller is responsible for applying the repository scope filter.
    """

    def __init__(
        self,
        connection: sqlite3.Connection,
        routing_keys: RoutingKeyMap,
        node_id: str,
        *,
        record_timeout: float = 30.0,
    ):
        self._conn = connection
        self._routing_keys = routing_keys
        self._node_id = node_id
        self._record_timeout = record_timeout
        self.ensure_schema()

    @property
    def node_id(self) -> str:
        return self._node_id

    def ensure_schema(self) -> None:
        with self._conn:
            self._conn.executescript(SCHEMA)

    def record_event(self, routing_key: str, event: DataObjectEvent) -> None:
        kind = self._routing_keys.classify(routing_key)
        try:
            payload = json.dumps(dict(event.raw), sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise RecordError(f"unable to serialize event payload for {event.path}: {exc}") from exc

        author = event.author
        params = (
            kind.value,
            event.path,
            event.entity,
            author.name if author is not None else None,
            author.zone if author is not None else None,
            self._node_id,
            routing_key,
            payload,
            datetime.now(timezone.utc).isoformat(),
        )

        deadline = time.monotonic() + self._record_timeout
        try:
            self._conn.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_INTERVAL)
        except sqlite3.Error as exc:
            raise RecordError(f"event store unavailable: {exc}") from exc

        try:
            with self._conn:
                self._conn.execute(_INSERT_EVENT, params)
        except UnicodeEncodeError as exc:
            raise RecordError(f"event for {event.path!r} holds text the store cannot encode: {exc}") from exc
        except sqlite3.Error as exc:
            if time.monotonic() > deadline:
                raise RecordError(
                    f"recording {kind.value} event for {event.path} exceeded {self._record_timeout}s"
                ) from exc
            raise RecordError(f"unable to record {kind.value} event for {event.path}: {exc}") from exc
        finally:
            self._conn.set_progress_handler(None, _PROGRESS_INTERVAL)

        logger.debug("Recorded %s event for %s", kind.value, event.path)

    def close(self) -> None:
        self._conn.close()


def connect_store(
    uri: str,
    *,
    connect_timeout: float = 60.0,
    busy_timeout: float = 30.0,
    initial_delay: float = 0.5,
) -> sqlite3.Connection:
    """Open the event store, retrying with backoff until ``connect_timeout`` elapses."""

    database = _database_from_uri(uri)
    deadline = time.monotonic() + connect_timeout
    delay = initial_delay
    attempt = 0

    while True:
        attempt += 1
        try:
            if database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(database, timeout=busy_timeout)
            conn.execute("SELECT 1")
            return conn
        except (sqlite3.Error, OSError) as exc:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise StoreConnectionError(
                    f"Unable to connect to {uri} after {attempt} attempts: {exc}"
                ) from exc
            logger.warning("Event store connection attempt %s failed: %s", attempt, exc)
            time.sleep(min(delay, remaining))
            delay = min(delay * 2, 10.0)


def _database_from_uri(uri: str) -> str:
    scheme, sep, rest = uri.partition("://")
    if not sep:
        return uri
    if scheme != "sqlite":
        raise ConfigError(f"Unsupported event store scheme '{scheme}' in db.uri")
    if rest in ("", "/"):
        raise ConfigError(f"db.uri does not name a database: {uri}")
    if rest == "/:memory:":
        return ":memory:"
    return rest
