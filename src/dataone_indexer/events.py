"""Event models shared across indexer components."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class DecodeError(ValueError):
    """Raised when a message body cannot be decoded into a data object event."""


class EventKind(str, Enum):
    """Types of events recorded in the DataONE event log."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    GENERIC = "generic"


@dataclass(frozen=True)
class Author:
    """A data store user, qualified by zone."""

    name: str
    zone: Optional[str] = None


@dataclass(frozen=True)
class DataObjectEvent:
    """A single data object notification published by the data store."""

    path: str
    entity: Optional[str] = None
    author: Optional[Author] = None
    creator: Optional[Author] = None
    size: Optional[int] = None
    type: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict)


_KNOWN_FIELDS = ("path", "entity", "author", "creator", "size", "type")


def decode(body: bytes) -> DataObjectEvent:
    """Parse a raw message body into a :class:`DataObjectEvent`.

    The body must be a UTF-8 JSON object with at least a string ``path``
    field. Unknown fields are carried through in ``extra``.
    """

    try:
        data = json.loads(body.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise DecodeError(f"message body is not valid UTF-8: {exc}") from exc
    except (ValueError, RecursionError) as exc:
        # JSONDecodeError, oversized integer literals and excessive nesting
        raise DecodeError(f"message body is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise DecodeError("message body must be a JSON object")

    path = data.get("path")
    if not isinstance(path, str) or not path:
        raise DecodeError("message is missing a non-empty 'path' field")

    size = data.get("size")
    if size is not None and (isinstance(size, bool) or not isinstance(size, int)):
        raise DecodeError("'size' must be an integer")

    extra: Dict[str, Any] = {key: value for key, value in data.items() if key not in _KNOWN_FIELDS}

    return DataObjectEvent(
        path=path,
        entity=_optional_str(data, "entity"),
        author=_parse_author(data.get("author"), field_name="author"),
        creator=_parse_author(data.get("creator"), field_name="creator"),
        size=size,
        type=_optional_str(data, "type"),
        extra=extra,
        raw=data,
    )


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodeError(f"'{key}' must be a string")
    return value


def _parse_author(raw: Any, *, field_name: str) -> Optional[Author]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise DecodeError(f"'{field_name}' must be an object")
    name = raw.get("name")
    if not isinstance(name, str):
        raise DecodeError(f"{field_name}.name must be a string")
    zone = raw.get("zone")
    if zone is not None and not isinstance(zone, str):
        raise DecodeError(f"{field_name}.zone must be a string")
    return Author(name=name, zone=zone)
