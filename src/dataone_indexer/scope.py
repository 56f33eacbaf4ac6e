"""Repository scoping for incoming data object events."""
from __future__ import annotations

from .events import DataObjectEvent


def in_scope(root_path: str, event: DataObjectEvent) -> bool:
    """Return True when the event's path starts with ``root_path``.

    This is a literal string prefix test: no normalisation is applied and
    path segment boundaries are not respected, so ``/a/b`` also matches
    ``/a/bc``. Downstream reports rely on this behaviour.
    """

    return event.path.startswith(root_path)
