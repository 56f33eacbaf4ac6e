"""Routing key classification helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Mapping, Optional, Sequence, Tuple

from .events import EventKind


def classify(routing_key: str, read_key: str) -> EventKind:
    """Return ``READ`` when the routing key is the configured read key."""

    if routing_key == read_key:
        return EventKind.READ
    return EventKind.GENERIC


@dataclass(frozen=True)
class RoutingRule:
    """A routing key pattern and the event kind it maps to.

    Patterns follow AMQP topic binding syntax: ``*`` matches exactly one
    dot-separated word and ``#`` matches zero or more words. Anything else
    must match literally.
    """

    pattern: str
    kind: EventKind

    def matches(self, routing_key: str) -> bool:
        if "*" not in self.pattern and "#" not in self.pattern:
            return routing_key == self.pattern
        return _topic_matches(self.pattern.split("."), routing_key.split("."))


@dataclass(frozen=True)
class RoutingKeyMap:
    """Ordered routing key rules with a default event kind.

    The first matching rule wins; keys matching no rule get ``default``.
    """

    rules: Tuple[RoutingRule, ...] = ()
    default: EventKind = EventKind.GENERIC

    @classmethod
    def from_read_key(
        cls,
        read_key: str,
        extra: Optional[Mapping[str, EventKind]] = None,
        *,
        default: EventKind = EventKind.GENERIC,
    ) -> "RoutingKeyMap":
        rules = [RoutingRule(read_key, EventKind.READ)]
        for pattern, kind in (extra or {}).items():
            rules.append(RoutingRule(pattern, kind))
        return cls(rules=tuple(rules), default=default)

    def classify(self, routing_key: str) -> EventKind:
        for rule in self.rules:
            if rule.matches(routing_key):
                return rule.kind
        return self.default

    def __iter__(self) -> Iterator[RoutingRule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)


def _topic_matches(pattern: Sequence[str], words: Sequence[str]) -> bool:
    if not pattern:
        return not words

    head, rest = pattern[0], pattern[1:]
    if head == "#":
        return any(_topic_matches(rest, words[index:]) for index in range(len(words) + 1))
    if not words:
        return False
    if head == "*" or head == words[0]:
        return _topic_matches(rest, words[1:])
    return False
