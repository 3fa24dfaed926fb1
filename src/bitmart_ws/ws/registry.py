"""Per-connection subscription bookkeeping and request batching."""

from __future__ import annotations

import json
from typing import Iterable, Literal

from .topics import Market

Operation = Literal["subscribe", "unsubscribe"]


class SubscriptionRegistry:
    """Desired and confirmed topics for one connection.

    Topics keep insertion order so that resubscribe requests go out in the
    order the caller asked for them.
    """

    def __init__(self) -> None:
        self._desired: dict[str, None] = {}
        self._confirmed: set[str] = set()

    @property
    def desired(self) -> list[str]:
        return list(self._desired)

    @property
    def confirmed(self) -> set[str]:
        return set(self._confirmed)

    def add_desired(self, topics: Iterable[str]) -> list[str]:
        """Add topics, returning the ones that were not desired before."""
        added = []
        for topic in topics:
            if topic not in self._desired:
                self._desired[topic] = None
                added.append(topic)
        return added

    def remove_desired(self, topics: Iterable[str]) -> list[str]:
        """Drop topics, returning the ones that were actually desired."""
        removed = []
        for topic in topics:
            if topic in self._desired:
                del self._desired[topic]
                self._confirmed.discard(topic)
                removed.append(topic)
        return removed

    def diff_for_resubscribe(self) -> list[str]:
        """Invalidate confirmations and return everything to resend."""
        self._confirmed.clear()
        return list(self._desired)

    def reset_confirmed(self) -> None:
        self._confirmed.clear()

    def mark_confirmed(self, topics: Iterable[str]) -> list[str]:
        # Acks for topics removed in the meantime are ignored.
        confirmed = [topic for topic in topics if topic in self._desired]
        self._confirmed.update(confirmed)
        return confirmed

    def mark_unconfirmed(self, topics: Iterable[str]) -> None:
        for topic in topics:
            self._confirmed.discard(topic)


def build_requests(topics: list[str], max_per_message: int | None = None) -> list[list[str]]:
    """Split topics into request-sized batches, preserving order."""
    if not topics:
        return []
    if not max_per_message or len(topics) <= max_per_message:
        return [list(topics)]
    return [topics[i : i + max_per_message] for i in range(0, len(topics), max_per_message)]


def build_request_payload(market: Market, operation: Operation, topics: list[str]) -> dict[str, object]:
    # Spot uses "op", futures uses "action"
    if market is Market.SPOT:
        return {"op": operation, "args": list(topics)}
    return {"action": operation, "args": list(topics)}


def serialize_requests(
    market: Market,
    operation: Operation,
    topics: list[str],
    max_per_message: int | None = None,
) -> list[str]:
    """Build ready-to-send JSON frames for an operation over ``topics``."""
    return [
        json.dumps(build_request_payload(market, operation, batch))
        for batch in build_requests(topics, max_per_message)
    ]
