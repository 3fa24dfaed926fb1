"""Topic classification.

Topics are plain strings such as ``spot/depth5:BTC_USDT`` or
``futures/position``. The first path segment names the market and the second
one decides whether the channel needs an authenticated connection.
"""

from __future__ import annotations

from enum import Enum

from ..errors import ClassificationError

# Second-segment prefixes that only exist on authenticated connections.
# Spot uses "user/..." channels, futures uses asset/position/order.
PRIVATE_CHANNEL_PREFIXES: tuple[str, ...] = ("user", "asset", "position", "order")


class Market(str, Enum):
    SPOT = "spot"
    FUTURES = "futures"


def classify_market(topic: str) -> Market:
    """Resolve the market a topic belongs to from its prefix."""
    if topic.startswith(Market.FUTURES.value):
        return Market.FUTURES
    if topic.startswith(Market.SPOT.value):
        return Market.SPOT
    raise ClassificationError(topic)


def is_private_channel(topic: str) -> bool:
    """Return True if the topic's channel name marks it as private.

    A topic without a second segment is treated as public.
    """
    segments = topic.lower().split("/")
    if len(segments) < 2 or not segments[1]:
        return False
    return segments[1].startswith(PRIVATE_CHANNEL_PREFIXES)
