"""Connection keys and their endpoints."""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from ..errors import UnresolvedEndpoint
from .topics import Market, classify_market, is_private_channel

if TYPE_CHECKING:
    from ..settings import WebsocketSettings

logger = logging.getLogger(__name__)


class ConnectionKey(str, Enum):
    SPOT_PUBLIC = "spot_public"
    SPOT_PRIVATE = "spot_private"
    FUTURES_PUBLIC = "futures_public"
    FUTURES_PRIVATE = "futures_private"

    @property
    def market(self) -> Market:
        return market_for_key(self)

    @property
    def is_private(self) -> bool:
        return self in PRIVATE_KEYS


PRIVATE_KEYS: frozenset[ConnectionKey] = frozenset(
    {ConnectionKey.SPOT_PRIVATE, ConnectionKey.FUTURES_PRIVATE}
)

WS_BASE_URLS: dict[ConnectionKey, str] = {
    ConnectionKey.SPOT_PUBLIC: "wss://ws-manager-compress.bitmart.com/api?protocol=1.1",
    ConnectionKey.SPOT_PRIVATE: "wss://ws-manager-compress.bitmart.com/user?protocol=1.1",
    ConnectionKey.FUTURES_PUBLIC: "wss://openapi-ws-v2.bitmart.com/api?protocol=1.1",
    ConnectionKey.FUTURES_PRIVATE: "wss://openapi-ws-v2.bitmart.com/user?protocol=1.1",
}


def resolve_key(market: Market, is_private: bool) -> ConnectionKey:
    if market is Market.SPOT:
        return ConnectionKey.SPOT_PRIVATE if is_private else ConnectionKey.SPOT_PUBLIC
    return ConnectionKey.FUTURES_PRIVATE if is_private else ConnectionKey.FUTURES_PUBLIC


def key_for_topic(topic: str) -> ConnectionKey:
    """Route a topic to the connection that serves it.

    Raises:
        ClassificationError: If the topic's market cannot be resolved
    """
    return resolve_key(classify_market(topic), is_private_channel(topic))


def market_for_key(key: ConnectionKey) -> Market:
    if key in (ConnectionKey.SPOT_PUBLIC, ConnectionKey.SPOT_PRIVATE):
        return Market.SPOT
    if key in (ConnectionKey.FUTURES_PUBLIC, ConnectionKey.FUTURES_PRIVATE):
        return Market.FUTURES
    raise UnresolvedEndpoint(f"Unhandled connection key: {key!r}")


def url_for(key: ConnectionKey, settings: "WebsocketSettings | None" = None) -> str:
    """Get the websocket URL for a connection key.

    A per-key override wins over the global ``ws_url`` override, which wins
    over the production endpoint.
    """
    if settings is not None:
        override = settings.ws_urls.get(getattr(key, "value", key))
        if override:
            return override
        if settings.ws_url:
            return settings.ws_url

    try:
        return WS_BASE_URLS[key]
    except KeyError:
        logger.error("url_for(): unhandled connection key %r", key)
        raise UnresolvedEndpoint(f"No websocket URL for connection key: {key!r}") from None


def max_topics_per_message(key: ConnectionKey, settings: "WebsocketSettings | None" = None) -> int | None:
    """Return the per-request topic bound for a key, or None if unbounded."""
    if settings is None:
        return None
    return settings.max_topics_per_message.get(key.value)
